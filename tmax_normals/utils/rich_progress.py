"""
Rich progress display for grid smoothing runs.

One bar per grid run, counted in pixels, with pixel throughput and system
memory alongside. When the display stops, a table of per-run outcomes
(smoothed, failed, elapsed time) is printed to the same console.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, Optional

import psutil
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    ProgressColumn,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)
from rich.table import Table
from rich.text import Text


class PixelRateColumn(ProgressColumn):
    """Pixels smoothed per second."""

    def render(self, task) -> Text:
        rate = task.speed
        if not rate:
            return Text("- px/s", style="progress.data.speed")
        return Text(f"{rate:,.0f} px/s", style="progress.data.speed")


class SystemMemoryColumn(ProgressColumn):
    """Share of system memory in use."""

    def render(self, task) -> Text:
        try:
            used = psutil.virtual_memory().percent
        except (OSError, RuntimeError):
            return Text("mem -", style="dim")
        style = "red" if used > 90 else "progress.data.speed"
        return Text(f"mem {used:.0f}%", style=style)


@dataclass
class ProcessingTask:
    """Bookkeeping for one grid run shown on the display."""
    name: str
    total: int
    completed: int = 0
    failed: int = 0
    status: str = "pending"  # pending, running, completed, cancelled
    task_id: Optional[TaskID] = None
    started: float = field(default_factory=time.monotonic)
    finished: Optional[float] = None

    @property
    def processed(self) -> int:
        return self.completed + self.failed

    @property
    def elapsed(self) -> float:
        end = self.finished if self.finished is not None else time.monotonic()
        return end - self.started

    @property
    def success_rate(self) -> float:
        """Percentage of processed pixels that did not fail."""
        if self.processed == 0:
            return 100.0
        return 100.0 * self.completed / self.processed


class RichProgressTracker:
    """
    Progress bars for grid smoothing, usable as a context manager.

    Example:
        tracker = RichProgressTracker()
        with tracker:
            GridSmoother(config, rich_tracker=tracker).smooth(cube)
    """

    def __init__(self, title: str = "Seasonal Smoothing", console: Optional[Console] = None):
        self.title = title
        self.console = console or Console(stderr=True)
        self.tasks: Dict[str, ProcessingTask] = {}
        self.running = False

        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold cyan]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            PixelRateColumn(),
            TimeElapsedColumn(),
            TextColumn("eta"),
            TimeRemainingColumn(),
            SystemMemoryColumn(),
            console=self.console,
            transient=False,
        )

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False

    def start(self):
        if self.running:
            return
        self.progress.start()
        self.running = True

    def stop(self):
        if not self.running:
            return
        self.progress.stop()
        self.running = False
        if self.tasks:
            self.console.print(self.summary_table())

    def add_task(self, name: str, description: str, total: int) -> str:
        """Register a run of ``total`` pixels and return its name."""
        task = ProcessingTask(name=name, total=total, status="running")
        task.task_id = self.progress.add_task(description, total=total)
        self.tasks[name] = task
        return name

    def update_task(self, name: str, advance: int = 1, failed: int = 0):
        """Count ``advance`` more pixels as processed, ``failed`` of them failed."""
        task = self.tasks.get(name)
        if task is None:
            return

        task.completed += advance - failed
        task.failed += failed
        if task.task_id is not None:
            self.progress.advance(task.task_id, advance)

    def complete_task(self, name: str, status: str = "completed"):
        task = self.tasks.get(name)
        if task is None:
            return

        task.status = status
        task.finished = time.monotonic()
        if task.task_id is not None:
            self.progress.update(task.task_id, description=f"{name} ({status})")

    def summary_table(self) -> Table:
        """Per-run outcome table."""
        table = Table(title=self.title)
        table.add_column("Run")
        table.add_column("Status")
        table.add_column("Pixels", justify="right")
        table.add_column("Failed", justify="right")
        table.add_column("Success", justify="right")
        table.add_column("Time", justify="right")

        for task in self.tasks.values():
            table.add_row(
                task.name,
                task.status,
                f"{task.processed}/{task.total}",
                str(task.failed),
                f"{task.success_rate:.1f}%",
                f"{task.elapsed:.1f}s",
            )
        return table
