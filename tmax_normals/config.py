#!/usr/bin/env python3
"""
Configuration Management for Tmax Normals

Centralized configuration for data paths, smoothing parameters, processing
and rendering settings. Settings are resolved in this order: defaults, a YAML
config file, then environment variables.
"""

import os
import logging
from pathlib import Path
from typing import Dict, Any, Optional, Union
import yaml
from dataclasses import dataclass, field, asdict

from tmax_normals.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "tmax_normals.yaml"


@dataclass
class PathsConfig:
    """Data path configuration."""
    input_data_dir: Path = Path("data/prism_tmax")
    output_dir: Path = Path("output")
    file_pattern: str = "*"
    variable: Optional[str] = None
    nodata: Optional[float] = -9999.0

    def __post_init__(self):
        """Resolve environment variables and convert to Path objects."""
        self.input_data_dir = Path(os.path.expandvars(str(self.input_data_dir)))
        self.output_dir = Path(os.path.expandvars(str(self.output_dir)))

    @property
    def climatology_dir(self) -> Path:
        return self.output_dir / "climatology"

    @property
    def frames_dir(self) -> Path:
        return self.output_dir / "frames"


@dataclass
class SmoothingConfig:
    """Seasonal smoothing settings."""
    bandwidth: float = 1.0 / 32.0
    iterations: int = 3
    day_convention: str = "noleap"  # "noleap" (365 days) or "all_leap" (366 days)
    min_years: int = 1


@dataclass
class ProcessingConfig:
    """Processing configuration settings."""
    max_workers: int = 4
    pixels_per_task: int = 2048
    progress_interval: int = 10
    use_rich_progress: bool = True
    compression_level: int = 4


@dataclass
class VisualizationConfig:
    """Rendering settings."""
    cmap: str = "RdYlBu_r"
    vmin: Optional[float] = None
    vmax: Optional[float] = None
    dpi: int = 100
    frame_step: int = 1


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_file: Optional[str] = None
    console_output: bool = True


@dataclass
class ClimateConfig:
    """Main configuration class combining all settings."""
    paths: PathsConfig = field(default_factory=PathsConfig)
    smoothing: SmoothingConfig = field(default_factory=SmoothingConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    visualization: VisualizationConfig = field(default_factory=VisualizationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_file: Optional[Union[str, Path]] = None,
             use_environment: bool = True) -> "ClimateConfig":
        """
        Build a configuration from defaults, a YAML file and the environment.

        Args:
            config_file: Explicit YAML file. If None, the default locations
                are searched and the first existing file is used.
            use_environment: Whether to apply TMAX_* environment variables.

        Raises:
            ConfigurationError: If an explicit config file is missing or invalid.
        """
        config = cls()

        if config_file is not None:
            config._update_from_dict(_read_yaml(Path(config_file)))
            logger.info(f"Loaded configuration from {config_file}")
        else:
            config._load_from_config_file()

        if use_environment:
            config._load_from_environment()

        config.validate()
        return config

    def _load_from_environment(self):
        """Load configuration from environment variables."""
        if "TMAX_INPUT_DIR" in os.environ:
            self.paths.input_data_dir = Path(os.environ["TMAX_INPUT_DIR"])

        if "TMAX_OUTPUT_DIR" in os.environ:
            self.paths.output_dir = Path(os.environ["TMAX_OUTPUT_DIR"])

        if "TMAX_BANDWIDTH" in os.environ:
            try:
                self.smoothing.bandwidth = float(os.environ["TMAX_BANDWIDTH"])
            except ValueError:
                logger.warning("Invalid TMAX_BANDWIDTH value, using default")

        if "TMAX_MAX_WORKERS" in os.environ:
            try:
                self.processing.max_workers = int(os.environ["TMAX_MAX_WORKERS"])
            except ValueError:
                logger.warning("Invalid TMAX_MAX_WORKERS value, using default")

        if "TMAX_LOG_LEVEL" in os.environ:
            self.logging.level = os.environ["TMAX_LOG_LEVEL"].upper()

        if "TMAX_LOG_FILE" in os.environ:
            self.logging.log_file = os.environ["TMAX_LOG_FILE"]

    def _load_from_config_file(self):
        """Load configuration from the first YAML file found in the default locations."""
        config_paths = [
            Path.cwd() / DEFAULT_CONFIG_FILENAME,
            Path.home() / ".tmax_normals" / "config.yaml",
        ]

        for config_path in config_paths:
            if config_path.exists():
                try:
                    self._update_from_dict(_read_yaml(config_path))
                    logger.info(f"Loaded configuration from {config_path}")
                    break
                except ConfigurationError as e:
                    logger.warning(f"Failed to load config from {config_path}: {e}")

    def _update_from_dict(self, config_dict: Dict[str, Any]):
        """Update configuration from dictionary."""
        sections = {
            "paths": self.paths,
            "smoothing": self.smoothing,
            "processing": self.processing,
            "visualization": self.visualization,
            "logging": self.logging,
        }

        for section_name, values in config_dict.items():
            section = sections.get(section_name)
            if section is None:
                logger.warning(f"Ignoring unknown configuration section: {section_name}")
                continue
            if not isinstance(values, dict):
                raise ConfigurationError(f"Section '{section_name}' must be a mapping")
            for key, value in values.items():
                if hasattr(section, key):
                    setattr(section, key, value)
                else:
                    logger.warning(f"Ignoring unknown setting: {section_name}.{key}")

        self.paths.__post_init__()

    def validate(self):
        """Check settings that would otherwise fail deep inside processing."""
        bandwidth = self.smoothing.bandwidth
        if not isinstance(bandwidth, (int, float)) or not 0 < bandwidth <= 1:
            raise ConfigurationError(f"smoothing.bandwidth must lie in (0, 1], got {bandwidth}")

        if self.smoothing.day_convention not in ("noleap", "all_leap"):
            raise ConfigurationError(
                f"smoothing.day_convention must be 'noleap' or 'all_leap', "
                f"got {self.smoothing.day_convention}"
            )

        if self.processing.pixels_per_task < 1:
            raise ConfigurationError("processing.pixels_per_task must be >= 1")

        if self.visualization.frame_step < 1:
            raise ConfigurationError("visualization.frame_step must be >= 1")

    def to_dict(self) -> Dict[str, Any]:
        """Plain dictionary with YAML-friendly values."""
        config_dict = asdict(self)
        config_dict["paths"]["input_data_dir"] = str(self.paths.input_data_dir)
        config_dict["paths"]["output_dir"] = str(self.paths.output_dir)
        return config_dict

    def save_config(self, config_path: Path):
        """Save current configuration to YAML file."""
        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, indent=2)

        logger.info(f"Configuration saved to {config_path}")

    def create_output_directories(self):
        """Create all output directories if they don't exist."""
        for directory in (self.paths.output_dir, self.paths.climatology_dir, self.paths.frames_dir):
            directory.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Created directory: {directory}")


def _read_yaml(config_path: Path) -> Dict[str, Any]:
    """Read a YAML mapping, raising ConfigurationError on any problem."""
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if config_data is None:
        return {}
    if not isinstance(config_data, dict):
        raise ConfigurationError(f"Configuration in {config_path} must be a mapping")
    return config_data


# Global configuration instance
_config = None

def get_config() -> ClimateConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = ClimateConfig.load()
    return _config

def set_config(config: ClimateConfig):
    """Set the global configuration instance."""
    global _config
    _config = config

def reset_config():
    """Reset configuration to defaults."""
    global _config
    _config = None

def create_sample_config(config_path: Optional[Path] = None) -> Path:
    """Create a sample configuration file."""
    if config_path is None:
        config_path = Path.cwd() / DEFAULT_CONFIG_FILENAME

    config = ClimateConfig()
    config.save_config(config_path)
    return Path(config_path)
