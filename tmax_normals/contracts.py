"""
Pydantic contracts for smoothing parameters and grid smoothing summaries.

These contracts define what the smoothing stage accepts and what it reports,
so that downstream rendering and export steps can validate the metadata
written alongside each smoothed climatology.
"""

from datetime import datetime
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator


class SmoothingParametersContract(BaseModel):
    """Parameters of the circular LOWESS smoother."""
    bandwidth: float = Field(1.0 / 32.0, gt=0.0, le=1.0,
                             description="Fraction of the tripled series per local fit")
    iterations: int = Field(3, ge=0, description="Robustness iterations")
    series_length: int = Field(365, ge=1, description="Day-of-year length, normally 365 or 366")

    @property
    def window_days(self) -> float:
        """Neighbourhood width in days."""
        return self.bandwidth * 3 * self.series_length


class PixelFailureContract(BaseModel):
    """A pixel whose series could not be smoothed."""
    index: Tuple[int, ...]
    error_type: str
    message: str

    @field_validator('error_type')
    @classmethod
    def validate_error_type(cls, v):
        if not v:
            raise ValueError('error_type must not be empty')
        return v


class GridSmoothingSummary(BaseModel):
    """Outcome of smoothing every pixel of a grid."""
    shape: Tuple[int, ...]
    total_pixels: int = Field(..., ge=0)
    smoothed_pixels: int = Field(..., ge=0)
    all_missing_pixels: int = Field(..., ge=0)
    failed_pixels: int = Field(..., ge=0)
    skipped_pixels: int = Field(0, ge=0, description="Pixels never dispatched after cancellation")
    cancelled: bool = False
    elapsed_seconds: float = Field(..., ge=0)
    parameters: SmoothingParametersContract
    failures: List[PixelFailureContract] = Field(default_factory=list,
                                                 description="First failures, for inspection")
    completed_at: datetime = Field(default_factory=datetime.now)
    source: Optional[str] = None

    @property
    def success_rate(self) -> float:
        """Fraction of pixels that were smoothed or passed through as all-missing."""
        if self.total_pixels == 0:
            return 1.0
        return (self.smoothed_pixels + self.all_missing_pixels) / self.total_pixels
