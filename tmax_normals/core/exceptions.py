"""
Exception types for seasonal smoothing and configuration handling.
"""


class SeasonalSmoothingError(Exception):
    """Base class for errors raised while smoothing a daily climatology series."""
    pass


class InvalidBandwidthError(SeasonalSmoothingError, ValueError):
    """Raised when the smoothing bandwidth lies outside (0, 1]."""
    pass


class LengthMismatchError(SeasonalSmoothingError, ValueError):
    """Raised when a series length does not match the grid's day-of-year length."""

    def __init__(self, actual: int, expected: int):
        self.actual = actual
        self.expected = expected
        super().__init__(f"Series has {actual} samples, expected {expected}")


class NumericNonConvergenceError(SeasonalSmoothingError):
    """Raised when the local regression produces non-finite values for valid input."""
    pass


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""
    pass
