"""Woods Hole water clarity forecasting."""

__version__ = "1.0.0"
