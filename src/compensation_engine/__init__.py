"""Compensation engine: salary component resolution, payrun lifecycle and statements."""

__version__ = "0.1.0"
