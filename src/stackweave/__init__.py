"""Stackweave: staged infrastructure composition with deferred values."""

__version__ = "0.1.0"
