"""Admission, credit accounting and resilient dispatch for a metered image-inference provider."""

__version__ = "1.0.0"
