"""Operator API for the data lake sync pipeline."""

__version__ = "0.1.0"
