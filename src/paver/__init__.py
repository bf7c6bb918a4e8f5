"""Paver: validation, verification and coverage for PAVED documentation."""

__version__ = "0.1.0"
