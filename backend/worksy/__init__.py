"""Worksy: AI tutoring sandbox with academic-integrity controls and sealed AI Index records."""

__version__ = "0.1.0"
