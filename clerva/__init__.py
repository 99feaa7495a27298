"""Clerva backend: study-partner matching API."""

__version__ = "0.1.0"
