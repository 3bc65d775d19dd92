"""Immutable web app deployment: permabundles, environment documents, releases."""

__version__ = "0.3.0"
