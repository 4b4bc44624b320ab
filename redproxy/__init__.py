"""Upstream access layer for a privacy-preserving Reddit front end."""

__version__ = "0.1.0"
