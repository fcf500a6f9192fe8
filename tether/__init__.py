"""Tether: keep a local content directory in step with a GitHub branch."""

__version__ = "0.1.0"
