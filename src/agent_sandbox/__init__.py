"""Sandboxed container launcher for AI coding agents."""

__version__ = "0.1.0"
