"""Resolve sparse Token Metadata instruction requests into complete instructions."""

__version__ = "0.1.0"
