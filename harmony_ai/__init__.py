"""Harmony AI: orchestrated content generation for artists."""

__version__ = "1.0.0"
