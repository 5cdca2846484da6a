"""Render API: turns declarative video recipes into rendered videos."""

__version__ = "1.0.0"
