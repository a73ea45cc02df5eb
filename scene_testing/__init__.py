"""Scripted UI scenario testing for scene-graph hosts."""

__version__ = "0.4.0"
