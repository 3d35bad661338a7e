"""Trackly: project time tracking with snapshot synchronization."""

__version__ = "0.3.0"
