"""Breathe - guided breathing sessions with haptic cues and ambient noise sampling."""

__version__ = "0.1.0"
