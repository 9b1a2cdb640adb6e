"""Gapless playback of base64 audio fragments delivered as JSON lines."""

__version__ = "1.0.0"
