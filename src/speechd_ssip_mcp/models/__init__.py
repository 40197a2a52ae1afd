"""Data models for values returned by the server."""

from .voice import SynthesisVoice
