"""Hearth: conversational state and delivery engine."""

__version__ = "0.1.0"
