"""Quiet one-line text rendering of dnstap messages."""

__version__ = "0.1.0"
