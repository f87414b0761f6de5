"""Trigger and follow builds on remote Jenkins-compatible servers."""

__version__ = "0.1.0"
