"""Apolo: project/task client core with optimistic sync, plus its remote store service."""

__version__ = "1.0.0"
