"""Resumable sync of GitHub starred repositories into local storage."""

__version__ = "0.1.0"
