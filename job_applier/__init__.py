"""Discover job postings, score them, and apply after human approval."""

__version__ = "0.1.0"
