"""Concurrent execution and terminal-signal extraction for AI command-line agents."""

__version__ = "0.1.0"
