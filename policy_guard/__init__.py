"""Command safety policy engine for AI agent PreToolUse hooks."""

__version__ = "0.1.0"
