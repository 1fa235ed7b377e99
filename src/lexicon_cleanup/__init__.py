"""Lexicon cleanup: AI-proposed edits for lexicon entries with human review."""

__version__ = "0.1.0"
