"""Scribe: LLM workflow engine for long-form educational articles and glossaries."""

__version__ = "0.1.0"
