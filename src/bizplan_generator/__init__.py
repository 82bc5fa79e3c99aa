"""Multi-stage LLM business plan generator."""

__version__ = "0.1.0"
