"""Resilient multi-provider AI orchestration for blueprint generation."""

__version__ = "1.0.0"
