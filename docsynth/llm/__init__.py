"""Generative-text provider adapters."""

from .runner import LLMRequest, LLMRunner, parse_structured

__all__ = ["LLMRequest", "LLMRunner", "parse_structured"]
