"""LLM integration for listing moderation.

Provides a thin async wrapper around the Anthropic API and the moderation
prompt template.
"""

from listing_guard.llm.client import ClassifierError, ImagePart, LLMClient, LLMResponse

__all__ = [
    "ClassifierError",
    "ImagePart",
    "LLMClient",
    "LLMResponse",
]
