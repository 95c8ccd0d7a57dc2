"""Model backends.

Exactly two: the hosted Gemini API and a local OpenAI-compatible server.
The kind is picked once, when a session's provider is created.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from storyteller.errors import ProviderError

from .base import ChatSession, LLMProvider, call_with_retry, to_expected_schema
from .gemini import GeminiProvider
from .local import LocalProvider

if TYPE_CHECKING:
    from storyteller.config import Settings

logger = logging.getLogger(__name__)

__all__ = [
    "ChatSession",
    "GeminiProvider",
    "LLMProvider",
    "LocalProvider",
    "call_with_retry",
    "create_provider",
    "to_expected_schema",
]


def create_provider(settings: Settings) -> LLMProvider:
    """Build the provider selected in settings."""
    common = {
        "generation_timeout": settings.generation_timeout,
        "turns_per_day": settings.turns_per_day,
    }
    if settings.provider == "local":
        logger.info("using local LLM provider at %s", settings.local_url)
        return LocalProvider(
            settings.local_url,
            history_window=settings.local_history_messages,
            **common,
        )
    if settings.provider == "gemini":
        logger.info("using Gemini provider, models=%s", ",".join(settings.text_models))
        return GeminiProvider(settings.api_key, models=settings.text_models, **common)
    raise ProviderError(f"Unknown provider: {settings.provider!r}")
