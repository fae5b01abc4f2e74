"""Provider implementations."""

from __future__ import annotations

from scribe.ai.providers.base import AIModel, ModelResponse, Provider, SimpleModelResponse
from scribe.ai.providers.openai_compat import OpenAICompatibleModel, OpenAICompatibleProvider
from scribe.config import Settings

__all__ = ["AIModel", "ModelResponse", "SimpleModelResponse", "Provider", "OpenAICompatibleModel", "OpenAICompatibleProvider", "build_provider"]


def build_provider(settings: Settings) -> Provider | None:
  """Return the configured provider, or None when no credential is set."""
  if settings.llm_api_key is None or settings.llm_base_url is None:
    return None
  return OpenAICompatibleProvider(
    settings.llm_provider or "openai",
    api_key=settings.llm_api_key,
    base_url=settings.llm_base_url,
    timeout_seconds=settings.request_timeout_seconds,
    default_model=settings.default_model,
    default_temperature=settings.temperature,
    default_max_tokens=settings.max_tokens,
  )
