"""OpenAI-compatible chat-completions provider (DashScope, Idealab, OpenAI)."""

from __future__ import annotations

import json
import logging

import openai
from openai import AsyncOpenAI

from scribe.ai.providers.base import AIModel, MalformedResponseError, ModelHTTPError, ModelNetworkError, ModelRateLimitError, ModelResponse, ModelTimeoutError, Provider, SimpleModelResponse

logger = logging.getLogger(__name__)


class OpenAICompatibleModel(AIModel):
  """Single-turn chat-completions client for one model name."""

  def __init__(self, name: str, client: AsyncOpenAI, *, default_temperature: float, default_max_tokens: int) -> None:
    self.name: str = name
    self._client = client
    self._default_temperature = default_temperature
    self._default_max_tokens = default_max_tokens

  async def generate(self, prompt: str, *, temperature: float | None = None, max_tokens: int | None = None) -> ModelResponse:
    """Send the prompt as one user message and return the first choice."""
    try:
      response = await self._client.chat.completions.create(
        model=self.name,
        messages=[{"role": "user", "content": prompt}],
        temperature=self._default_temperature if temperature is None else temperature,
        max_tokens=max_tokens or self._default_max_tokens,
      )
    # Order matters: the timeout error subclasses the connection error.
    except openai.APITimeoutError as exc:
      raise ModelTimeoutError(str(exc)) from exc
    except openai.APIConnectionError as exc:
      raise ModelNetworkError(str(exc)) from exc
    except openai.RateLimitError as exc:
      raise ModelRateLimitError(str(exc)) from exc
    except openai.APIStatusError as exc:
      body = exc.body if isinstance(exc.body, str) else json.dumps(exc.body, ensure_ascii=False)
      raise ModelHTTPError(exc.status_code, exc.response.reason_phrase, body) from exc

    if not response.choices or response.choices[0].message is None:
      raise MalformedResponseError(f"No choices in completion from {self.name}")

    content = response.choices[0].message.content or ""
    logger.debug("Completion from %s (%d chars)", self.name, len(content))
    usage = None
    if response.usage:
      usage = {"prompt_tokens": response.usage.prompt_tokens, "completion_tokens": response.usage.completion_tokens, "total_tokens": response.usage.total_tokens}

    return SimpleModelResponse(content=content, usage=usage)


class OpenAICompatibleProvider(Provider):
  """Provider backed by any endpoint speaking the OpenAI chat-completions protocol."""

  def __init__(self, name: str, *, api_key: str, base_url: str, timeout_seconds: float, default_model: str, default_temperature: float, default_max_tokens: int) -> None:
    self.name: str = name
    self._default_model = default_model
    self._default_temperature = default_temperature
    self._default_max_tokens = default_max_tokens
    # Retries are owned by the model client, so the SDK must not retry on its own.
    self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout_seconds, max_retries=0)
    self._models: dict[str, OpenAICompatibleModel] = {}

  def get_model(self, model: str | None = None) -> AIModel:
    """Return a cached model client sharing one HTTP connection pool."""
    model_name = model or self._default_model
    if model_name not in self._models:
      self._models[model_name] = OpenAICompatibleModel(model_name, self._client, default_temperature=self._default_temperature, default_max_tokens=self._default_max_tokens)
    return self._models[model_name]

  async def aclose(self) -> None:
    await self._client.close()
