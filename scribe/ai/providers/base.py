"""Base interfaces for AI providers and models."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Protocol


class ModelResponse(Protocol):
  """Response contract for model outputs."""

  content: str
  usage: dict[str, int] | None


@dataclass
class SimpleModelResponse:
  """Minimal model response structure."""

  content: str
  usage: dict[str, int] | None = None


class ModelTransportError(Exception):
  """Base class for failures talking to a model endpoint."""


class ModelRateLimitError(ModelTransportError):
  """The provider rejected the call because of rate or quota limits."""


class ModelTimeoutError(ModelTransportError):
  """The call exceeded the hard request timeout."""


class ModelNetworkError(ModelTransportError):
  """The endpoint could not be reached."""


class ModelHTTPError(ModelTransportError):
  """The endpoint answered with a non-success status."""

  def __init__(self, status_code: int, reason: str, body: str) -> None:
    super().__init__(f"{status_code} {reason}. {body}")
    self.status_code = status_code
    self.reason = reason
    self.body = body


class MalformedResponseError(ModelTransportError):
  """The endpoint answered without a usable completion."""


class AIModel(ABC):
  """Abstract base class for AI models."""

  name: str

  @abstractmethod
  async def generate(self, prompt: str, *, temperature: float | None = None, max_tokens: int | None = None) -> ModelResponse:
    """Generate a response for the given prompt."""


class Provider(ABC):
  """Abstract base class for AI providers."""

  name: str

  @abstractmethod
  def get_model(self, model: str | None = None) -> AIModel:
    """Return the model client for the provider."""
