"""Shared error classification helpers for model transport failures."""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum

from scribe.ai.providers.base import MalformedResponseError, ModelHTTPError, ModelNetworkError, ModelRateLimitError, ModelTimeoutError

_RATE_LIMIT_HINTS: tuple[str, ...] = (
  "429",
  "rate limit",
  "too many requests",
  "limit_requests",
  "quota exceeded",
  "resource exhausted",
)

_TIMEOUT_HINTS: tuple[str, ...] = (
  "timeout",
  "timed out",
)

_NETWORK_HINTS: tuple[str, ...] = (
  "connection",
  "network",
  "name resolution",
  "unreachable",
)


class FailureKind(StrEnum):
  """Classification of a failed model call."""

  RATE_LIMIT = "rate_limit"
  TIMEOUT = "timeout"
  NETWORK = "network"
  HTTP = "http"
  MALFORMED = "malformed"
  UNKNOWN = "unknown"


def _match_hint(message: str, hints: Iterable[str]) -> bool:
  """Return True when any hint appears in the message."""
  return any(hint in message for hint in hints)


def classify_failure(exc: BaseException) -> FailureKind:
  """Map an exception raised by a provider onto a failure kind."""
  # Typed transport errors win over message sniffing.
  if isinstance(exc, ModelRateLimitError):
    return FailureKind.RATE_LIMIT
  if isinstance(exc, ModelTimeoutError):
    return FailureKind.TIMEOUT
  if isinstance(exc, ModelNetworkError):
    return FailureKind.NETWORK
  if isinstance(exc, ModelHTTPError):
    if exc.status_code == 429 or _match_hint(exc.body.lower(), _RATE_LIMIT_HINTS):
      return FailureKind.RATE_LIMIT
    return FailureKind.HTTP
  if isinstance(exc, MalformedResponseError):
    return FailureKind.MALFORMED

  message = str(exc).lower()
  if _match_hint(message, _RATE_LIMIT_HINTS):
    return FailureKind.RATE_LIMIT
  if isinstance(exc, TimeoutError) or _match_hint(message, _TIMEOUT_HINTS):
    return FailureKind.TIMEOUT
  if isinstance(exc, ConnectionError) or _match_hint(message, _NETWORK_HINTS):
    return FailureKind.NETWORK
  return FailureKind.UNKNOWN


def describe_failure(kind: FailureKind, exc: BaseException) -> str:
  """Render the user-visible text returned in place of model output."""
  detail = str(exc) or type(exc).__name__
  if kind is FailureKind.TIMEOUT:
    return f"Request timeout: {detail}"
  if kind is FailureKind.NETWORK:
    return f"Network error: {detail}"
  if kind is FailureKind.HTTP:
    return f"HTTP error: {detail}"
  if kind is FailureKind.MALFORMED:
    return f"Malformed response: {detail}"
  return f"Error occurred while calling the LLM: {detail}"
