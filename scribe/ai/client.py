"""Model client: one logical LLM call with rate-limit backoff and an audit trail."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from scribe.ai.backoff import Sleep, exponential_delay
from scribe.ai.errors import FailureKind, classify_failure, describe_failure
from scribe.ai.pipeline.contracts import utc_now
from scribe.ai.providers.base import Provider
from scribe.jobs.context import RunContext
from scribe.services.history_client import HistoryBackend, HistoryUnavailableError
from scribe.telemetry.prompt_audit import PromptAuditLog, PromptRecord, PromptStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
RATE_LIMIT_SKIP_TEXT = "Rate limit error occurred, skipping this term."
MOCK_RESPONSE_TEMPLATE = (
  "This is a mock response because no API key is configured.\n"
  "To get real content, please set your API key using one of these environment variables: "
  "DASHSCOPE_API_KEY, IDEALAB_API_KEY or OPENAI_API_KEY.\n\n"
  'Your prompt was: "{preview}..."'
)


class ResultKind(StrEnum):
  """Outcome tag of a model call."""

  SUCCESS = "success"
  RATE_LIMITED = "rate_limited"
  ERROR = "error"
  TIMEOUT = "timeout"


_AUDIT_STATUS: dict[ResultKind, PromptStatus] = {
  ResultKind.SUCCESS: "success",
  ResultKind.RATE_LIMITED: "error",
  ResultKind.ERROR: "error",
  ResultKind.TIMEOUT: "timeout",
}


@dataclass(frozen=True)
class CallOptions:
  """Per-call overrides of the client defaults."""

  model: str | None = None
  temperature: float | None = None
  max_tokens: int | None = None


@dataclass(frozen=True)
class ModelResult:
  """Tagged result of a model call.

  `text` is always populated: the completion on success, the skip sentinel
  when rate limits were exhausted, or a readable error description otherwise.
  """

  text: str
  kind: ResultKind
  record_id: str | None = None
  attempts: int = 1
  mock: bool = False

  @property
  def ok(self) -> bool:
    return self.kind is ResultKind.SUCCESS


class ModelClient:
  """Issue prompts against the configured provider without ever raising for transport failures."""

  def __init__(
    self,
    provider: Provider | None,
    audit: PromptAuditLog,
    *,
    default_model: str,
    temperature: float = 0.7,
    max_tokens: int = 8000,
    max_retries: int = DEFAULT_MAX_RETRIES,
    sleep: Sleep = asyncio.sleep,
    clock: Callable[[], datetime] = utc_now,
    mirror: HistoryBackend | None = None,
  ) -> None:
    self._provider = provider
    self._audit = audit
    self._default_model = default_model
    self._temperature = temperature
    self._max_tokens = max_tokens
    self._max_retries = max_retries
    self._backoff = exponential_delay(2.0)
    self._sleep = sleep
    self._clock = clock
    self._mirror = mirror

  @property
  def is_mock(self) -> bool:
    return self._provider is None

  @property
  def provider_name(self) -> str:
    return self._provider.name if self._provider is not None else "mock"

  async def call(self, prompt: str, options: CallOptions | None = None, ctx: RunContext | None = None) -> ModelResult:
    """Run one logical call; rate limits are retried, every other failure is returned as text."""
    options = options or CallOptions()
    model_name = options.model or self._default_model
    task_id = ctx.task_id if ctx is not None else None
    metadata = {"temperature": options.temperature, "max_tokens": options.max_tokens, "provider": self.provider_name}
    # The pending record is written before any network activity.
    record = self._audit.start(prompt=prompt, model=model_name, task_id=task_id, timestamp=self._clock(), metadata=metadata)

    if self._provider is None:
      result = ModelResult(text=MOCK_RESPONSE_TEMPLATE.format(preview=prompt[:100]), kind=ResultKind.SUCCESS, record_id=record.id, mock=True)
      await self._finish(record, result, audit_text=result.text, ctx=ctx)
      return result

    result, audit_text = await self._call_with_backoff(prompt, model_name, options, record.id)
    await self._finish(record, result, audit_text=audit_text, ctx=ctx)
    return result

  async def _call_with_backoff(self, prompt: str, model_name: str, options: CallOptions, record_id: str) -> tuple[ModelResult, str]:
    assert self._provider is not None
    model = self._provider.get_model(model_name)
    temperature = self._temperature if options.temperature is None else options.temperature
    max_tokens = options.max_tokens or self._max_tokens
    retries = 0

    while True:
      attempts = retries + 1
      try:
        response = await model.generate(prompt, temperature=temperature, max_tokens=max_tokens)
      except Exception as exc:  # noqa: BLE001
        kind = classify_failure(exc)
        if kind is FailureKind.RATE_LIMIT:
          if retries >= self._max_retries:
            logger.error("Rate limit persisted after %d retries for record %s", self._max_retries, record_id)
            audit_text = f"Rate limit exceeded after {self._max_retries} retries, skipping this term."
            return ModelResult(text=RATE_LIMIT_SKIP_TEXT, kind=ResultKind.RATE_LIMITED, record_id=record_id, attempts=attempts), audit_text
          retries += 1
          delay = self._backoff(retries)
          logger.warning("Rate limit hit (retry %d/%d); waiting %.0fs: %s", retries, self._max_retries, delay, exc)
          await self._sleep(delay)
          continue

        text = describe_failure(kind, exc)
        result_kind = ResultKind.TIMEOUT if kind is FailureKind.TIMEOUT else ResultKind.ERROR
        logger.error("Model call failed (%s) for record %s: %s", kind.value, record_id, exc)
        return ModelResult(text=text, kind=result_kind, record_id=record_id, attempts=attempts), text

      content = response.content
      logger.info("Model call succeeded for record %s (%d chars, %d attempts)", record_id, len(content), attempts)
      return ModelResult(text=content, kind=ResultKind.SUCCESS, record_id=record_id, attempts=attempts), content

  async def _finish(self, record: PromptRecord, result: ModelResult, *, audit_text: str, ctx: RunContext | None) -> None:
    final = self._audit.finalize(record.id, response=audit_text, status=_AUDIT_STATUS[result.kind], completed_at=self._clock())
    if final is None:
      final = record.model_copy(update={"response": audit_text, "status": _AUDIT_STATUS[result.kind]})
    if ctx is not None:
      ctx.record_prompt(final)
    if self._mirror is None:
      return
    try:
      await self._mirror.save(final.model_dump(mode="json"), title=f"prompt_{final.id}", query=ctx.query_label if ctx else None, entry_type="prompt-record")
    except HistoryUnavailableError as exc:
      logger.warning("Could not mirror prompt record %s to history: %s", final.id, exc)
