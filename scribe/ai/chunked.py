"""Sequential chunked generation for outputs larger than one call can return."""

from __future__ import annotations

import asyncio
import logging
import math

from scribe.ai.backoff import Sleep
from scribe.ai.client import CallOptions, ModelClient
from scribe.ai.prompts import render_chunk_prompt
from scribe.jobs.context import RunContext

logger = logging.getLogger(__name__)

MAX_TOKENS_PER_CALL = 6000
WORDS_PER_TOKEN = 0.75


class ChunkedGenerationError(RuntimeError):
  """Raised when any chunk fails; partial long content is never assembled."""

  def __init__(self, part: int, total: int, detail: str) -> None:
    super().__init__(f"Chunk {part}/{total} failed: {detail}")
    self.part = part
    self.total = total
    self.detail = detail


class ChunkedGenerator:
  """Split one large request into sequential continuation calls.

  Each chunk sees the tail of what came before it, so chunks cannot run in
  parallel. A short pause separates calls to avoid bursting the provider.
  """

  def __init__(self, client: ModelClient, *, max_tokens_per_call: int = MAX_TOKENS_PER_CALL, delay_seconds: float = 1.0, sleep: Sleep = asyncio.sleep) -> None:
    self._client = client
    self._max_tokens_per_call = max_tokens_per_call
    self._delay_seconds = delay_seconds
    self._sleep = sleep

  @property
  def words_per_call(self) -> int:
    """Output budget of a single call, in words."""
    return math.floor(self._max_tokens_per_call * WORDS_PER_TOKEN)

  def chunk_count(self, desired_words: int) -> int:
    return max(1, math.ceil(desired_words / self.words_per_call))

  async def generate_long(self, base_prompt: str, desired_words: int, options: CallOptions | None = None, ctx: RunContext | None = None) -> str:
    total = self.chunk_count(desired_words)
    call_options = CallOptions(
      model=options.model if options else None,
      temperature=options.temperature if options else None,
      max_tokens=min(options.max_tokens or self._max_tokens_per_call, self._max_tokens_per_call) if options else self._max_tokens_per_call,
    )
    logger.info("Generating %d words in %d chunk(s) of up to %d words", desired_words, total, self.words_per_call)

    parts: list[str] = []
    for index in range(total):
      previous = " ".join(parts)
      prompt = render_chunk_prompt(base_prompt=base_prompt, previous=previous, part=index + 1, total=total, words=self.words_per_call)
      result = await self._client.call(prompt, call_options, ctx)
      if not result.ok:
        raise ChunkedGenerationError(index + 1, total, result.text)
      parts.append(result.text)
      if index < total - 1:
        await self._sleep(self._delay_seconds)

    return " ".join(parts).strip()
