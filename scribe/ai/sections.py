"""Parallel generation of the fixed article section catalogue."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence

from scribe.ai.backoff import AttemptRejected, RetryPolicy
from scribe.ai.chunked import ChunkedGenerator
from scribe.ai.client import CallOptions, ModelClient
from scribe.ai.fanout import fan_out_with_fallback
from scribe.ai.pipeline.contracts import GenerationConfig, SectionResult
from scribe.ai.prompts import render_section_prompt
from scribe.jobs.context import RunContext

logger = logging.getLogger(__name__)

SECTION_TITLES: tuple[str, ...] = (
  "定义与基本概念",
  "技术原理与机制",
  "核心组件与架构",
  "应用场景与案例",
  "优势与挑战",
  "发展历程与趋势",
  "实施方法与步骤",
  "最佳实践与建议",
  "相关概念与关联技术",
  "总结与展望",
)
SECTION_MAX_TOKENS = 8000
MIN_SECTION_LENGTH = 100
SECTION_PLACEHOLDER = "[Content generation failed for this section]"

SectionCallback = Callable[[SectionResult, int], None]


def render_sections(sections: Sequence[SectionResult]) -> str:
  """Render sections as markdown in the order given."""
  return "".join(f"## {section.title}\n\n{section.content}\n\n" for section in sections)


class SectionProcessor:
  """Generate every section concurrently with per-section retries and placeholders."""

  def __init__(self, client: ModelClient, chunked: ChunkedGenerator | None = None, *, policy: RetryPolicy | None = None, min_length: int = MIN_SECTION_LENGTH) -> None:
    self._client = client
    self._chunked = chunked
    self._policy = policy or RetryPolicy()
    self._min_length = min_length

  async def generate_sections(
    self,
    topic: str,
    section_titles: Sequence[str],
    context: str,
    *,
    config: GenerationConfig | None = None,
    ctx: RunContext | None = None,
    on_section: SectionCallback | None = None,
  ) -> list[SectionResult]:
    """Return one result per title, in the order of `section_titles`."""
    titles = list(section_titles)
    options = CallOptions(model=config.model if config else None, max_tokens=SECTION_MAX_TOKENS)
    target_words = math.ceil(config.word_count / len(titles)) if config and config.word_count and titles else None

    async def _generate(index: int, title: str) -> SectionResult:
      prompt = render_section_prompt(
        topic=topic,
        section_title=title,
        summary=context,
        previous_titles=titles[:index],
        next_titles=titles[index + 1 :],
        config=config,
      )

      async def _attempt(attempt: int) -> SectionResult:
        text = (await self._generate_text(prompt, target_words, options, ctx)).strip()
        if len(text) <= self._min_length:
          raise AttemptRejected(f"section '{title}' returned {len(text)} chars")
        return SectionResult(index=index, title=title, content=text)

      def _placeholder() -> SectionResult:
        return SectionResult(index=index, title=title, content=SECTION_PLACEHOLDER, failed=True)

      return await self._policy.run(_attempt, fallback=_placeholder, label=f"Section '{title}'")

    logger.info("Generating %d sections for topic %r", len(titles), topic[:80])
    results = await fan_out_with_fallback(titles, _generate, label="Section generation", on_result=on_section)
    # Completion order is arbitrary; restore the catalogue order.
    results.sort(key=lambda section: section.index)
    failed = sum(1 for section in results if section.failed)
    if failed:
      logger.warning("%d of %d sections fell back to the placeholder", failed, len(results))
    return results

  async def _generate_text(self, prompt: str, target_words: int | None, options: CallOptions, ctx: RunContext | None) -> str:
    # Sections larger than one call's budget are built from sequential chunks.
    if self._chunked is not None and target_words is not None and target_words > self._chunked.words_per_call:
      return await self._chunked.generate_long(prompt, target_words, options, ctx)

    result = await self._client.call(prompt, options, ctx)
    if not result.ok:
      raise AttemptRejected(result.text)
    return result.text
