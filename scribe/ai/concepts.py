"""Difficult-term extraction and per-term explanation."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from scribe.ai.backoff import AttemptRejected, RetryPolicy, fixed_delay
from scribe.ai.client import CallOptions, ModelClient, ResultKind
from scribe.ai.fanout import fan_out_with_fallback
from scribe.ai.json_parser import parse_json_object
from scribe.ai.pipeline.contracts import ExtractedConcept, KnowledgeBaseEntry
from scribe.ai.prompts import render_explanation_prompt, render_extraction_prompt
from scribe.jobs.context import RunContext
from scribe.utils.ids import generate_record_id

logger = logging.getLogger(__name__)

EXTRACTION_CONTENT_CHARS = 20000
EXTRACTION_MAX_TOKENS = 6000
EXPANSION_SNIPPET_CHARS = 5000
EXPANSION_MAX_TOKENS = 4000
MIN_EXPLANATION_LENGTH = 50
MAX_FALLBACK_TERMS = 10

_CAPITALIZED_TERM_RE = re.compile(r"\b([A-Z][a-zA-Z]{2,})\b")
_DIFFICULTIES = {"high", "medium", "low"}


def placeholder_definition(term: str) -> str:
  return f"Detailed explanation for {term} would be generated here."


def heuristic_concepts(content: str, *, limit: int = MAX_FALLBACK_TERMS) -> list[ExtractedConcept]:
  """Best-effort term list: unique capitalized words in order of appearance."""
  seen: set[str] = set()
  concepts: list[ExtractedConcept] = []
  for match in _CAPITALIZED_TERM_RE.finditer(content):
    term = match.group(1)
    if term in seen:
      continue
    seen.add(term)
    concepts.append(ExtractedConcept(term=term, location="content", difficulty="medium"))
    if len(concepts) >= limit:
      break
  return concepts


def parse_concepts(raw: str) -> list[ExtractedConcept]:
  """Read `complexConcepts` from a model reply, dropping malformed items and duplicates."""
  payload = parse_json_object(raw)
  items = payload.get("complexConcepts")
  if not isinstance(items, list):
    raise json.JSONDecodeError("complexConcepts missing", raw, 0)

  concepts: list[ExtractedConcept] = []
  seen: set[str] = set()
  for item in items:
    if not isinstance(item, dict):
      continue
    term = str(item.get("term") or "").strip()
    if not term or term.lower() in seen:
      continue
    seen.add(term.lower())
    difficulty = str(item.get("difficultyLevel") or "medium").strip().lower()
    concepts.append(
      ExtractedConcept(
        term=term,
        location=str(item.get("locationInContent") or ""),
        difficulty=difficulty if difficulty in _DIFFICULTIES else "medium",
        brief_description=str(item.get("briefDescription") or ""),
      )
    )
  return concepts


@dataclass(frozen=True)
class _Expansion:
  index: int
  entry: KnowledgeBaseEntry | None


EntryCallback = Callable[[KnowledgeBaseEntry | None, int], None]


class ConceptPipeline:
  """Extract difficult terms from content, then explain each one concurrently."""

  def __init__(self, client: ModelClient, *, extraction_policy: RetryPolicy | None = None, expansion_policy: RetryPolicy | None = None) -> None:
    self._client = client
    # Exhausted extraction attempts fall back to the regex heuristic.
    self._extraction_policy = extraction_policy or RetryPolicy(max_attempts=3, delay=fixed_delay(2.0))
    self._expansion_policy = expansion_policy or RetryPolicy(max_attempts=3, delay=fixed_delay(1.0))

  async def extract_concepts(self, topic: str, content: str, *, model: str | None = None, ctx: RunContext | None = None) -> list[ExtractedConcept]:
    prompt = render_extraction_prompt(topic, content[:EXTRACTION_CONTENT_CHARS])
    options = CallOptions(model=model, max_tokens=EXTRACTION_MAX_TOKENS)

    async def _attempt(attempt: int) -> list[ExtractedConcept]:
      result = await self._client.call(prompt, options, ctx)
      if not result.ok:
        raise AttemptRejected(result.text)
      concepts = parse_concepts(result.text)
      if not concepts:
        raise AttemptRejected("no concepts in reply")
      return concepts

    def _fallback() -> list[ExtractedConcept]:
      return heuristic_concepts(content)

    concepts = await self._extraction_policy.run(_attempt, fallback=_fallback, label="Concept extraction")
    logger.info("Extracted %d concepts for topic %r", len(concepts), topic[:80])
    return concepts

  async def expand_concepts(
    self,
    concepts: Sequence[ExtractedConcept],
    topic: str,
    content: str,
    *,
    model: str | None = None,
    ctx: RunContext | None = None,
    on_entry: EntryCallback | None = None,
  ) -> list[KnowledgeBaseEntry]:
    """Explain every concept; rate-limited terms are dropped, failed terms get a placeholder."""
    snippet = content[:EXPANSION_SNIPPET_CHARS]
    options = CallOptions(model=model, max_tokens=EXPANSION_MAX_TOKENS)

    async def _expand(index: int, concept: ExtractedConcept) -> _Expansion:
      prompt = render_explanation_prompt(term=concept.term, topic=topic, location=concept.location, snippet=snippet)

      async def _attempt(attempt: int) -> KnowledgeBaseEntry | None:
        result = await self._client.call(prompt, options, ctx)
        if result.kind is ResultKind.RATE_LIMITED:
          logger.warning("Skipping term %r after persistent rate limiting", concept.term)
          return None
        if not result.ok:
          raise AttemptRejected(result.text)
        definition = result.text.strip()
        if len(definition) <= MIN_EXPLANATION_LENGTH:
          raise AttemptRejected(f"explanation for {concept.term!r} returned {len(definition)} chars")
        return self._entry(concept, definition, topic)

      def _placeholder() -> KnowledgeBaseEntry:
        return self._entry(concept, placeholder_definition(concept.term), topic)

      entry = await self._expansion_policy.run(_attempt, fallback=_placeholder, label=f"Term '{concept.term}'")
      return _Expansion(index=index, entry=entry)

    def _on_result(expansion: _Expansion, done: int) -> None:
      if on_entry is not None:
        on_entry(expansion.entry, done)

    expansions = await fan_out_with_fallback(list(concepts), _expand, label="Concept expansion", on_result=_on_result)
    expansions.sort(key=lambda expansion: expansion.index)
    entries = [expansion.entry for expansion in expansions if expansion.entry is not None]
    logger.info("Expanded %d of %d concepts", len(entries), len(concepts))
    return entries

  @staticmethod
  def _entry(concept: ExtractedConcept, definition: str, topic: str) -> KnowledgeBaseEntry:
    return KnowledgeBaseEntry(id=generate_record_id(), term=concept.term, definition=definition, context=concept.location, related_terms=[], source=topic, difficulty=concept.difficulty)
