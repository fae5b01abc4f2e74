"""Simulated search: each query is answered by a structured model call."""

from __future__ import annotations

import json
import logging
import re

from scribe.ai.client import CallOptions, ModelClient
from scribe.ai.json_parser import parse_json_object
from scribe.ai.prompts import render_search_prompt
from scribe.jobs.context import RunContext

logger = logging.getLogger(__name__)

SEARCH_MAX_TOKENS = 4000
SEARCH_TEMPERATURE = 0.5
SEARCH_CATEGORIES: tuple[str, ...] = ("concepts", "subtopics", "applications", "background", "trends", "challenges", "solutions")
FALLBACK_QUERY = "general search"
MAX_QUERY_CHARS = 100
MAX_SENTENCE_CHARS = 80
MAX_QUERY_WORDS = 8

_ARTIFACT_PATTERNS: tuple[re.Pattern[str], ...] = (
  re.compile(r"请提供.*?信息[:：]"),
  re.compile(r"^.*?要求[:：]"),
  re.compile(r"\*\*.*?\*\*"),
  re.compile(r"\[.*?\]"),
  re.compile(r"内容[:：].*"),
  re.compile(r"分析[:：].*"),
  re.compile(r"^.*?定义与基本概念.*"),
  re.compile(r"^.*?技术原理与机制.*"),
)
_TOPIC_INTRO_RE = re.compile(r"主题[:：]\s*([^\n]+)")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?。！？]")
_QUOTES = "\"'“”‘’「」"


class SearchError(RuntimeError):
  """Raised when a search call does not produce usable results."""


def clean_search_query(query: str) -> str:
  """Strip prompt artifacts so a planned query reads like search keywords."""
  cleaned = query.strip().strip(_QUOTES).lstrip("-*• ").strip()

  # A "主题：X" introduction names the actual topic.
  topic_match = _TOPIC_INTRO_RE.search(cleaned)
  if topic_match:
    cleaned = topic_match.group(1).strip()

  for pattern in _ARTIFACT_PATTERNS:
    cleaned = pattern.sub("", cleaned).strip()

  if len(cleaned) > MAX_QUERY_CHARS:
    first_sentence = _SENTENCE_SPLIT_RE.split(cleaned, maxsplit=1)[0].strip()
    if first_sentence and len(first_sentence) <= MAX_SENTENCE_CHARS:
      cleaned = first_sentence
    else:
      cleaned = " ".join(cleaned.split()[:MAX_QUERY_WORDS])

  return cleaned or FALLBACK_QUERY


def flatten_search_payload(raw: str) -> list[str]:
  """Flatten the category lists of a search reply; unparsable replies fall back to their lines."""
  try:
    payload = parse_json_object(raw)
  except json.JSONDecodeError:
    return [line.strip() for line in raw.splitlines() if line.strip()]

  results: list[str] = []
  for category in SEARCH_CATEGORIES:
    values = payload.get(category)
    if isinstance(values, list):
      results.extend(str(value).strip() for value in values if str(value).strip())
  return results


class SearchService:
  """Answer a search query with a structured model call."""

  def __init__(self, client: ModelClient) -> None:
    self._client = client

  async def search(self, query: str, *, model: str | None = None, ctx: RunContext | None = None) -> list[str]:
    result = await self._client.call(render_search_prompt(query), CallOptions(model=model, max_tokens=SEARCH_MAX_TOKENS, temperature=SEARCH_TEMPERATURE), ctx)
    if not result.ok:
      raise SearchError(result.text)
    results = flatten_search_payload(result.text)
    if not results:
      raise SearchError(f"Empty search results for {query!r}")
    logger.info("Search %r returned %d results", query[:60], len(results))
    return results
