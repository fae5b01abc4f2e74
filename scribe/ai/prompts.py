"""Prompt templates and renderers for every pipeline stage."""

from __future__ import annotations

from collections.abc import Sequence
from functools import lru_cache
from pathlib import Path

from scribe.ai.pipeline.contracts import GenerationConfig

_TEMPLATE_DIR = Path(__file__).parent / "templates"

_STYLE_LABELS = {"formal": "正式", "casual": "轻松", "technical": "技术性"}
_AUDIENCE_LABELS = {"beginner": "初学者", "intermediate": "中级读者", "expert": "专家"}

CHUNK_TAIL_CHARS = 1000


@lru_cache(maxsize=None)
def _load_prompt(name: str) -> str:
  try:
    return (_TEMPLATE_DIR / name).read_text(encoding="utf-8").strip()
  except (FileNotFoundError, PermissionError, UnicodeDecodeError) as exc:
    raise RuntimeError(f"Failed to load prompt '{name}': {exc}") from exc


def _replace_placeholders(template: str, values: dict[str, str]) -> str:
  """Substitute {{PLACEHOLDER}} markers with concrete values."""
  rendered = template
  for key, value in values.items():
    rendered = rendered.replace(f"{{{{{key}}}}}", value)
  return rendered


def render_rewrite_prompt(user_input: str) -> str:
  return _replace_placeholders(_load_prompt("rewrite.md"), {"USER_INPUT": user_input})


def render_search_plan_prompt(topic: str) -> str:
  return _replace_placeholders(_load_prompt("search_plan.md"), {"TOPIC": topic})


def render_search_prompt(query: str) -> str:
  return _replace_placeholders(_load_prompt("search_execution.md"), {"QUERY": query})


def render_summary_prompt(search_context: str) -> str:
  return _replace_placeholders(_load_prompt("search_summary.md"), {"SEARCH_CONTEXT": search_context})


def render_section_prompt(*, topic: str, section_title: str, summary: str, previous_titles: Sequence[str], next_titles: Sequence[str], config: GenerationConfig | None = None) -> str:
  """Render one section request; the other titles give ordering cues only."""
  values = {
    "TOPIC": topic,
    "SECTION_TITLE": section_title,
    "SUMMARY": summary,
    "PREVIOUS_SECTIONS": ", ".join(previous_titles) or "无",
    "NEXT_SECTIONS": ", ".join(next_titles) or "无",
    "STYLE": _STYLE_LABELS.get(config.style, config.style) if config else _STYLE_LABELS["formal"],
    "AUDIENCE": _AUDIENCE_LABELS.get(config.target_audience, config.target_audience) if config else _AUDIENCE_LABELS["beginner"],
    "INCLUDE_EXAMPLES": "是" if config is None or config.include_examples else "否",
  }
  return _replace_placeholders(_load_prompt("section.md"), values)


def render_validation_prompt(content: str) -> str:
  return _replace_placeholders(_load_prompt("validation.md"), {"CONTENT": content})


def render_extraction_prompt(topic: str, content: str) -> str:
  return _replace_placeholders(_load_prompt("concept_extraction.md"), {"TOPIC": topic, "CONTENT": content})


def render_explanation_prompt(*, term: str, topic: str, location: str, snippet: str) -> str:
  return _replace_placeholders(_load_prompt("concept_explanation.md"), {"TERM": term, "TOPIC": topic, "LOCATION": location or "未知", "SNIPPET": snippet})


def render_chunk_prompt(*, base_prompt: str, previous: str, part: int, total: int, words: int) -> str:
  """Render the continuation prompt for chunk `part` (1-based) of `total`."""
  previous_block = ""
  if previous:
    previous_block = f"Previous content:\n...{previous[-CHUNK_TAIL_CHARS:]}\n\n"
  values = {"BASE_PROMPT": base_prompt, "PREVIOUS_BLOCK": previous_block, "PART": str(part), "TOTAL": str(total), "WORDS": str(words)}
  return _replace_placeholders(_load_prompt("chunk.md"), values)
