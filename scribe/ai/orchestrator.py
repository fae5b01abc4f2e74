"""Orchestration of the multi-stage article pipeline."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from scribe.ai.backoff import AttemptRejected, RetryPolicy, Sleep, fixed_delay
from scribe.ai.chunked import ChunkedGenerator
from scribe.ai.client import CallOptions, ModelClient
from scribe.ai.concepts import ConceptPipeline
from scribe.ai.fanout import fan_out_with_fallback
from scribe.ai.json_parser import parse_json_object
from scribe.ai.pipeline.contracts import ContentNode, GeneratedContent, GenerationConfig, KnowledgeBaseEntry, RewrittenPrompt, SearchRecord, SectionResult, utc_now
from scribe.ai.prompts import render_rewrite_prompt, render_search_plan_prompt, render_summary_prompt, render_validation_prompt
from scribe.ai.search import SearchService, clean_search_query
from scribe.ai.sections import SECTION_TITLES, SectionProcessor, render_sections
from scribe.config import Settings
from scribe.jobs.context import RunContext
from scribe.storage.local_store import LocalContentStore
from scribe.utils.ids import generate_content_id, generate_record_id
from scribe.utils.text import sanitize_file_name

logger = logging.getLogger(__name__)

REWRITE_MAX_TOKENS = 2000
PLAN_MAX_TOKENS = 3000
SUMMARY_MAX_TOKENS = 5000
VALIDATION_MAX_TOKENS = 8000
VALIDATION_CONTENT_CHARS = 20000
MAX_QUERIES = 10
SEARCH_RESULTS_PER_QUERY = 5
SEARCH_RESULT_CHARS = 2000
TITLE_MAX_CHARS = 100
NODE_PREVIEW_CHARS = 500

REWRITE_START_MARKER = "请提供重写后的内容："
REWRITE_END_MARKER = "是否需要包含代码示例和/或数学公式"
SUMMARY_CONTEXT_HEADER = "基于以下搜索结果总结："
GLOSSARY_HEADING = "## 关键术语详解"

FALLBACK_QUERY_TEMPLATES: tuple[str, ...] = (
  "详细解释 {topic} 的定义和核心概念",
  "{topic} 的发展历程和技术演进",
  "{topic} 的实际应用场景和案例",
  "{topic} 面临的挑战和解决方案",
  "{topic} 的未来发展趋势",
)

# Progress milestones on a 100-step scale; per-item updates fill the gaps.
MILESTONE_REWRITE = 5
MILESTONE_PLAN = 10
MILESTONE_SEARCH = 25
MILESTONE_SUMMARY = 30
MILESTONE_SECTIONS = 70
MILESTONE_FINALIZE = 72
MILESTONE_EXTRACTION = 75
MILESTONE_KNOWLEDGE_BASE = 95

_LEADING_PUNCTUATION_RE = re.compile(r"^[^a-zA-Z0-9\u4e00-\u9fa5]+")
_STANDALONE_BOLD_RE = re.compile(r"\n\s*\*\*.*?\*\*")


class WorkflowError(RuntimeError):
  """Raised when an unexpected error escapes every stage-level guard."""

  def __init__(self, stage: str, message: str, *, steps: list[str]) -> None:
    super().__init__(f"Workflow failed during {stage}: {message}")
    self.stage = stage
    self.steps = steps


@dataclass
class _RunState:
  """Mutable state for one workflow run."""

  config: GenerationConfig
  ctx: RunContext
  stage: str = "start"
  steps: list[str] = field(default_factory=list)


def parse_rewrite(text: str, user_input: str) -> RewrittenPrompt | None:
  """Pull the rewritten prompt and a title out of a rewrite reply; None when nothing usable remains."""
  lines = text.split("\n")
  start: int | None = None
  end: int | None = None
  for index, line in enumerate(lines):
    stripped = line.strip()
    if REWRITE_START_MARKER in stripped:
      start = index + 1
    elif REWRITE_END_MARKER in stripped:
      end = index
      break

  cleaned = text
  title: str | None = None
  if start is not None:
    body = lines[start:end] if end is not None and end >= start else lines[start:]
    cleaned = "\n".join(body).strip()
    title = next((line.strip()[:TITLE_MAX_CHARS] for line in body if line.strip() and line.strip()[0] not in "#-*"), None)

  cleaned = cleaned.strip().strip("\"'")
  cleaned = _LEADING_PUNCTUATION_RE.sub("", cleaned)
  cleaned = _STANDALONE_BOLD_RE.sub("\n", cleaned).strip()
  if not cleaned:
    return None

  if title is None:
    first_line = cleaned.split("\n", 1)[0].lstrip("#").strip()
    title = first_line if len(first_line) <= TITLE_MAX_CHARS else user_input[:50] + "..."
  return RewrittenPrompt(prompt=cleaned, title=title)


def fallback_queries(topic: str) -> list[str]:
  return [template.format(topic=topic) for template in FALLBACK_QUERY_TEMPLATES]


def build_search_context(records: Sequence[SearchRecord]) -> str:
  """Concatenate search results for summarization, truncating each record."""
  parts = [f"{SUMMARY_CONTEXT_HEADER}\n\n"]
  for record in records:
    joined = "; ".join(record.results[:SEARCH_RESULTS_PER_QUERY])[:SEARCH_RESULT_CHARS]
    parts.append(f"搜索查询: {record.query}\n结果: {joined}\n\n")
  return "".join(parts)


def render_glossary(entries: Sequence[KnowledgeBaseEntry]) -> str:
  if not entries:
    return ""
  body = "".join(f"### {entry.term}\n\n{entry.definition}\n\n" for entry in entries)
  return f"\n\n{GLOSSARY_HEADING}\n\n{body}"


class WorkflowOrchestrator:
  """Runs rewrite, plan, search, summarize, sections, finalize, knowledge base and assembly in order."""

  def __init__(
    self,
    client: ModelClient,
    *,
    search: SearchService,
    sections: SectionProcessor,
    concepts: ConceptPipeline,
    content_store: LocalContentStore | None = None,
    stage_policy: RetryPolicy | None = None,
    search_cooldown_seconds: float = 1.0,
    sleep: Sleep = asyncio.sleep,
  ) -> None:
    self._client = client
    self._search = search
    self._sections = sections
    self._concepts = concepts
    self._content_store = content_store
    self._stage_policy = stage_policy or RetryPolicy(max_attempts=3, delay=fixed_delay(2.0))
    self._search_cooldown_seconds = search_cooldown_seconds
    self._sleep = sleep

  async def execute_full_workflow(self, config: GenerationConfig, ctx: RunContext | None = None) -> GeneratedContent:
    """Produce a GeneratedContent for `config`; only unguarded errors raise WorkflowError."""
    ctx = ctx or RunContext()
    if ctx.query_label is None:
      ctx.query_label = f"{sanitize_file_name(config.topic, max_length=50)}_{utc_now().strftime('%Y%m%d_%H%M%S')}"
    state = _RunState(config=config, ctx=ctx)
    progress = ctx.progress
    logger.info("Workflow started task=%s topic=%r", ctx.task_id, config.topic[:80])

    try:
      state.stage = "rewrite"
      progress.milestone(1, "Rewriting prompt", config.topic)
      rewritten = await self.rewrite_prompt(config, ctx)
      state.steps.append(f"Prompt rewritten: {rewritten.title}")
      progress.milestone(MILESTONE_REWRITE, "Prompt rewritten", rewritten.title)

      state.stage = "plan"
      queries = await self.plan_searches(rewritten.prompt, config, ctx)
      state.steps.append(f"Search plan created with {len(queries)} queries")
      progress.milestone(MILESTONE_PLAN, "Search plan created", f"{len(queries)} queries")

      state.stage = "search"
      records = await self.execute_searches(queries, config, ctx)
      failed_searches = sum(1 for record in records if record.failed)
      state.steps.append(f"Executed {len(records)} searches ({failed_searches} failed)")
      progress.milestone(MILESTONE_SEARCH, "Searches completed", f"{len(records)} results")

      state.stage = "summarize"
      summary = await self.summarize(records, config, ctx)
      state.steps.append("Search results summarized")
      progress.milestone(MILESTONE_SUMMARY, "Search results summarized")

      state.stage = "sections"
      sections = await self.generate_sections(rewritten.prompt, summary, config, ctx)
      main_content = render_sections(sections)
      state.steps.append(f"Generated {len(sections)} sections")
      progress.milestone(MILESTONE_SECTIONS, "Sections generated", f"{len(sections)} sections")

      state.stage = "finalize"
      if config.enable_validation:
        main_content = await self.validate_content(main_content, config, ctx)
        state.steps.append("Content validated")
      else:
        logger.info("Content validation disabled; passing content through unchanged")
        state.steps.append("Content finalized")
      progress.milestone(MILESTONE_FINALIZE, "Content finalized")

      state.stage = "knowledge_base"
      knowledge_base: list[KnowledgeBaseEntry] = []
      if config.enable_keyword_extraction:
        knowledge_base = await self.build_knowledge_base(config.topic, main_content, config, ctx)
        state.steps.append(f"Knowledge base built with {len(knowledge_base)} terms")
      else:
        logger.info("Keyword extraction disabled; skipping knowledge base")
        state.steps.append("Knowledge base skipped")
      progress.milestone(MILESTONE_KNOWLEDGE_BASE, "Knowledge base ready", f"{len(knowledge_base)} terms")

      state.stage = "assemble"
      final_content = main_content + render_glossary(knowledge_base)
      node = ContentNode(id=generate_record_id(), title=rewritten.title, content=final_content[:NODE_PREVIEW_CHARS] + "...")
      state.steps.append("Document assembled")
      progress.complete("Workflow completed", rewritten.title)
    except Exception as exc:
      logger.error("Workflow failed task=%s stage=%s", ctx.task_id, state.stage, exc_info=True)
      raise WorkflowError(state.stage, str(exc), steps=list(state.steps)) from exc

    logger.info("Workflow completed task=%s title=%r terms=%d", ctx.task_id, rewritten.title, len(knowledge_base))
    return GeneratedContent(
      id=generate_content_id(),
      title=rewritten.title,
      main_content=final_content,
      nodes=[node],
      knowledge_base=knowledge_base,
      generation_steps=state.steps,
      progress=progress.steps,
    )

  async def rewrite_prompt(self, config: GenerationConfig, ctx: RunContext | None = None) -> RewrittenPrompt:
    prompt = render_rewrite_prompt(config.topic)
    options = CallOptions(model=config.model, max_tokens=REWRITE_MAX_TOKENS)

    async def _attempt(attempt: int) -> RewrittenPrompt:
      result = await self._client.call(prompt, options, ctx)
      if not result.ok:
        raise AttemptRejected(result.text)
      rewritten = parse_rewrite(result.text, config.topic)
      if rewritten is None:
        raise AttemptRejected("empty rewrite")
      return rewritten

    def _fallback() -> RewrittenPrompt:
      return RewrittenPrompt(prompt=config.topic, title=config.topic)

    return await self._stage_policy.run(_attempt, fallback=_fallback, label="Prompt rewrite")

  async def plan_searches(self, rewritten_prompt: str, config: GenerationConfig, ctx: RunContext | None = None) -> list[str]:
    prompt = render_search_plan_prompt(rewritten_prompt)
    options = CallOptions(model=config.model, max_tokens=PLAN_MAX_TOKENS)

    async def _attempt(attempt: int) -> list[str]:
      result = await self._client.call(prompt, options, ctx)
      if not result.ok:
        raise AttemptRejected(result.text)
      raw_queries = parse_json_object(result.text).get("queries")
      if not isinstance(raw_queries, list):
        raise AttemptRejected("reply has no queries list")
      queries = [str(query).strip() for query in raw_queries if str(query).strip()]
      if not queries:
        raise AttemptRejected("reply has an empty queries list")
      return queries[:MAX_QUERIES]

    def _fallback() -> list[str]:
      return fallback_queries(config.topic)

    return await self._stage_policy.run(_attempt, fallback=_fallback, label="Search planning")

  async def execute_searches(self, queries: Sequence[str], config: GenerationConfig, ctx: RunContext | None = None) -> list[SearchRecord]:
    """Run every query concurrently; a failed query becomes an error record."""
    task_id = ctx.task_id if ctx else None
    step = max(1, (MILESTONE_SEARCH - MILESTONE_PLAN) // max(len(queries), 1))

    async def _search(index: int, query: str) -> tuple[int, SearchRecord]:
      cleaned = clean_search_query(query)
      try:
        results = await self._search.search(cleaned, model=config.model, ctx=ctx)
        record = SearchRecord(id=generate_record_id(), query=cleaned, results=results, task_id=task_id)
      except Exception as exc:  # noqa: BLE001
        logger.warning("Search for %r failed: %s", cleaned, exc)
        record = SearchRecord(id=generate_record_id(), query=cleaned, results=[f"Error during search: {exc}"], task_id=task_id, failed=True)
      if self._content_store is not None:
        self._content_store.save_search_record(record)
      return index, record

    def _on_result(item: tuple[int, SearchRecord], done: int) -> None:
      if ctx is not None:
        ctx.progress.advance(f"Search {done}/{len(queries)} completed", item[1].query, amount=step)

    completed = await fan_out_with_fallback(list(queries), _search, label="Search execution", on_result=_on_result)
    completed.sort(key=lambda item: item[0])
    # Pause before the next burst of model calls.
    await self._sleep(self._search_cooldown_seconds)
    return [record for _, record in completed]

  async def summarize(self, records: Sequence[SearchRecord], config: GenerationConfig, ctx: RunContext | None = None) -> str:
    context = build_search_context(records)
    prompt = render_summary_prompt(context)
    options = CallOptions(model=config.model, max_tokens=SUMMARY_MAX_TOKENS)

    async def _attempt(attempt: int) -> str:
      result = await self._client.call(prompt, options, ctx)
      if not result.ok:
        raise AttemptRejected(result.text)
      summary = result.text.strip()
      if not summary:
        raise AttemptRejected("empty summary")
      return summary

    def _fallback() -> str:
      return context

    return await self._stage_policy.run(_attempt, fallback=_fallback, label="Search summary")

  async def generate_sections(self, topic: str, summary: str, config: GenerationConfig, ctx: RunContext | None = None) -> list[SectionResult]:
    step = max(1, (MILESTONE_SECTIONS - MILESTONE_SUMMARY) // len(SECTION_TITLES))

    def _on_section(section: SectionResult, done: int) -> None:
      if ctx is not None:
        ctx.progress.advance(f"Section {done}/{len(SECTION_TITLES)} generated", section.title, amount=step)

    return await self._sections.generate_sections(topic, SECTION_TITLES, summary, config=config, ctx=ctx, on_section=_on_section)

  async def validate_content(self, content: str, config: GenerationConfig, ctx: RunContext | None = None) -> str:
    """Ask the model to review the article; the original text is kept when review fails."""
    truncated = content[:VALIDATION_CONTENT_CHARS]
    options = CallOptions(model=config.model, max_tokens=VALIDATION_MAX_TOKENS)

    async def _attempt(attempt: int) -> str:
      result = await self._client.call(render_validation_prompt(truncated), options, ctx)
      if not result.ok:
        raise AttemptRejected(result.text)
      validated = result.text.strip()
      if not validated:
        raise AttemptRejected("empty validation reply")
      return validated

    def _fallback() -> str:
      return content

    return await self._stage_policy.run(_attempt, fallback=_fallback, label="Content validation")

  async def build_knowledge_base(self, topic: str, content: str, config: GenerationConfig, ctx: RunContext | None = None) -> list[KnowledgeBaseEntry]:
    concepts = await self._concepts.extract_concepts(topic, content, model=config.model, ctx=ctx)
    if ctx is not None:
      ctx.progress.milestone(MILESTONE_EXTRACTION, "Concepts extracted", f"{len(concepts)} concepts")
    if not concepts:
      return []

    step = max(1, (MILESTONE_KNOWLEDGE_BASE - MILESTONE_EXTRACTION) // len(concepts))

    def _on_entry(entry: KnowledgeBaseEntry | None, done: int) -> None:
      if ctx is not None:
        ctx.progress.advance(f"Concept {done}/{len(concepts)} explained", entry.term if entry else None, amount=step)

    return await self._concepts.expand_concepts(concepts, topic, content, model=config.model, ctx=ctx, on_entry=_on_entry)


def build_orchestrator(settings: Settings, client: ModelClient, *, content_store: LocalContentStore | None = None, sleep: Sleep = asyncio.sleep) -> WorkflowOrchestrator:
  """Wire the pipeline components with the configured delays."""
  stage_policy = RetryPolicy(max_attempts=3, delay=fixed_delay(settings.stage_retry_delay_seconds), sleep=sleep)
  concept_policy = RetryPolicy(max_attempts=3, delay=fixed_delay(settings.concept_retry_delay_seconds), sleep=sleep)
  chunked = ChunkedGenerator(client, delay_seconds=settings.chunk_delay_seconds, sleep=sleep)
  return WorkflowOrchestrator(
    client,
    search=SearchService(client),
    sections=SectionProcessor(client, chunked, policy=stage_policy),
    concepts=ConceptPipeline(client, extraction_policy=stage_policy, expansion_policy=concept_policy),
    content_store=content_store,
    stage_policy=stage_policy,
    search_cooldown_seconds=settings.search_cooldown_seconds,
    sleep=sleep,
  )
