"""Workflow tests driven by a scripted provider; no network and no real delays."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from scribe.ai.orchestrator import GLOSSARY_HEADING, WorkflowError, build_orchestrator, fallback_queries, parse_rewrite
from scribe.ai.pipeline.contracts import GenerationConfig
from scribe.ai.providers.base import ModelNetworkError, ModelTimeoutError
from scribe.ai.sections import SECTION_TITLES
from scribe.jobs.context import RunContext
from scribe.storage.local_store import LocalContentStore


@pytest.fixture
def content_store(memory_store) -> LocalContentStore:
  return LocalContentStore(memory_store)


@pytest.fixture
def make_orchestrator(settings, make_client, content_store, no_sleep):
  def _make(provider):
    return build_orchestrator(settings, make_client(provider), content_store=content_store, sleep=no_sleep)

  return _make


def _stages(provider, prompt_stage) -> list[str]:
  return [prompt_stage(prompt) for prompt in provider.prompts]


@pytest.mark.anyio
async def test_quantum_computing_article_with_glossary(make_orchestrator, make_provider, content_store, prompt_stage) -> None:
  provider = make_provider()
  ctx = RunContext(task_id="task-q")

  content = await make_orchestrator(provider).execute_full_workflow(GenerationConfig(topic="量子计算"), ctx)

  assert content.title == "量子计算的原理与应用"
  positions = [content.main_content.index(f"## {title}\n\n") for title in SECTION_TITLES]
  assert positions == sorted(positions)
  assert [entry.term for entry in content.knowledge_base] == ["Qubit", "Superposition"]
  for entry in content.knowledge_base:
    assert entry.term in content.main_content
    assert f"### {entry.term}\n\n{entry.definition}" in content.main_content
  assert GLOSSARY_HEADING in content.main_content
  assert len(content.nodes) == 1
  assert content.nodes[0].title == content.title
  assert content.nodes[0].content == content.main_content[:500] + "..."

  stages = _stages(provider, prompt_stage)
  assert stages.count("search") == 3
  assert stages.count("section") == len(SECTION_TITLES)
  assert stages.count("explanation") == 2
  assert "validation" not in stages
  assert len(content_store.list_search_records(task_id="task-q")) == 3


@pytest.mark.anyio
async def test_progress_is_monotonic_and_finishes_at_total(make_orchestrator, make_provider) -> None:
  ctx = RunContext()

  content = await make_orchestrator(make_provider()).execute_full_workflow(GenerationConfig(topic="量子计算"), ctx)

  currents = [step.current for step in content.progress]
  assert currents == sorted(currents)
  assert all(step.current <= step.total == 100 for step in content.progress)
  assert content.progress[-1].current == 100
  assert content.progress[-1].status == "completed"
  assert ctx.progress.percent == 100.0


@pytest.mark.anyio
async def test_keyword_extraction_disabled_skips_the_knowledge_base(make_orchestrator, make_provider, prompt_stage) -> None:
  provider = make_provider()
  config = GenerationConfig(topic="量子计算", enable_keyword_extraction=False)

  content = await make_orchestrator(provider).execute_full_workflow(config)

  assert content.knowledge_base == []
  assert GLOSSARY_HEADING not in content.main_content
  stages = _stages(provider, prompt_stage)
  assert "extraction" not in stages
  assert "explanation" not in stages
  assert "Knowledge base skipped" in content.generation_steps


@pytest.mark.anyio
async def test_mock_mode_completes_end_to_end(make_orchestrator, audit_log) -> None:
  content = await make_orchestrator(None).execute_full_workflow(GenerationConfig(topic="量子计算"))

  assert content.main_content
  assert "mock response" in content.main_content
  assert content.title.startswith("This is a mock response")
  assert content.knowledge_base
  assert all("mock response" in record.response for record in audit_log.list_records())


@pytest.mark.anyio
async def test_failed_rewrite_and_plan_fall_back(make_orchestrator, make_provider, pipeline_responder, prompt_stage, no_sleep) -> None:
  def _responder(prompt: str):
    stage = prompt_stage(prompt)
    if stage == "rewrite":
      return ModelNetworkError("connection refused")
    if stage == "plan":
      return "here are some ideas, but no JSON"
    return pipeline_responder(prompt)

  provider = make_provider(_responder)
  topic = "光合作用"

  content = await make_orchestrator(provider).execute_full_workflow(GenerationConfig(topic=topic))

  assert content.title == topic
  stages = _stages(provider, prompt_stage)
  assert stages.count("rewrite") == 3
  assert stages.count("plan") == 3
  search_prompts = [prompt for prompt in provider.prompts if prompt_stage(prompt) == "search"]
  assert len(search_prompts) == len(fallback_queries(topic)) == 5
  # Stage retries wait between attempts only.
  assert no_sleep.await_count >= 4


@pytest.mark.anyio
async def test_failed_search_is_recorded_and_summary_falls_back(make_orchestrator, make_provider, pipeline_responder, prompt_stage, content_store) -> None:
  def _responder(prompt: str):
    stage = prompt_stage(prompt)
    if stage == "search" and '"量子计算 挑战"' in prompt:
      return ModelTimeoutError("search took too long")
    if stage == "summary":
      return ModelNetworkError("connection reset")
    return pipeline_responder(prompt)

  provider = make_provider(_responder)
  ctx = RunContext(task_id="task-s")

  content = await make_orchestrator(provider).execute_full_workflow(GenerationConfig(topic="量子计算"), ctx)

  records = content_store.list_search_records(task_id="task-s")
  failed = [record for record in records if record.failed]
  assert len(failed) == 1
  assert failed[0].results[0].startswith("Error during search: Request timeout")
  section_prompts = [prompt for prompt in provider.prompts if prompt_stage(prompt) == "section"]
  assert all("基于以下搜索结果总结：" in prompt for prompt in section_prompts)
  assert "Executed 3 searches (1 failed)" in content.generation_steps


@pytest.mark.anyio
async def test_validation_stage_runs_when_enabled(make_orchestrator, make_provider, prompt_stage) -> None:
  provider = make_provider()
  config = GenerationConfig(topic="量子计算", enable_validation=True, enable_keyword_extraction=False)

  content = await make_orchestrator(provider).execute_full_workflow(config)

  assert _stages(provider, prompt_stage).count("validation") == 1
  assert "经过审校的内容" in content.main_content
  assert "Content validated" in content.generation_steps


@pytest.mark.anyio
async def test_unexpected_errors_escape_as_workflow_error(make_orchestrator, make_provider) -> None:
  orchestrator = make_orchestrator(make_provider())
  orchestrator._sections.generate_sections = AsyncMock(side_effect=RuntimeError("scheduler crashed"))

  with pytest.raises(WorkflowError) as excinfo:
    await orchestrator.execute_full_workflow(GenerationConfig(topic="量子计算"))

  assert excinfo.value.stage == "sections"
  assert "Search results summarized" in excinfo.value.steps
  assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_parse_rewrite_extracts_text_between_markers() -> None:
  reply = "好的。\n请提供重写后的内容：\n# 标题行\n深入解析量子计算\n正文描述\n是否需要包含代码示例和/或数学公式：是\n多余的结尾"

  rewritten = parse_rewrite(reply, "量子计算")

  assert rewritten is not None
  assert rewritten.title == "深入解析量子计算"
  assert "多余的结尾" not in rewritten.prompt
  assert "好的" not in rewritten.prompt


def test_parse_rewrite_without_markers_uses_first_line() -> None:
  rewritten = parse_rewrite('"## 量子计算入门\n内容说明"', "量子计算")

  assert rewritten is not None
  assert rewritten.title == "量子计算入门"


def test_parse_rewrite_long_first_line_uses_input_prefix() -> None:
  user_input = "请详细介绍" + "量子" * 40
  rewritten = parse_rewrite("x" * 150, user_input)

  assert rewritten is not None
  assert rewritten.title == user_input[:50] + "..."


def test_parse_rewrite_rejects_empty_replies() -> None:
  assert parse_rewrite("  ...  ", "topic") is None
