"""Shared fixtures: in-memory storage, a scripted model provider and zero-delay retries."""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from scribe.ai.backoff import RetryPolicy, fixed_delay
from scribe.ai.client import ModelClient
from scribe.ai.providers.base import AIModel, Provider, SimpleModelResponse
from scribe.config import Settings
from scribe.storage.kv_store import InMemoryKeyValueStore
from scribe.telemetry.prompt_audit import PromptAuditLog

Reply = str | BaseException
Responder = Callable[[str], Reply]

_SECTION_TITLE_RE = re.compile(r'详细撰写 "(.+?)" 部分')
_TERM_RE = re.compile(r'术语 "(.+?)"')


class ScriptedModel(AIModel):
  """Model whose replies come from a responder function; records every prompt."""

  def __init__(self, responder: Responder, *, name: str = "scripted-model") -> None:
    self.name = name
    self._responder = responder
    self.prompts: list[str] = []

  async def generate(self, prompt: str, *, temperature: float | None = None, max_tokens: int | None = None) -> SimpleModelResponse:
    self.prompts.append(prompt)
    reply = self._responder(prompt)
    if isinstance(reply, BaseException):
      raise reply
    return SimpleModelResponse(content=reply)


class ScriptedProvider(Provider):
  name = "scripted"

  def __init__(self, responder: Responder) -> None:
    self.model = ScriptedModel(responder)

  def get_model(self, model: str | None = None) -> AIModel:
    return self.model

  @property
  def prompts(self) -> list[str]:
    return self.model.prompts


def stage_of(prompt: str) -> str:
  """Name the pipeline stage a rendered prompt belongs to."""
  if prompt.startswith("请将以下用户输入重新表述"):
    return "rewrite"
  if prompt.startswith("为以下主题生成多代理搜索规划"):
    return "plan"
  if "这个搜索主题" in prompt:
    return "search"
  if prompt.startswith("请根据以下搜索结果生成"):
    return "summary"
  if prompt.startswith("请基于以下主题和搜索结果"):
    return "section"
  if prompt.startswith("请对以下内容进行验证和优化"):
    return "validation"
  if prompt.startswith("从以下内容中提取"):
    return "extraction"
  if prompt.startswith("请为以下术语"):
    return "explanation"
  if prompt.startswith("Based on the main topic"):
    return "chunk"
  return "unknown"


def section_title_of(prompt: str) -> str:
  match = _SECTION_TITLE_RE.search(prompt)
  return match.group(1) if match else ""


def pipeline_reply(prompt: str) -> str:
  """A well-formed reply for every stage of a quantum computing article."""
  stage = stage_of(prompt)
  if stage == "rewrite":
    return "请提供重写后的内容：\n量子计算的原理与应用\n系统介绍量子比特、叠加与纠缠，并包含数学公式。\n是否需要包含代码示例和/或数学公式：是"
  if stage == "plan":
    return json.dumps({"queries": ["量子计算 定义", "量子计算 应用", "量子计算 挑战"]}, ensure_ascii=False)
  if stage == "search":
    return json.dumps({"concepts": ["Qubit 是量子信息的基本单位"], "applications": ["Shor 算法用于因数分解"]}, ensure_ascii=False)
  if stage == "summary":
    return "量子计算利用 Qubit 的叠加与纠缠实现并行计算，主要应用包括密码学与材料模拟。"
  if stage == "section":
    title = section_title_of(prompt)
    return f"{title}：量子计算依赖 Qubit 与 Superposition。" + "这一部分详细说明相关原理、机制与实际案例。" * 8
  if stage == "validation":
    return "## 定义与基本概念\n\n经过审校的内容。" + "审校后的正文。" * 20
  if stage == "extraction":
    return json.dumps(
      {
        "complexConcepts": [
          {"term": "Qubit", "locationInContent": "定义与基本概念", "difficultyLevel": "high", "briefDescription": "量子比特"},
          {"term": "Superposition", "locationInContent": "技术原理与机制", "difficultyLevel": "medium", "briefDescription": "叠加态"},
        ]
      },
      ensure_ascii=False,
    )
  if stage == "explanation":
    match = _TERM_RE.search(prompt)
    term = match.group(1) if match else "term"
    return f"{term} 是量子计算中的核心概念。" + "可以把它类比为一枚同时处于正反两面的硬币。" * 4
  if stage == "chunk":
    return "chunk content " * 20
  return "unexpected prompt"


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
def memory_store() -> InMemoryKeyValueStore:
  return InMemoryKeyValueStore()


@pytest.fixture
def audit_log(memory_store: InMemoryKeyValueStore) -> PromptAuditLog:
  return PromptAuditLog(memory_store)


@pytest.fixture
def no_sleep() -> AsyncMock:
  """Stand-in for asyncio.sleep that records requested delays."""
  return AsyncMock(return_value=None)


@pytest.fixture
def instant_policy(no_sleep: AsyncMock) -> RetryPolicy:
  return RetryPolicy(max_attempts=3, delay=fixed_delay(0.0), sleep=no_sleep)


@pytest.fixture
def make_client(audit_log: PromptAuditLog, no_sleep: AsyncMock) -> Callable[..., ModelClient]:
  def _make(provider: Provider | None, **kwargs: object) -> ModelClient:
    return ModelClient(provider, audit_log, default_model="test-model", sleep=no_sleep, **kwargs)

  return _make


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
  """Settings pointing every directory at tmp_path, with no credential and no delays."""
  return Settings(
    environment="test",
    debug=False,
    data_dir=str(tmp_path / "data"),
    history_dir=str(tmp_path / "history"),
    history_base_url=None,
    log_dir=str(tmp_path / "logs"),
    log_max_bytes=1024 * 1024,
    log_backup_count=1,
    log_http_4xx=False,
    allowed_origins=("http://localhost:5173",),
    llm_provider=None,
    llm_api_key=None,
    llm_base_url=None,
    default_model="test-model",
    temperature=0.7,
    max_tokens=8000,
    request_timeout_seconds=30.0,
    max_rate_limit_retries=3,
    prompt_history_limit=1000,
    stage_retry_delay_seconds=0.0,
    concept_retry_delay_seconds=0.0,
    chunk_delay_seconds=0.0,
    search_cooldown_seconds=0.0,
    mirror_prompts_to_history=False,
  )


@pytest.fixture
def credentialed_settings(settings: Settings) -> Settings:
  return replace(settings, llm_provider="openai", llm_api_key="sk-test", llm_base_url="https://api.openai.com/v1")


@pytest.fixture
def make_provider() -> Callable[..., ScriptedProvider]:
  """Build a ScriptedProvider; the default responder writes a full quantum computing article."""

  def _make(responder: Responder = pipeline_reply) -> ScriptedProvider:
    return ScriptedProvider(responder)

  return _make


@pytest.fixture
def pipeline_responder() -> Responder:
  return pipeline_reply


@pytest.fixture
def prompt_stage() -> Callable[[str], str]:
  return stage_of


@pytest.fixture
def prompt_section_title() -> Callable[[str], str]:
  return section_title_of
