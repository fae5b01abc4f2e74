"""Content generation service and the composition of its collaborators."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from scribe.ai.backoff import Sleep
from scribe.ai.client import ModelClient
from scribe.ai.orchestrator import WorkflowOrchestrator, build_orchestrator
from scribe.ai.pipeline.contracts import GeneratedContent, GenerationConfig, GenerationHistoryEntry
from scribe.ai.providers import Provider, build_provider
from scribe.config import Settings
from scribe.jobs.manager import TaskManager
from scribe.jobs.models import Task
from scribe.services.history_client import HistoryBackend, HistoryClient, HistoryUnavailableError, LocalHistoryBackend
from scribe.storage.history_store import FilesystemHistoryStore
from scribe.storage.kv_store import JsonFileKeyValueStore, KeyValueStore
from scribe.storage.local_store import LocalContentStore
from scribe.telemetry.prompt_audit import PromptAuditLog
from scribe.utils.ids import generate_record_id

logger = logging.getLogger(__name__)


class ContentGenerationService:
  """Run tasks and persist what a completed run produced."""

  def __init__(self, tasks: TaskManager, content_store: LocalContentStore, history: HistoryBackend | None = None) -> None:
    self._tasks = tasks
    self._content_store = content_store
    self._history = history

  def create_task(self, config: GenerationConfig) -> Task:
    return self._tasks.create_task(config)

  async def run_task(self, task_id: str) -> GeneratedContent:
    """Execute a created task and save its results; failures leave the task failed and propagate."""
    # The task may be deleted while it runs; its topic is still needed to archive the content.
    topic = self._tasks.get_task(task_id).topic
    content = await self._tasks.execute_task(task_id)
    await self._persist(content, topic=topic, task_id=task_id)
    return content

  async def generate(self, config: GenerationConfig) -> GeneratedContent:
    task = self.create_task(config)
    return await self.run_task(task.id)

  async def _persist(self, content: GeneratedContent, *, topic: str, task_id: str | None) -> None:
    self._content_store.save_generated_content(content)
    self._content_store.save_generation_history(
      GenerationHistoryEntry(id=generate_record_id(), content_id=content.id, title=content.title, topic=topic, knowledge_base_size=len(content.knowledge_base), task_id=task_id)
    )
    for entry in content.knowledge_base:
      self._content_store.save_knowledge_entry(entry)

    if self._history is None:
      return
    try:
      await self._history.save(content.model_dump(mode="json"), title=content.title, query=topic, entry_type="generated-content")
    except HistoryUnavailableError as exc:
      # The run already succeeded; a history outage only loses the archive copy.
      logger.warning("Could not save content %s to history: %s", content.id, exc)


@dataclass
class ServiceContainer:
  """Everything one process needs, built once from settings."""

  settings: Settings
  store: KeyValueStore
  provider: Provider | None
  audit: PromptAuditLog
  client: ModelClient
  content_store: LocalContentStore
  history: HistoryBackend
  history_store: FilesystemHistoryStore | None
  orchestrator: WorkflowOrchestrator
  tasks: TaskManager
  content: ContentGenerationService

  async def aclose(self) -> None:
    close = getattr(self.provider, "aclose", None)
    if close is not None:
      await close()


def build_history_backend(settings: Settings) -> tuple[HistoryBackend, FilesystemHistoryStore | None]:
  """Remote history when a base URL is configured, otherwise the local filesystem store."""
  if settings.history_base_url:
    return HistoryClient(settings.history_base_url), None
  store = FilesystemHistoryStore(Path(settings.history_dir))
  return LocalHistoryBackend(store), store


def build_container(
  settings: Settings,
  *,
  store: KeyValueStore | None = None,
  provider_factory: Callable[[Settings], Provider | None] = build_provider,
  sleep: Sleep = asyncio.sleep,
) -> ServiceContainer:
  kv_store = store if store is not None else JsonFileKeyValueStore(Path(settings.data_dir))
  provider = provider_factory(settings)
  if provider is None:
    logger.warning("No model credential configured; model calls will return mock responses")

  history, history_store = build_history_backend(settings)
  audit = PromptAuditLog(kv_store, max_records=settings.prompt_history_limit)
  client = ModelClient(
    provider,
    audit,
    default_model=settings.default_model,
    temperature=settings.temperature,
    max_tokens=settings.max_tokens,
    max_retries=settings.max_rate_limit_retries,
    sleep=sleep,
    mirror=history if settings.mirror_prompts_to_history else None,
  )
  content_store = LocalContentStore(kv_store)
  orchestrator = build_orchestrator(settings, client, content_store=content_store, sleep=sleep)
  tasks = TaskManager(kv_store, orchestrator)
  return ServiceContainer(
    settings=settings,
    store=kv_store,
    provider=provider,
    audit=audit,
    client=client,
    content_store=content_store,
    history=history,
    history_store=history_store,
    orchestrator=orchestrator,
    tasks=tasks,
    content=ContentGenerationService(tasks, content_store, history),
  )
