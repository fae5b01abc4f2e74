"""Registry of tracked generation tasks, persisted on every mutation."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from scribe.ai.pipeline.contracts import GeneratedContent, GenerationConfig, ProgressStep, utc_now
from scribe.jobs.models import Task, TaskNotFoundError, TaskStatus, check_transition
from scribe.jobs.runner import TaskRunner
from scribe.storage.kv_store import KeyValueStore
from scribe.telemetry.prompt_audit import PromptRecord
from scribe.utils.ids import generate_task_id

if TYPE_CHECKING:
  from scribe.ai.orchestrator import WorkflowOrchestrator

TASKS_KEY = "knowledge_tasks"

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset({"status", "started_at", "completed_at", "current_content", "error"})


class TaskManager:
  """Create, track and run tasks.

  The registry lives in memory and is written through to the key-value store
  after each change, so a restarted process sees the same tasks. The manager
  is constructed by whoever composes the application; there is no global
  instance.
  """

  def __init__(self, store: KeyValueStore, orchestrator: WorkflowOrchestrator | None = None, *, clock: Callable[[], datetime] = utc_now) -> None:
    self._store = store
    self._orchestrator = orchestrator
    self._clock = clock
    # Serialized rows per task, so a write only dumps the task that changed.
    self._rows: dict[str, dict[str, Any]] = {}
    self._tasks: dict[str, Task] = self._load()

  def _load(self) -> dict[str, Task]:
    tasks: dict[str, Task] = {}
    for raw in self._store.get(TASKS_KEY) or []:
      try:
        task = Task.model_validate(raw)
      except ValidationError:
        logger.warning("Skipping unreadable task row in %s", TASKS_KEY)
        continue
      tasks[task.id] = task
      self._rows[task.id] = raw
    return tasks

  def _persist(self) -> None:
    self._store.set(TASKS_KEY, list(self._rows.values()))

  def _require(self, task_id: str) -> Task:
    task = self._tasks.get(task_id)
    if task is None:
      raise TaskNotFoundError(task_id)
    return task

  def _replace(self, task: Task) -> Task:
    self._tasks[task.id] = task
    self._rows[task.id] = task.model_dump(mode="json")
    self._persist()
    return task

  def create_task(self, config: GenerationConfig) -> Task:
    task = Task(id=generate_task_id(), topic=config.topic, config=config, created_at=self._clock())
    logger.info("Created task %s for topic %r", task.id, task.topic[:80])
    return self._replace(task)

  def get_task(self, task_id: str) -> Task:
    return self._require(task_id)

  def list_tasks(self) -> list[Task]:
    """All tasks, newest first."""
    return sorted(self._tasks.values(), key=lambda task: task.created_at, reverse=True)

  def get_tasks_by_status(self, status: TaskStatus) -> list[Task]:
    return [task for task in self.list_tasks() if task.status == status]

  def update_task(self, task_id: str, **changes: Any) -> Task:
    """Apply field changes, enforcing forward-only status moves.

    `current_content` is kept in step with the status: it must be supplied
    when completing and is never set on a task in any other state.
    """
    unknown = set(changes) - _UPDATABLE_FIELDS
    if unknown:
      raise ValueError(f"Unsupported task fields: {', '.join(sorted(unknown))}")

    task = self._require(task_id)
    if "status" in changes:
      check_transition(task, changes["status"])

    updated = task.model_copy(update=changes)
    if updated.status == "completed" and updated.current_content is None:
      raise ValueError(f"Task {task_id} cannot complete without content")
    if updated.status != "completed" and updated.current_content is not None:
      raise ValueError(f"Task {task_id} can only carry content once completed")

    if updated.status != task.status:
      logger.info("Task %s moved %s -> %s", task_id, task.status, updated.status)
    return self._replace(updated)

  def update_task_progress(self, task_id: str, step: ProgressStep) -> Task:
    task = self._require(task_id)
    return self._replace(task.model_copy(update={"progress": [*task.progress, step]}))

  def add_prompt_record(self, task_id: str, record: PromptRecord) -> Task:
    task = self._require(task_id)
    history = [existing for existing in task.prompt_history if existing.id != record.id]
    history.append(record)
    return self._replace(task.model_copy(update={"prompt_history": history}))

  def get_task_prompt_history(self, task_id: str) -> list[PromptRecord]:
    return list(self._require(task_id).prompt_history)

  def delete_task(self, task_id: str) -> None:
    self._require(task_id)
    del self._tasks[task_id]
    del self._rows[task_id]
    self._persist()
    logger.info("Deleted task %s", task_id)

  def clear_all(self) -> int:
    removed = len(self._tasks)
    self._tasks.clear()
    self._rows.clear()
    self._store.remove(TASKS_KEY)
    logger.info("Cleared %d tasks", removed)
    return removed

  async def run_task(self, config: GenerationConfig) -> GeneratedContent:
    """Create a task for `config` and run it to completion."""
    task = self.create_task(config)
    return await self.execute_task(task.id)

  async def execute_task(self, task_id: str) -> GeneratedContent:
    """Run an existing `created` task; errors mark the task failed and propagate."""
    if self._orchestrator is None:
      raise RuntimeError("TaskManager has no orchestrator configured")
    return await TaskRunner(self, self._orchestrator, clock=self._clock).run(task_id)
