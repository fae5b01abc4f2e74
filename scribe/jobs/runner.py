"""Per-task execution of the workflow."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

from scribe.ai.pipeline.contracts import GeneratedContent, ProgressStep, utc_now
from scribe.jobs.context import RunContext
from scribe.jobs.models import InvalidTaskTransitionError, TaskNotFoundError
from scribe.jobs.progress import ProgressTracker
from scribe.telemetry.prompt_audit import PromptRecord

if TYPE_CHECKING:
  from scribe.ai.orchestrator import WorkflowOrchestrator
  from scribe.jobs.manager import TaskManager

logger = logging.getLogger(__name__)


class TaskRunner:
  """Drive one task through running into a terminal state."""

  def __init__(self, manager: TaskManager, orchestrator: WorkflowOrchestrator, *, clock: Callable[[], datetime] = utc_now) -> None:
    self._manager = manager
    self._orchestrator = orchestrator
    self._clock = clock

  async def run(self, task_id: str) -> GeneratedContent:
    task = self._manager.get_task(task_id)
    # Only a fresh task may start; a running one already has a run in flight.
    if task.status != "created":
      raise InvalidTaskTransitionError(task.id, task.status, "running")
    ctx = RunContext(
      task_id=task.id,
      progress=ProgressTracker(listener=lambda step: self._on_progress(task.id, step)),
      prompt_sink=lambda record: self._on_prompt(task.id, record),
    )
    self._manager.update_task(task.id, status="running", started_at=self._clock())

    try:
      ctx.progress.milestone(0, "Task started", task.topic)
      content = await self._orchestrator.execute_full_workflow(task.config, ctx)
    except Exception as exc:
      logger.error("Task %s failed", task.id, exc_info=True)
      ctx.progress.fail("Task failed", str(exc))
      self._safe_update(task.id, status="failed", completed_at=self._clock(), error=str(exc))
      raise
    else:
      self._safe_update(task.id, status="completed", completed_at=self._clock(), current_content=content)
      logger.info("Task %s completed: %r", task.id, content.title)
      return content
    finally:
      # Later calls through this context must not be attributed to the task.
      ctx.detach()

  def _on_progress(self, task_id: str, step: ProgressStep) -> None:
    try:
      self._manager.update_task_progress(task_id, step)
    except TaskNotFoundError:
      logger.warning("Dropping progress for deleted task %s", task_id)

  def _on_prompt(self, task_id: str, record: PromptRecord) -> None:
    try:
      self._manager.add_prompt_record(task_id, record)
    except TaskNotFoundError:
      logger.warning("Dropping prompt record %s for deleted task %s", record.id, task_id)

  def _safe_update(self, task_id: str, **changes: object) -> None:
    try:
      self._manager.update_task(task_id, **changes)
    except TaskNotFoundError:
      logger.warning("Task %s was deleted before it finished", task_id)
