"""Domain models for tracked generation tasks."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from scribe.ai.pipeline.contracts import GeneratedContent, GenerationConfig, ProgressStep, utc_now
from scribe.telemetry.prompt_audit import PromptRecord

TaskStatus = Literal["created", "running", "completed", "failed"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})

# Allowed forward moves; anything else would walk a task backwards.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
  "created": frozenset({"running", "failed"}),
  "running": frozenset({"completed", "failed"}),
  "completed": frozenset(),
  "failed": frozenset(),
}


class TaskNotFoundError(LookupError):
  """Raised when a task id is not in the registry."""

  def __init__(self, task_id: str) -> None:
    super().__init__(f"Task {task_id} not found")
    self.task_id = task_id


class InvalidTaskTransitionError(ValueError):
  """Raised when an update would move a task backwards or out of a terminal state."""

  def __init__(self, task_id: str, current: str, requested: str) -> None:
    super().__init__(f"Task {task_id} cannot move from {current} to {requested}")
    self.task_id = task_id
    self.current = current
    self.requested = requested


class Task(BaseModel):
  """A tracked, persisted invocation of the full workflow."""

  id: str
  topic: str
  status: TaskStatus = "created"
  created_at: datetime = Field(default_factory=utc_now)
  started_at: datetime | None = None
  completed_at: datetime | None = None
  progress: list[ProgressStep] = Field(default_factory=list)
  prompt_history: list[PromptRecord] = Field(default_factory=list)
  current_content: GeneratedContent | None = None
  config: GenerationConfig
  error: str | None = None

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES


def check_transition(task: Task, status: TaskStatus) -> None:
  """Raise when moving `task` to `status` is not a forward transition."""
  if status == task.status:
    return
  if status not in ALLOWED_TRANSITIONS[task.status]:
    raise InvalidTaskTransitionError(task.id, task.status, status)
