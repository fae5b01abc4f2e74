"""Explicit per-run context threaded through every orchestration call."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from scribe.jobs.progress import ProgressTracker
from scribe.telemetry.prompt_audit import PromptRecord

PromptSink = Callable[[PromptRecord], None]


@dataclass
class RunContext:
  """Carries the owning task id, progress tracker and prompt sink of one run.

  Every model call receives the context it belongs to, so prompt records are
  tagged with the right task even when several runs share one process.
  """

  task_id: str | None = None
  progress: ProgressTracker = field(default_factory=ProgressTracker)
  prompt_sink: PromptSink | None = None
  query_label: str | None = None

  def record_prompt(self, record: PromptRecord) -> None:
    if self.prompt_sink is not None:
      self.prompt_sink(record)

  def detach(self) -> None:
    """Drop the task association; later calls through this context are untagged."""
    self.task_id = None
    self.prompt_sink = None
    self.progress.detach()
