"""Progress tracking for a single workflow run."""

from __future__ import annotations

import logging
from collections.abc import Callable

from scribe.ai.pipeline.contracts import ProgressStep

DEFAULT_TOTAL_STEPS = 100
MAX_TRACKED_STEPS = 500

ProgressListener = Callable[[ProgressStep], None]

logger = logging.getLogger(__name__)


class ProgressTracker:
  """Monotonic current/total counter with an append-only step log.

  `current` never decreases and never exceeds `total`. Every update appends a
  ProgressStep and notifies the optional listener (the task manager uses it
  to persist progress as the run advances).
  """

  def __init__(self, *, total: int = DEFAULT_TOTAL_STEPS, listener: ProgressListener | None = None) -> None:
    if total < 1:
      raise ValueError("Progress total must be positive")
    self._total = total
    self._current = 0
    self._steps: list[ProgressStep] = []
    self._listener = listener

  @property
  def current(self) -> int:
    return self._current

  @property
  def total(self) -> int:
    return self._total

  @property
  def percent(self) -> float:
    return round(self._current / self._total * 100, 1)

  @property
  def steps(self) -> list[ProgressStep]:
    return list(self._steps)

  def detach(self) -> None:
    """Stop forwarding steps to the listener."""
    self._listener = None

  def advance(self, step: str, detail: str | None = None, *, amount: int = 1) -> ProgressStep:
    """Increment the counter by `amount`, clamped to the total."""
    return self._record(step, self._current + max(amount, 0), detail)

  def milestone(self, value: int, step: str, detail: str | None = None) -> ProgressStep:
    """Jump to a stage boundary; earlier values are ignored so the counter stays monotonic."""
    return self._record(step, max(self._current, value), detail)

  def complete(self, step: str = "Completed", detail: str | None = None) -> ProgressStep:
    return self._record(step, self._total, detail)

  def fail(self, step: str, detail: str | None = None) -> ProgressStep:
    return self._record(step, self._current, detail, status="error")

  def _record(self, step: str, value: int, detail: str | None, *, status: str | None = None) -> ProgressStep:
    self._current = min(value, self._total)
    if status is None:
      status = "completed" if self._current >= self._total else "in_progress"
    entry = ProgressStep(step=step, current=self._current, total=self._total, status=status, detail=detail)
    self._steps.append(entry)
    # Bound memory for very chatty runs.
    if len(self._steps) > MAX_TRACKED_STEPS:
      self._steps = self._steps[-MAX_TRACKED_STEPS:]
    logger.debug("Progress %s/%s %s", self._current, self._total, step)
    if self._listener is not None:
      self._listener(entry)
    return entry
