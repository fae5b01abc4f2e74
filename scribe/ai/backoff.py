"""Retry policies with pluggable backoff and degraded-value fallbacks."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
DelayFn = Callable[[int], float]


class AttemptRejected(Exception):
  """Raised by an attempt whose output is unusable (too short, unparsable, error result)."""


def fixed_delay(seconds: float) -> DelayFn:
  """Wait the same number of seconds after every failed attempt."""

  def _delay(attempt: int) -> float:
    return seconds

  return _delay


def exponential_delay(base: float = 2.0) -> DelayFn:
  """Wait base**attempt seconds: 2, 4, 8 for the default base."""

  def _delay(attempt: int) -> float:
    return base**attempt

  return _delay


@dataclass(frozen=True)
class RetryPolicy:
  """Bounded attempts with a delay between them and a degraded value at the end.

  `run` calls `attempt(n)` for n = 1..max_attempts. Any exception counts as a
  failed attempt; the policy sleeps `delay(n)` seconds before the next one.
  When every attempt fails, `fallback()` supplies the degraded value, so a
  policy never raises for attempt failures.
  """

  max_attempts: int = 3
  delay: DelayFn = fixed_delay(2.0)
  sleep: Sleep = asyncio.sleep

  async def run(self, attempt: Callable[[int], Awaitable[T]], *, fallback: Callable[[], T], label: str) -> T:
    for number in range(1, self.max_attempts + 1):
      try:
        return await attempt(number)
      except AttemptRejected as exc:
        logger.warning("%s attempt %d/%d rejected: %s", label, number, self.max_attempts, exc)
      except Exception as exc:  # noqa: BLE001
        logger.warning("%s attempt %d/%d failed: %s", label, number, self.max_attempts, exc, exc_info=True)

      if number < self.max_attempts:
        await self.sleep(self.delay(number))

    logger.warning("%s exhausted %d attempts; using fallback", label, self.max_attempts)
    return fallback()
