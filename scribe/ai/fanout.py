"""Concurrent fan-out with a sequential fallback."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")

logger = logging.getLogger(__name__)

Worker = Callable[[int, T], Awaitable[R]]
ResultCallback = Callable[[R, int], None]


async def fan_out(items: Sequence[T], worker: Worker, *, on_result: ResultCallback | None = None) -> list[R]:
  """Run `worker(index, item)` for every item concurrently.

  Results are returned in completion order. `on_result(result, done_count)`
  fires as each worker finishes. If any worker raises, the remaining ones are
  cancelled and the exception propagates.
  """
  tasks = [asyncio.ensure_future(worker(index, item)) for index, item in enumerate(items)]
  results: list[R] = []
  try:
    for next_done in asyncio.as_completed(tasks):
      result = await next_done
      results.append(result)
      if on_result is not None:
        on_result(result, len(results))
  except BaseException:
    for task in tasks:
      task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    raise
  return results


async def run_sequentially(items: Sequence[T], worker: Worker, *, on_result: ResultCallback | None = None) -> list[R]:
  """Run `worker(index, item)` one item at a time, in order."""
  results: list[R] = []
  for index, item in enumerate(items):
    result = await worker(index, item)
    results.append(result)
    if on_result is not None:
      on_result(result, len(results))
  return results


async def fan_out_with_fallback(items: Sequence[T], worker: Worker, *, label: str, on_result: ResultCallback | None = None) -> list[R]:
  """Fan out concurrently; if the batch itself fails, redo every item sequentially."""
  if not items:
    return []
  try:
    return await fan_out(items, worker, on_result=on_result)
  except Exception:
    logger.error("%s: concurrent batch failed; falling back to sequential processing", label, exc_info=True)
  return await run_sequentially(items, worker, on_result=on_result)
