from __future__ import annotations

import asyncio

import pytest

from scribe.ai.backoff import AttemptRejected, RetryPolicy, exponential_delay, fixed_delay
from scribe.ai.fanout import fan_out, fan_out_with_fallback


def test_delay_functions() -> None:
  assert [exponential_delay()(attempt) for attempt in (1, 2, 3)] == [2.0, 4.0, 8.0]
  assert fixed_delay(1.5)(7) == 1.5


@pytest.mark.anyio
async def test_policy_returns_first_successful_attempt(no_sleep) -> None:
  seen: list[int] = []

  async def attempt(number: int) -> str:
    seen.append(number)
    if number < 3:
      raise AttemptRejected("too short")
    return "ok"

  policy = RetryPolicy(max_attempts=3, delay=fixed_delay(2.0), sleep=no_sleep)

  assert await policy.run(attempt, fallback=lambda: "fallback", label="rewrite") == "ok"
  assert seen == [1, 2, 3]
  assert [call.args[0] for call in no_sleep.await_args_list] == [2.0, 2.0]


@pytest.mark.anyio
async def test_policy_uses_fallback_without_sleeping_after_last_attempt(no_sleep) -> None:
  async def attempt(number: int) -> str:
    raise RuntimeError("provider down")

  policy = RetryPolicy(max_attempts=2, delay=fixed_delay(1.0), sleep=no_sleep)

  assert await policy.run(attempt, fallback=lambda: "fallback", label="plan") == "fallback"
  assert no_sleep.await_count == 1


@pytest.mark.anyio
async def test_fan_out_reports_completion_order() -> None:
  async def worker(index: int, delay_steps: int) -> int:
    for _ in range(delay_steps):
      await asyncio.sleep(0)
    return index

  done: list[tuple[int, int]] = []
  results = await fan_out([3, 0, 1], worker, on_result=lambda result, count: done.append((result, count)))

  assert results == [1, 2, 0]
  assert [count for _, count in done] == [1, 2, 3]


@pytest.mark.anyio
async def test_fallback_reruns_every_item_sequentially() -> None:
  calls: list[tuple[int, str]] = []
  failed_once = False

  async def worker(index: int, item: str) -> str:
    nonlocal failed_once
    calls.append((index, item))
    if item == "b" and not failed_once:
      failed_once = True
      raise RuntimeError("batch broke")
    return item.upper()

  results = await fan_out_with_fallback(["a", "b", "c"], worker, label="sections")

  assert results == ["A", "B", "C"]
  assert calls[-3:] == [(0, "a"), (1, "b"), (2, "c")]


@pytest.mark.anyio
async def test_fallback_with_no_items() -> None:
  async def worker(index: int, item: str) -> str:
    raise AssertionError("not called")

  assert await fan_out_with_fallback([], worker, label="terms") == []
