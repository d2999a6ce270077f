"""Tests for council/retry.py."""

from unittest.mock import AsyncMock

import pytest

from council.retry import retry


async def test_success_on_first_attempt(sleep_recorder):
    operation = AsyncMock(return_value="done")
    result = await retry(operation, max_retries=3, sleep=sleep_recorder)
    assert result == "done"
    assert operation.await_count == 1
    assert sleep_recorder.delays == []


async def test_linear_backoff_until_success(sleep_recorder):
    operation = AsyncMock(side_effect=[RuntimeError("one"), RuntimeError("two"), "ok"])
    result = await retry(operation, max_retries=3, base_delay_ms=1000, sleep=sleep_recorder)
    assert result == "ok"
    assert operation.await_count == 3
    assert sleep_recorder.delays == [1.0, 2.0]


async def test_exhausted_reraises_last_error(sleep_recorder):
    operation = AsyncMock(side_effect=[RuntimeError("first"), RuntimeError("last")])
    with pytest.raises(RuntimeError, match="last"):
        await retry(operation, max_retries=2, base_delay_ms=500, sleep=sleep_recorder)
    assert operation.await_count == 2
    assert sleep_recorder.delays == [0.5]


async def test_single_attempt_does_not_sleep(sleep_recorder):
    operation = AsyncMock(side_effect=ValueError("nope"))
    with pytest.raises(ValueError):
        await retry(operation, max_retries=1, sleep=sleep_recorder)
    assert sleep_recorder.delays == []


async def test_invalid_max_retries():
    with pytest.raises(ValueError):
        await retry(AsyncMock(), max_retries=0)
