"""
Tests for async_utils module.

Covers run_sync, run_sync_limited, and init_semaphore.
"""

import asyncio

import pytest

import poolman.core.async_utils as mod
from poolman.core.async_utils import (
    init_semaphore,
    run_sync,
    run_sync_limited,
)


def _sync_add(a: int, b: int) -> int:
    """Simple sync function for testing."""
    return a + b


@pytest.fixture(autouse=True)
def _restore_semaphore():
    original = mod._semaphore
    yield
    mod._semaphore = original


async def test_run_sync_calls_function():
    """run_sync delegates to asyncio.to_thread with correct args."""
    result = await run_sync(_sync_add, 3, 4)
    assert result == 7


async def test_run_sync_passes_kwargs():
    """run_sync forwards keyword arguments."""

    def _kw_func(*, name: str) -> str:
        return f"hello {name}"

    result = await run_sync(_kw_func, name="world")
    assert result == "hello world"


async def test_run_sync_propagates_exceptions():
    def _boom():
        raise ValueError("boom")

    with pytest.raises(ValueError, match="boom"):
        await run_sync(_boom)


async def test_init_semaphore_sets_value():
    """init_semaphore creates a semaphore with the given max_parallel."""
    init_semaphore(5)
    assert mod._semaphore is not None
    assert mod._semaphore._value == 5


async def test_run_sync_limited_respects_semaphore():
    """run_sync_limited acquires the semaphore before running."""
    init_semaphore(2)

    result = await run_sync_limited(_sync_add, 10, 20)
    assert result == 30


async def test_run_sync_limited_without_semaphore():
    """run_sync_limited falls back to unbounded when semaphore is None."""
    mod._semaphore = None

    result = await run_sync_limited(_sync_add, 5, 6)
    assert result == 11


async def test_run_sync_limited_concurrency_bound():
    """run_sync_limited actually limits concurrency via semaphore."""
    import threading
    import time

    init_semaphore(2)

    max_concurrent = 0
    current_concurrent = 0
    lock = threading.Lock()

    def _track_concurrency(val):
        nonlocal max_concurrent, current_concurrent
        with lock:
            current_concurrent += 1
            if current_concurrent > max_concurrent:
                max_concurrent = current_concurrent
        time.sleep(0.05)  # Hold for a bit so others overlap
        with lock:
            current_concurrent -= 1
        return val

    results = await asyncio.gather(
        *(run_sync_limited(_track_concurrency, i) for i in range(6))
    )

    assert results == [0, 1, 2, 3, 4, 5]
    assert max_concurrent <= 2
