"""Tests for the off-loop inference pool."""

from __future__ import annotations

import threading

import pytest

from terrainrisk.config import Settings
from terrainrisk.ml.inference import InferencePool


class TestInferencePool:
    async def test_runs_function_on_worker_thread(self) -> None:
        pool = InferencePool(Settings(max_concurrent=1))
        try:
            thread_name = await pool.run(lambda: threading.current_thread().name)
        finally:
            pool.shutdown()
        assert thread_name.startswith("fire-risk-analysis")

    async def test_passes_arguments(self) -> None:
        pool = InferencePool(Settings())
        try:
            assert await pool.run(pow, 2, 10) == 1024
        finally:
            pool.shutdown()

    async def test_counters_return_to_zero(self) -> None:
        pool = InferencePool(Settings())
        try:
            await pool.run(sum, [1, 2, 3])
            assert pool.active_count == 0
            assert pool.queue_depth == 0
        finally:
            pool.shutdown()

    async def test_times_out_when_saturated(self) -> None:
        pool = InferencePool(Settings(max_concurrent=1, queue_timeout=0.05))
        try:
            await pool._semaphore.acquire()
            with pytest.raises(TimeoutError):
                await pool.run(sum, [1])
            assert pool.queue_depth == 0
        finally:
            pool._semaphore.release()
            pool.shutdown()

    async def test_exceptions_propagate(self) -> None:
        pool = InferencePool(Settings())
        try:
            with pytest.raises(ZeroDivisionError):
                await pool.run(divmod, 1, 0)
            assert pool.active_count == 0
        finally:
            pool.shutdown()
