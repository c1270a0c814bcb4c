"""Unit tests for periodic background jobs."""

from __future__ import annotations

import asyncio

import pytest

from task_dispatch_service.services.scheduler import PeriodicJob


@pytest.mark.unit
async def test_run_once_returns_result_and_counts() -> None:
    job = PeriodicJob("sum", 60, lambda: 1 + 1)
    assert await job.run_once() == 2
    assert job.runs == 1


@pytest.mark.unit
async def test_run_once_logs_and_swallows_failures() -> None:
    def boom() -> None:
        msg = "sweep failed"
        raise RuntimeError(msg)

    job = PeriodicJob("boom", 60, boom)
    assert await job.run_once() is None
    assert await job.run_once() is None
    assert job.runs == 2


@pytest.mark.unit
async def test_loop_runs_until_stopped() -> None:
    calls: list[int] = []
    job = PeriodicJob("tick", 0.01, lambda: calls.append(1))

    job.start()
    job.start()
    assert job.running
    await asyncio.sleep(0.2)
    await job.stop()

    assert not job.running
    assert len(calls) >= 1
    seen = len(calls)
    await asyncio.sleep(0.05)
    assert len(calls) == seen


@pytest.mark.unit
async def test_stop_before_start_is_noop() -> None:
    job = PeriodicJob("idle", 1, lambda: None)
    await job.stop()
    assert not job.running
    assert job.runs == 0
