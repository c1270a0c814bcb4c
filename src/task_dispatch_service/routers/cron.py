"""Manual triggers for the background sweepers."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from task_dispatch_service.core.state import get_app_state
from task_dispatch_service.routers.validation import require_cron_secret

router = APIRouter(prefix="/cron")


@router.post("/timeout-recovery")
async def run_timeout_recovery(request: Request) -> dict[str, Any]:
    """Return expired assignments to the queue and penalize their workers."""
    require_cron_secret(request)
    state = get_app_state()
    if state.timeout_recovery is None:
        msg = "TimeoutRecovery not initialized"
        raise RuntimeError(msg)
    return await run_in_threadpool(state.timeout_recovery.run)


@router.post("/unfreeze-earnings")
async def run_unfreeze(request: Request) -> dict[str, Any]:
    """Release matured frozen earnings."""
    require_cron_secret(request)
    state = get_app_state()
    if state.unfreeze_sweeper is None:
        msg = "UnfreezeSweeper not initialized"
        raise RuntimeError(msg)
    return await run_in_threadpool(state.unfreeze_sweeper.run)


@router.post("/benchmark-inject")
async def run_benchmark_inject(request: Request) -> dict[str, Any]:
    """Insert one platform-funded benchmark task."""
    require_cron_secret(request)
    state = get_app_state()
    if state.qa_injector is None:
        msg = "QaInjector not initialized"
        raise RuntimeError(msg)
    task_id = await run_in_threadpool(state.qa_injector.inject_benchmark)
    return {"task_id": task_id}
