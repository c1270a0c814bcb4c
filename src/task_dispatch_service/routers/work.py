"""Worker claim and submission endpoints."""

from __future__ import annotations

import asyncio
import time
from typing import Any

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from task_dispatch_service.core.exceptions import InvalidRequestError
from task_dispatch_service.core.state import get_app_state
from task_dispatch_service.routers.validation import authenticate_worker, read_model
from task_dispatch_service.schemas import SubmitWorkRequest

router = APIRouter()

MAX_WAIT_SECONDS = 30
POLL_INTERVAL_SECONDS = 2.0


def _parse_wait(raw: str | None) -> int:
    if raw is None:
        return 0
    try:
        wait = int(raw)
    except ValueError as exc:
        raise InvalidRequestError("wait must be an integer") from exc
    if wait < 0:
        raise InvalidRequestError("wait must be >= 0")
    return min(wait, MAX_WAIT_SECONDS)


# ---------------------------------------------------------------------------
# GET /work/next: claim the next task, optionally long-polling
# ---------------------------------------------------------------------------


@router.get("/work/next")
async def next_work(request: Request) -> dict[str, Any]:
    """
    Claim the best pending task for the calling worker.

    With ``wait=N`` the claim is retried every few seconds for up to N
    seconds (capped at 30). Returns ``{"task": null, ...}`` when nothing
    matched in time.
    """
    wait = _parse_wait(request.query_params.get("wait"))
    worker = await run_in_threadpool(authenticate_worker, request, "work_next")

    state = get_app_state()
    if state.dispatch_engine is None:
        msg = "DispatchEngine not initialized"
        raise RuntimeError(msg)
    engine = state.dispatch_engine

    deadline = time.monotonic() + wait
    while True:
        claimed = await run_in_threadpool(engine.claim, worker)
        if claimed is not None:
            return claimed
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        await asyncio.sleep(min(POLL_INTERVAL_SECONDS, remaining))

    stats = await run_in_threadpool(engine.worker_stats, worker["worker_id"])
    return {"task": None, "stats": stats}


# ---------------------------------------------------------------------------
# POST /work/submit: deliver output for a held task
# ---------------------------------------------------------------------------


@router.post("/work/submit")
async def submit_work(request: Request) -> dict[str, Any]:
    """Accept output for a task held by the calling worker and settle it."""
    worker = await run_in_threadpool(authenticate_worker, request, "work_submit")
    submission = await read_model(request, SubmitWorkRequest)

    state = get_app_state()
    if state.dispatch_engine is None:
        msg = "DispatchEngine not initialized"
        raise RuntimeError(msg)

    return await run_in_threadpool(
        state.dispatch_engine.submit,
        worker,
        submission.task_id,
        submission.output.model_dump(),
    )
