"""Buyer task, balance and deposit endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from task_dispatch_service.core.state import get_app_state
from task_dispatch_service.routers.validation import (
    enforce_ip_limit,
    read_model,
    require_buyer_id,
    require_cron_secret,
)
from task_dispatch_service.schemas import CreateTaskRequest, DepositRequest

router = APIRouter()


# ---------------------------------------------------------------------------
# POST /tasks: create and pay for a task
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201)
async def create_task(request: Request) -> JSONResponse:
    """Price a task, debit the buyer and queue it."""
    buyer_id = require_buyer_id(request)
    await run_in_threadpool(enforce_ip_limit, request, "task_submit")
    task_request = await read_model(request, CreateTaskRequest)

    state = get_app_state()
    if state.task_service is None:
        msg = "TaskService not initialized"
        raise RuntimeError(msg)

    result = await run_in_threadpool(state.task_service.create_task, buyer_id, task_request)
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# GET /tasks/{task_id}: buyer view of one task
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}")
async def get_task(task_id: str, request: Request) -> dict[str, Any]:
    """Return a task owned by the calling buyer."""
    buyer_id = require_buyer_id(request)
    await run_in_threadpool(enforce_ip_limit, request, "task_check")

    state = get_app_state()
    if state.task_service is None:
        msg = "TaskService not initialized"
        raise RuntimeError(msg)

    return await run_in_threadpool(state.task_service.get_task_for_buyer, task_id, buyer_id)


# ---------------------------------------------------------------------------
# POST /tasks/{task_id}/credit: refund a completed task
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/credit")
async def credit_task(task_id: str, request: Request) -> dict[str, Any]:
    """Refund a completed task to its buyer."""
    buyer_id = require_buyer_id(request)

    state = get_app_state()
    if state.task_service is None:
        msg = "TaskService not initialized"
        raise RuntimeError(msg)

    return await run_in_threadpool(state.task_service.credit_task, task_id, buyer_id)


# ---------------------------------------------------------------------------
# GET /balance: buyer balance
# ---------------------------------------------------------------------------


@router.get("/balance")
async def get_balance(request: Request) -> dict[str, Any]:
    """Return the calling buyer's balance, creating the account on first use."""
    buyer_id = require_buyer_id(request)
    await run_in_threadpool(enforce_ip_limit, request, "balance_check")

    state = get_app_state()
    if state.task_service is None:
        msg = "TaskService not initialized"
        raise RuntimeError(msg)

    return await run_in_threadpool(state.task_service.get_balance, buyer_id)


# ---------------------------------------------------------------------------
# POST /deposits: credit a confirmed payment (called by the payment relay)
# ---------------------------------------------------------------------------


@router.post("/deposits")
async def deposit(request: Request) -> dict[str, Any]:
    """Credit a buyer once per payment reference, with the first-deposit bonus."""
    require_cron_secret(request, required=True)
    await run_in_threadpool(enforce_ip_limit, request, "deposit")
    deposit_request = await read_model(request, DepositRequest)

    state = get_app_state()
    if state.task_service is None:
        msg = "TaskService not initialized"
        raise RuntimeError(msg)

    return await run_in_threadpool(
        state.task_service.deposit,
        deposit_request.user_id,
        deposit_request.amount_cents,
        deposit_request.payment_ref,
    )
