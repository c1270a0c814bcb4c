"""Worker registration, profile and payout endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from task_dispatch_service.core.state import AppState, get_app_state
from task_dispatch_service.routers.validation import (
    authenticate_worker,
    enforce_ip_limit,
    read_model,
)
from task_dispatch_service.schemas import (
    BindEmailRequest,
    BindPayoutRequest,
    ConnectWorkerRequest,
    ProfileUpdate,
    WithdrawRequest,
)

if TYPE_CHECKING:
    from task_dispatch_service.services.worker_registry import WorkerRegistry

router = APIRouter(prefix="/workers")


def _require_registry(state: AppState) -> WorkerRegistry:
    if state.worker_registry is None:
        msg = "WorkerRegistry not initialized"
        raise RuntimeError(msg)
    return state.worker_registry


def _worker_summary(state: AppState, worker: dict[str, Any]) -> dict[str, Any]:
    if state.dispatch_engine is None or state.ledger is None:
        msg = "DispatchEngine not initialized"
        raise RuntimeError(msg)
    worker_id = worker["worker_id"]
    balance = state.ledger.get_balance(worker_id) or {}
    return {
        "worker_id": worker_id,
        "worker_type": worker["worker_type"],
        "model_info": worker["model_info"],
        "email": worker["email"],
        "payout": worker["payout"],
        "profile": worker["profile"],
        "tier": worker["tier"],
        "suspended_until": worker["suspended_until"],
        "stats": state.dispatch_engine.worker_stats(worker_id),
        "balance": {
            "amount_cents": balance.get("amount_cents", 0),
            "frozen_cents": balance.get("frozen_cents", 0),
            "total_earned": balance.get("total_earned", 0),
            "total_withdrawn": balance.get("total_withdrawn", 0),
        },
        "created_at": worker["created_at"],
    }


# ---------------------------------------------------------------------------
# POST /workers/connect: register a worker
# ---------------------------------------------------------------------------


@router.post("/connect", status_code=201)
async def connect_worker(request: Request) -> JSONResponse:
    """Register a worker and return its one-time token."""
    await run_in_threadpool(enforce_ip_limit, request, "registration")
    connect = await read_model(request, ConnectWorkerRequest)

    registry = _require_registry(get_app_state())
    model_info = connect.model_info.model_dump() if connect.model_info is not None else None
    result = await run_in_threadpool(registry.register_worker, connect.worker_type, model_info)
    worker = result["worker"]
    return JSONResponse(
        status_code=201,
        content={
            "worker_id": result["worker_id"],
            "token": result["token"],
            "tier": worker["tier"],
            "profile": worker["profile"],
            "created_at": worker["created_at"],
        },
    )


# ---------------------------------------------------------------------------
# GET /workers/me: profile, stats and balance of the caller
# ---------------------------------------------------------------------------


@router.get("/me")
async def get_me(request: Request) -> dict[str, Any]:
    """Return the calling worker's profile, stats and balance."""
    await run_in_threadpool(enforce_ip_limit, request, "worker_me")
    worker = await run_in_threadpool(authenticate_worker, request)
    return await run_in_threadpool(_worker_summary, get_app_state(), worker)


# ---------------------------------------------------------------------------
# PATCH /workers/profile: partial profile update
# ---------------------------------------------------------------------------


@router.patch("/profile")
async def update_profile(request: Request) -> dict[str, Any]:
    """Merge the given preferences, schedule and limits into the profile."""
    worker = await run_in_threadpool(authenticate_worker, request)
    update = await read_model(request, ProfileUpdate)

    registry = _require_registry(get_app_state())
    profile = await run_in_threadpool(registry.update_profile, worker["worker_id"], update)
    return {"worker_id": worker["worker_id"], "profile": profile}


# ---------------------------------------------------------------------------
# Bindings
# ---------------------------------------------------------------------------


@router.post("/email")
async def bind_email(request: Request) -> dict[str, Any]:
    """Bind a contact email to the calling worker."""
    worker = await run_in_threadpool(authenticate_worker, request)
    binding = await read_model(request, BindEmailRequest)

    registry = _require_registry(get_app_state())
    await run_in_threadpool(registry.bind_email, worker["worker_id"], binding.email)
    return {"worker_id": worker["worker_id"], "email": binding.email}


@router.post("/payout")
async def bind_payout(request: Request) -> dict[str, Any]:
    """Bind a payout method to the calling worker."""
    worker = await run_in_threadpool(authenticate_worker, request)
    payout = await read_model(request, BindPayoutRequest)

    registry = _require_registry(get_app_state())
    await run_in_threadpool(registry.bind_payout, worker["worker_id"], payout)
    return {"worker_id": worker["worker_id"], "payout": payout.model_dump()}


# ---------------------------------------------------------------------------
# POST /workers/withdraw: withdraw available earnings
# ---------------------------------------------------------------------------


@router.post("/withdraw")
async def withdraw(request: Request) -> dict[str, Any]:
    """Withdraw from the calling worker's available balance."""
    await run_in_threadpool(enforce_ip_limit, request, "withdrawal")
    worker = await run_in_threadpool(authenticate_worker, request)
    withdraw_request = await read_model(request, WithdrawRequest)

    state = get_app_state()
    if state.withdrawals is None:
        msg = "WithdrawalService not initialized"
        raise RuntimeError(msg)

    return await run_in_threadpool(
        state.withdrawals.request_withdrawal,
        worker["worker_id"],
        withdraw_request.amount_cents,
    )
