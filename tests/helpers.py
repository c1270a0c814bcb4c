"""Shared test helpers: record factories and a scripted random source."""

from __future__ import annotations

import copy
import itertools
import random
import uuid
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from task_dispatch_service.services.task_store import build_task_record
from task_dispatch_service.services.worker_registry import DEFAULT_PROFILE
from task_dispatch_service.timestamps import now_iso, utc_now

if TYPE_CHECKING:
    from httpx import AsyncClient

CRON_SECRET = "cron-test-secret"

_FORWARDED_HOSTS = itertools.cycle(range(1, 255))


class ScriptedRandom(random.Random):
    """
    ``random()`` returns queued values, then ``default`` once exhausted.

    0.99 as the default means "no dice roll succeeds" for every rate used
    by the service.
    """

    def __init__(self, values: list[float] | None = None, default: float = 0.99) -> None:
        super().__init__(1234)
        self.values = list(values or [])
        self.default = default
        self.calls = 0

    def random(self) -> float:
        self.calls += 1
        if self.values:
            return self.values.pop(0)
        return self.default


def make_worker_record(
    worker_id: str | None = None,
    *,
    tier: str = "new",
    profile: dict[str, Any] | None = None,
    **overrides: Any,
) -> dict[str, Any]:
    """A worker row as the registry would insert it."""
    worker_id = worker_id or f"w-{uuid.uuid4()}"
    record: dict[str, Any] = {
        "worker_id": worker_id,
        "token_hash": f"hash-{worker_id}",
        "worker_type": "llm",
        "model_info": None,
        "email": None,
        "payout": None,
        "profile": profile if profile is not None else copy.deepcopy(DEFAULT_PROFILE),
        "tier": tier,
        "tasks_claimed": 0,
        "tasks_completed": 0,
        "tasks_expired": 0,
        "consecutive_expires": 0,
        "total_earned": 0,
        "credit_requests": 0,
        "spot_pass": 0,
        "spot_fail": 0,
        "suspended_until": None,
        "created_at": now_iso(),
        "last_seen": None,
    }
    record.update(overrides)
    return record


def make_task(
    *,
    buyer_id: str = "buyer-1",
    task_type: str = "chat",
    price_cents: int = 10,
    timeout_seconds: int = 60,
    content: str = "Say hello",
    age_seconds: float = 0.0,
    qa_type: str | None = None,
    original_task_id: str | None = None,
    expected_output: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    A pending task record.

    ``age_seconds`` shifts creation into the past, which also moves the
    deadline back by the same amount.
    """
    return build_task_record(
        buyer_id=buyer_id,
        task_type=task_type,
        task_input={"messages": [{"role": "user", "content": content}], "context": {}},
        constraints={"timeout_seconds": timeout_seconds, "min_output_length": 0},
        price_cents=price_cents,
        created_at=utc_now() - timedelta(seconds=age_seconds),
        qa_type=qa_type,
        original_task_id=original_task_id,
        expected_output=expected_output,
        funded_by="buyer" if qa_type is None else "platform",
    )


def task_request_body(
    task_type: str = "chat",
    messages: int = 1,
    timeout_seconds: int = 60,
) -> dict[str, Any]:
    """JSON body for ``POST /tasks``."""
    return {
        "type": task_type,
        "input": {
            "messages": [{"role": "user", "content": f"message {i}"} for i in range(messages)],
            "context": {},
        },
        "constraints": {"timeout_seconds": timeout_seconds, "min_output_length": 0},
    }


# ---------------------------------------------------------------------------
# HTTP helpers for router tests
# ---------------------------------------------------------------------------


def buyer_headers(buyer_id: str = "buyer-1") -> dict[str, str]:
    return {"X-User-Id": buyer_id}


def worker_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def connect_worker(client: AsyncClient, worker_type: str = "llm") -> dict[str, Any]:
    """
    Register a worker through the API.

    Each call comes from its own forwarded address so the per-IP
    registration limit never interferes.
    """
    response = await client.post(
        "/workers/connect",
        json={"worker_type": worker_type},
        headers={"X-Forwarded-For": f"10.1.0.{next(_FORWARDED_HOSTS)}"},
    )
    assert response.status_code == 201, response.text
    return response.json()


async def create_task(
    client: AsyncClient,
    buyer_id: str = "buyer-1",
    task_type: str = "chat",
    messages: int = 1,
) -> dict[str, Any]:
    response = await client.post(
        "/tasks",
        json=task_request_body(task_type, messages),
        headers=buyer_headers(buyer_id),
    )
    assert response.status_code == 201, response.text
    return response.json()
