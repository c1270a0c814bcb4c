"""Unit tests for TaskStore."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import Any

import pytest

from task_dispatch_service.services.task_store import DuplicateTaskError, TaskStore
from task_dispatch_service.timestamps import now_iso, parse_iso, to_iso, utc_now
from tests.helpers import make_task


def _claim(
    store: TaskStore,
    worker_id: str,
    *,
    fifo: bool = True,
    accept: list[str] | None = None,
    reject: list[str] | None = None,
    min_price: int = 0,
) -> dict[str, Any] | None:
    return store.claim_next(
        worker_id,
        now=now_iso(),
        accept=accept or [],
        reject=reject or [],
        min_price=min_price,
        fifo=fifo,
    )


@pytest.mark.unit
def test_task_crud_and_counts(task_store: TaskStore) -> None:
    """Tasks persist with their internal record nested and count by status."""
    first = make_task()
    second = make_task(qa_type="benchmark", expected_output={"answer": "4"})
    task_store.insert_task(first)
    task_store.insert_task(second)

    loaded = task_store.get_task(first["task_id"])
    assert loaded is not None
    assert loaded["status"] == "pending"
    assert loaded["input"]["messages"][0]["content"] == "Say hello"
    assert loaded["internal"]["is_qa"] is False
    assert loaded["internal"]["funded_by"] == "buyer"

    qa = task_store.get_task(second["task_id"])
    assert qa is not None
    assert qa["internal"]["is_qa"] is True
    assert qa["internal"]["expected_output"] == {"answer": "4"}

    assert task_store.count_tasks() == 2
    assert task_store.count_tasks_by_status() == {"pending": 2}
    assert task_store.get_task("t-missing") is None


@pytest.mark.unit
def test_duplicate_task_rejected(task_store: TaskStore) -> None:
    task = make_task()
    task_store.insert_task(task)
    with pytest.raises(DuplicateTaskError):
        task_store.insert_task(task)


@pytest.mark.unit
def test_claim_fifo_takes_oldest(task_store: TaskStore) -> None:
    old = make_task(price_cents=1, age_seconds=5)
    new = make_task(price_cents=50)
    task_store.insert_task(new)
    task_store.insert_task(old)

    claimed = _claim(task_store, "w-1", fifo=True)
    assert claimed is not None
    assert claimed["task_id"] == old["task_id"]
    assert claimed["status"] == "assigned"
    assert claimed["worker_id"] == "w-1"
    assert claimed["assigned_at"] is not None


@pytest.mark.unit
def test_claim_price_order_takes_most_valuable(task_store: TaskStore) -> None:
    cheap = make_task(price_cents=2, age_seconds=5)
    rich = make_task(price_cents=50)
    task_store.insert_task(cheap)
    task_store.insert_task(rich)

    claimed = _claim(task_store, "w-1", fifo=False)
    assert claimed is not None
    assert claimed["task_id"] == rich["task_id"]


@pytest.mark.unit
def test_claim_applies_preferences(task_store: TaskStore) -> None:
    chat = make_task(task_type="chat", price_cents=2)
    code = make_task(task_type="code", price_cents=5)
    research = make_task(task_type="research", price_cents=50)
    for task in (chat, code, research):
        task_store.insert_task(task)

    assert _claim(task_store, "w-1", accept=["translate"]) is None

    claimed = _claim(task_store, "w-1", reject=["chat", "research"])
    assert claimed is not None
    assert claimed["task_id"] == code["task_id"]

    assert _claim(task_store, "w-2", min_price=100) is None
    claimed = _claim(task_store, "w-2", min_price=10)
    assert claimed is not None
    assert claimed["task_id"] == research["task_id"]


@pytest.mark.unit
def test_claim_skips_tasks_past_deadline(task_store: TaskStore) -> None:
    stale = make_task(timeout_seconds=10, age_seconds=20)
    task_store.insert_task(stale)
    assert _claim(task_store, "w-1") is None


@pytest.mark.unit
def test_claim_returns_none_on_empty_queue(task_store: TaskStore) -> None:
    assert _claim(task_store, "w-1") is None


@pytest.mark.unit
def test_concurrent_claims_assign_each_task_once(task_store: TaskStore) -> None:
    """Racing pollers never receive the same task."""
    task = make_task()
    task_store.insert_task(task)

    def claim(index: int):
        return _claim(task_store, f"w-{index}")

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(claim, range(16)))

    winners = [result for result in results if result is not None]
    assert len(winners) == 1
    stored = task_store.get_task(task["task_id"])
    assert stored is not None
    assert stored["worker_id"] == winners[0]["worker_id"]


@pytest.mark.unit
def test_concurrent_claims_over_many_tasks(task_store: TaskStore) -> None:
    """With N tasks and more pollers, exactly N distinct claims succeed."""
    tasks = [make_task() for _ in range(5)]
    for task in tasks:
        task_store.insert_task(task)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda i: _claim(task_store, f"w-{i}"), range(20)))

    claimed_ids = [result["task_id"] for result in results if result is not None]
    assert len(claimed_ids) == 5
    assert len(set(claimed_ids)) == 5


@pytest.mark.unit
def test_qa_duplicate_never_goes_to_original_worker(task_store: TaskStore) -> None:
    original = make_task()
    task_store.insert_task(original)
    assert _claim(task_store, "w-1") is not None

    shadow = make_task(qa_type="shadow", original_task_id=original["task_id"])
    task_store.insert_task(shadow)

    assert _claim(task_store, "w-1") is None
    claimed = _claim(task_store, "w-2")
    assert claimed is not None
    assert claimed["task_id"] == shadow["task_id"]


@pytest.mark.unit
def test_original_never_goes_to_shadow_worker(task_store: TaskStore) -> None:
    original = make_task()
    shadow = make_task(qa_type="shadow", original_task_id=original["task_id"], age_seconds=5)
    task_store.insert_task(original)
    task_store.insert_task(shadow)

    first = _claim(task_store, "w-1")
    assert first is not None
    assert first["task_id"] == shadow["task_id"]
    assert _claim(task_store, "w-1") is None


@pytest.mark.unit
def test_complete_task_requires_holder_and_assigned(task_store: TaskStore) -> None:
    task = make_task()
    task_store.insert_task(task)
    assert _claim(task_store, "w-1") is not None

    output = {"content": "hello", "format": "text"}
    assert task_store.complete_task(task["task_id"], "w-2", output, now_iso()) is None

    completed = task_store.complete_task(task["task_id"], "w-1", output, now_iso())
    assert completed is not None
    assert completed["status"] == "completed"
    assert completed["output"] == output

    assert task_store.complete_task(task["task_id"], "w-1", output, now_iso()) is None


@pytest.mark.unit
def test_concurrent_submissions_complete_once(task_store: TaskStore) -> None:
    task = make_task()
    task_store.insert_task(task)
    assert _claim(task_store, "w-1") is not None
    output = {"content": "hello", "format": "text"}

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(
            pool.map(
                lambda _: task_store.complete_task(task["task_id"], "w-1", output, now_iso()),
                range(8),
            )
        )
    assert sum(result is not None for result in results) == 1


@pytest.mark.unit
def test_mark_credited_guards(task_store: TaskStore) -> None:
    task = make_task(buyer_id="buyer-1")
    task_store.insert_task(task)
    assert task_store.mark_credited(task["task_id"], "buyer-1") is None

    assert _claim(task_store, "w-1") is not None
    task_store.complete_task(task["task_id"], "w-1", {"content": "x", "format": "text"}, now_iso())

    assert task_store.mark_credited(task["task_id"], "buyer-2") is None
    credited = task_store.mark_credited(task["task_id"], "buyer-1")
    assert credited is not None
    assert credited["status"] == "credited"
    assert task_store.mark_credited(task["task_id"], "buyer-1") is None


@pytest.mark.unit
def test_recover_expired_resets_and_moves_deadline(task_store: TaskStore) -> None:
    task = make_task(timeout_seconds=30)
    task_store.insert_task(task)
    assert _claim(task_store, "w-1") is not None

    later = utc_now() + timedelta(seconds=31)
    recovered = task_store.recover_expired(to_iso(later))
    assert recovered == [{"task_id": task["task_id"], "worker_id": "w-1"}]

    stored = task_store.get_task(task["task_id"])
    assert stored is not None
    assert stored["status"] == "pending"
    assert stored["worker_id"] is None
    assert stored["assigned_at"] is None
    assert parse_iso(stored["deadline"]) == later + timedelta(seconds=30)

    assert task_store.recover_expired(to_iso(later)) == []


@pytest.mark.unit
def test_recover_ignores_completed_and_unexpired(task_store: TaskStore) -> None:
    done = make_task(timeout_seconds=30)
    active = make_task(timeout_seconds=600)
    task_store.insert_task(done)
    task_store.insert_task(active)
    claimed = _claim(task_store, "w-1")
    assert claimed is not None
    task_store.complete_task(
        claimed["task_id"], "w-1", {"content": "x", "format": "text"}, now_iso()
    )
    assert _claim(task_store, "w-2") is not None

    later = to_iso(utc_now() + timedelta(seconds=60))
    assert task_store.recover_expired(later) == []


@pytest.mark.unit
def test_reverts_only_undo_their_own_transition(task_store: TaskStore) -> None:
    task = make_task(buyer_id="buyer-1")
    task_store.insert_task(task)
    assert _claim(task_store, "w-1") is not None

    assert task_store.revert_completion(task["task_id"], "w-1") is False
    task_store.complete_task(task["task_id"], "w-1", {"content": "x", "format": "text"}, now_iso())
    assert task_store.revert_completion(task["task_id"], "w-2") is False
    assert task_store.revert_credit(task["task_id"], "buyer-1") is False

    assert task_store.mark_credited(task["task_id"], "buyer-1") is not None
    assert task_store.revert_credit(task["task_id"], "buyer-1") is True
    stored = task_store.get_task(task["task_id"])
    assert stored is not None
    assert stored["status"] == "completed"

    assert task_store.revert_completion(task["task_id"], "w-1") is True
    stored = task_store.get_task(task["task_id"])
    assert stored is not None
    assert stored["status"] == "assigned"
    assert stored["output"] is None
    assert stored["completed_at"] is None


@pytest.mark.unit
def test_sensitive_and_preview_round_trip(task_store: TaskStore) -> None:
    task = make_task()
    task["sensitive"] = True
    task["input_preview"] = {"summary": "Say hello"}
    task_store.insert_task(task)

    stored = task_store.get_task(task["task_id"])
    assert stored is not None
    assert stored["sensitive"] is True
    assert stored["input_preview"] == {"summary": "Say hello"}
    assert "sensitive" not in stored["internal"]


@pytest.mark.unit
def test_qa_result_and_unscored_listing(task_store: TaskStore) -> None:
    original = make_task()
    shadow = make_task(qa_type="shadow", original_task_id=original["task_id"], age_seconds=5)
    task_store.insert_task(original)
    task_store.insert_task(shadow)
    assert task_store.list_unscored_qa_tasks(original["task_id"]) == []

    claimed = _claim(task_store, "w-2")
    assert claimed is not None
    task_store.complete_task(
        claimed["task_id"], "w-2", {"content": "x", "format": "text"}, now_iso()
    )
    pending = task_store.list_unscored_qa_tasks(original["task_id"])
    assert [task["task_id"] for task in pending] == [claimed["task_id"]]

    assert task_store.set_qa_result(claimed["task_id"], {"verdict": "pass"}) is True
    assert task_store.list_unscored_qa_tasks(original["task_id"]) == []
    assert task_store.set_qa_result(claimed["task_id"], {"verdict": "fail"}) is False
    assert task_store.set_qa_result(original["task_id"], {"verdict": "pass"}) is False

    stored = task_store.get_task(claimed["task_id"])
    assert stored is not None
    assert stored["internal"]["qa_result"] == {"verdict": "pass"}


@pytest.mark.unit
def test_list_tasks_filters(task_store: TaskStore) -> None:
    task_store.insert_task(make_task(buyer_id="buyer-1"))
    task_store.insert_task(make_task(buyer_id="buyer-2"))
    task_store.insert_task(make_task(buyer_id="buyer-1"))

    assert len(task_store.list_tasks()) == 3
    assert len(task_store.list_tasks(buyer_id="buyer-1")) == 2
    assert len(task_store.list_tasks(status="assigned")) == 0
    assert len(task_store.list_tasks(limit=1)) == 1
