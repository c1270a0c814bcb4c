"""End-to-end money flow: buyer pays, worker earns frozen, sweep releases."""

from __future__ import annotations

from datetime import timedelta

import pytest
from freezegun import freeze_time

from task_dispatch_service.schemas import CreateTaskRequest
from task_dispatch_service.services.balance_ledger import BalanceLedger
from task_dispatch_service.services.dispatch_engine import DispatchEngine
from task_dispatch_service.services.platform_config import PlatformConfigProvider
from task_dispatch_service.services.qa_comparator import QaComparator
from task_dispatch_service.services.qa_injector import QaInjector
from task_dispatch_service.services.settlement import SettlementEngine
from task_dispatch_service.services.task_service import TaskService
from task_dispatch_service.services.task_store import TaskStore
from task_dispatch_service.services.unfreeze import UnfreezeSweeper
from task_dispatch_service.services.worker_registry import WorkerRegistry
from task_dispatch_service.services.worker_store import WorkerStore
from tests.helpers import ScriptedRandom, task_request_body


@pytest.mark.unit
def test_task_money_flow(
    task_store: TaskStore,
    worker_store: WorkerStore,
    ledger: BalanceLedger,
    config_provider: PlatformConfigProvider,
) -> None:
    rng = ScriptedRandom()
    injector = QaInjector(task_store, config_provider, rng)
    service = TaskService(task_store, worker_store, ledger, injector, config_provider)
    engine = DispatchEngine(
        task_store=task_store,
        worker_store=worker_store,
        ledger=ledger,
        settlement=SettlementEngine(ledger, config_provider),
        qa_injector=injector,
        qa_comparator=QaComparator(task_store, worker_store, config_provider),
        config_provider=config_provider,
        rng=rng,
    )
    registry = WorkerRegistry(worker_store, ledger)
    config_provider.update("pricing", {"analyze": {"base_cents": 100}})

    with freeze_time("2026-03-01 09:00:00") as frozen:
        ledger.initialize_balance("buyer-1", 1000)
        created = service.create_task(
            "buyer-1", CreateTaskRequest.model_validate(task_request_body("analyze"))
        )
        assert created["price_cents"] == 100
        assert created["balance_after"] == 900

        worker = registry.authenticate(registry.register_worker("llm", None)["token"])
        claimed = engine.claim(worker)
        assert claimed is not None
        assert claimed["task"]["id"] == created["task_id"]

        submitted = engine.submit(
            worker, created["task_id"], {"content": "The analysis", "format": "text"}
        )
        assert submitted["earned_cents"] == 75
        assert submitted["stats"]["earnings_today"] == 75

        balance = ledger.get_balance(worker["worker_id"])
        assert balance is not None
        assert (balance["amount_cents"], balance["frozen_cents"]) == (0, 75)

        frozen.tick(timedelta(hours=23))
        assert UnfreezeSweeper(ledger).run()["total_cents"] == 0

        frozen.tick(timedelta(hours=1))
        assert UnfreezeSweeper(ledger).run() == {"workers": 1, "total_cents": 75}

    balance = ledger.get_balance(worker["worker_id"])
    assert balance is not None
    assert (balance["amount_cents"], balance["frozen_cents"], balance["total_earned"]) == (
        75,
        0,
        75,
    )
    buyer = ledger.get_balance("buyer-1")
    assert buyer is not None
    assert buyer["amount_cents"] == 900
    task = task_store.get_task(created["task_id"])
    assert task is not None
    assert task["status"] == "completed"
