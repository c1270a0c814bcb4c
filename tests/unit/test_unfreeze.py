"""Unit tests for the unfreeze sweeper."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from freezegun import freeze_time

from task_dispatch_service.services.balance_ledger import BalanceLedger
from task_dispatch_service.services.unfreeze import UnfreezeSweeper
from task_dispatch_service.timestamps import to_iso, utc_now


@pytest.mark.unit
def test_nothing_moves_before_maturity(ledger: BalanceLedger) -> None:
    with freeze_time("2026-03-01 12:00:00"):
        ledger.initialize_balance("w-1")
        ledger.freeze_earning("w-1", "t-1", 75, to_iso(utc_now() + timedelta(hours=24)))

    with freeze_time("2026-03-02 11:59:59"):
        assert UnfreezeSweeper(ledger).run() == {"workers": 0, "total_cents": 0}

    balance = ledger.get_balance("w-1")
    assert balance is not None
    assert balance["frozen_cents"] == 75
    assert balance["amount_cents"] == 0


@pytest.mark.unit
def test_matured_earnings_become_available(ledger: BalanceLedger) -> None:
    with freeze_time("2026-03-01 12:00:00"):
        for worker_id in ("w-1", "w-2"):
            ledger.initialize_balance(worker_id)
        maturity = to_iso(utc_now() + timedelta(hours=24))
        ledger.freeze_earning("w-1", "t-1", 75, maturity)
        ledger.freeze_earning("w-1", "t-2", 25, maturity)
        ledger.freeze_earning("w-2", "t-3", 40, maturity)

    with freeze_time("2026-03-02 12:00:00"):
        result = UnfreezeSweeper(ledger).run()

    assert result == {"workers": 2, "total_cents": 140}
    first = ledger.get_balance("w-1")
    assert first is not None
    assert (first["amount_cents"], first["frozen_cents"]) == (100, 0)
    second = ledger.get_balance("w-2")
    assert second is not None
    assert (second["amount_cents"], second["frozen_cents"]) == (40, 0)


@pytest.mark.unit
def test_sweep_is_idempotent(ledger: BalanceLedger) -> None:
    with freeze_time("2026-03-01 12:00:00"):
        ledger.initialize_balance("w-1")
        ledger.freeze_earning("w-1", "t-1", 75, to_iso(utc_now() + timedelta(hours=1)))

    with freeze_time("2026-03-01 14:00:00"):
        sweeper = UnfreezeSweeper(ledger)
        assert sweeper.run()["total_cents"] == 75
        assert sweeper.run() == {"workers": 0, "total_cents": 0}

    balance = ledger.get_balance("w-1")
    assert balance is not None
    assert balance["amount_cents"] == 75


@pytest.mark.unit
def test_one_failing_worker_does_not_stop_sweep() -> None:
    ledger = MagicMock(spec=BalanceLedger)
    ledger.workers_with_matured_earnings.return_value = ["w-bad", "w-good"]
    ledger.unfreeze_matured.side_effect = [RuntimeError("guard failed"), 30]

    result = UnfreezeSweeper(ledger).run()

    assert result == {"workers": 1, "total_cents": 30}
    assert ledger.unfreeze_matured.call_count == 2
