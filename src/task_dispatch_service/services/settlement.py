"""Settlement of completed tasks into frozen worker earnings."""

from __future__ import annotations

import math
from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from task_dispatch_service.logging import get_logger
from task_dispatch_service.timestamps import to_iso, utc_now

if TYPE_CHECKING:
    from task_dispatch_service.services.balance_ledger import BalanceLedger
    from task_dispatch_service.services.platform_config import PlatformConfigProvider


def calculate_earnings(price_cents: int, commission_rate: float) -> int:
    """Worker share of a price after commission, rounded down to whole cents."""
    share = Decimal(price_cents) * (Decimal(1) - Decimal(str(commission_rate)))
    return max(0, math.floor(share))


class SettlementEngine:
    """
    Splits a task price into platform commission and worker earnings.

    Earnings go to the worker's frozen bucket and only become withdrawable
    once the freeze window has passed.
    """

    def __init__(self, ledger: BalanceLedger, config_provider: PlatformConfigProvider) -> None:
        self._ledger = ledger
        self._config_provider = config_provider
        self._logger = get_logger(__name__)

    def settle(self, task: dict[str, Any], worker: dict[str, Any]) -> dict[str, Any]:
        """
        Settle a completed task for the worker who completed it.

        Returns ``earned_cents``, ``commission_rate``, ``earning_id`` and
        ``maturity_at``; the last two are None when nothing was earned.
        """
        commission_rate = self._config_provider.commission_rate(str(worker["tier"]))
        earned = calculate_earnings(int(task["price_cents"]), commission_rate)
        result: dict[str, Any] = {
            "earned_cents": earned,
            "commission_rate": commission_rate,
            "earning_id": None,
            "maturity_at": None,
        }
        if earned <= 0:
            return result

        freeze_hours = self._config_provider.freeze_window_hours()
        maturity_at = to_iso(utc_now() + timedelta(hours=freeze_hours))
        self._ledger.initialize_balance(worker["worker_id"])
        result["earning_id"] = self._ledger.freeze_earning(
            worker["worker_id"], task["task_id"], earned, maturity_at
        )
        result["maturity_at"] = maturity_at

        self._logger.info(
            "Task settled",
            extra={
                "task_id": task["task_id"],
                "worker_id": worker["worker_id"],
                "price_cents": task["price_cents"],
                "earned_cents": earned,
                "commission_rate": commission_rate,
            },
        )
        return result
