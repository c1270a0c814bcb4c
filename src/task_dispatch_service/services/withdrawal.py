"""Worker withdrawals from available (never frozen) balance."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from task_dispatch_service.core.exceptions import InvalidRequestError
from task_dispatch_service.logging import get_logger
from task_dispatch_service.timestamps import start_of_day_iso, utc_now

if TYPE_CHECKING:
    from task_dispatch_service.services.balance_ledger import BalanceLedger
    from task_dispatch_service.services.platform_config import PlatformConfigProvider


class WithdrawalService:
    """Validates withdrawal limits and debits the ledger."""

    def __init__(self, ledger: BalanceLedger, config_provider: PlatformConfigProvider) -> None:
        self._ledger = ledger
        self._config_provider = config_provider
        self._logger = get_logger(__name__)

    def request_withdrawal(self, worker_id: str, amount_cents: int) -> dict[str, Any]:
        """
        Withdraw from a worker's available balance.

        Payouts stay ``pending``; no payment provider is called here.

        Raises:
            InvalidRequestError: Below the minimum or over today's limit.
            InsufficientBalanceError: Available balance too low.
        """
        commissions = self._config_provider.commissions()
        min_cents = int(commissions["min_withdrawal_cents"])
        daily_limit = int(commissions["daily_withdrawal_limit_cents"])

        if amount_cents < min_cents:
            raise InvalidRequestError(
                f"Minimum withdrawal is {min_cents} cents", {"min_withdrawal_cents": min_cents}
            )

        used_today = abs(
            self._ledger.sum_transactions(worker_id, "withdraw", start_of_day_iso(utc_now()))
        )
        if used_today + amount_cents > daily_limit:
            raise InvalidRequestError(
                f"Daily withdrawal limit is {daily_limit} cents "
                f"({used_today} already withdrawn today)",
                {"daily_withdrawal_limit_cents": daily_limit, "withdrawn_today_cents": used_today},
            )

        balance_after = self._ledger.withdraw(worker_id, amount_cents, None)
        self._logger.info(
            "Withdrawal requested",
            extra={"worker_id": worker_id, "amount_cents": amount_cents},
        )
        return {
            "amount_cents": amount_cents,
            "balance_after": balance_after,
            "payout_status": "pending",
        }
