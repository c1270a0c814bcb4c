"""Release of matured frozen earnings into available balance."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from task_dispatch_service.logging import get_logger
from task_dispatch_service.timestamps import now_iso

if TYPE_CHECKING:
    from task_dispatch_service.services.balance_ledger import BalanceLedger


class UnfreezeSweeper:
    """Moves matured earnings from frozen to available, one worker at a time."""

    def __init__(self, ledger: BalanceLedger) -> None:
        self._ledger = ledger
        self._logger = get_logger(__name__)

    def run(self) -> dict[str, Any]:
        """
        Run one sweep.

        Returns ``workers`` (workers credited) and ``total_cents`` moved.
        A failure for one worker is logged and does not stop the sweep.
        """
        as_of = now_iso()
        workers = 0
        total_cents = 0
        for worker_id in self._ledger.workers_with_matured_earnings(as_of):
            try:
                moved = self._ledger.unfreeze_matured(worker_id, as_of)
            except Exception:
                self._logger.exception("Failed to unfreeze earnings", extra={"worker_id": worker_id})
                continue
            if moved > 0:
                workers += 1
                total_cents += moved

        if workers:
            self._logger.info(
                "Unfreeze sweep completed",
                extra={"workers": workers, "total_cents": total_cents},
            )
        return {"workers": workers, "total_cents": total_cents}
