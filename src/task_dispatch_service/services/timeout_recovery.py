"""Recovery of assigned tasks whose deadline passed without a submission."""

from __future__ import annotations

from collections import Counter
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from task_dispatch_service.logging import get_logger
from task_dispatch_service.timestamps import to_iso, utc_now

if TYPE_CHECKING:
    from task_dispatch_service.services.task_store import TaskStore
    from task_dispatch_service.services.worker_store import WorkerStore

SUSPEND_THRESHOLD = 3
SUSPENSION_DURATION = timedelta(hours=1)


class TimeoutRecovery:
    """
    Returns expired assignments to the pending queue and penalizes workers.

    Safe to run concurrently with claims and submissions: each task reset is
    guarded by ``status = 'assigned'``, so a submission that lands first wins.
    """

    def __init__(
        self,
        task_store: TaskStore,
        worker_store: WorkerStore,
        suspend_threshold: int = SUSPEND_THRESHOLD,
        suspension_duration: timedelta = SUSPENSION_DURATION,
    ) -> None:
        self._task_store = task_store
        self._worker_store = worker_store
        self._suspend_threshold = suspend_threshold
        self._suspension_duration = suspension_duration
        self._logger = get_logger(__name__)

    def run(self) -> dict[str, Any]:
        """
        Run one sweep.

        Returns ``recovered`` (task count) and ``penalized`` (ids of workers
        suspended by this sweep).
        """
        now = utc_now()
        recovered = self._task_store.recover_expired(to_iso(now))
        per_worker = Counter(
            entry["worker_id"] for entry in recovered if entry["worker_id"] is not None
        )

        suspend_until = to_iso(now + self._suspension_duration)
        penalized: list[str] = []
        for worker_id, count in per_worker.items():
            try:
                outcome = self._worker_store.record_expirations(
                    worker_id,
                    count,
                    suspend_threshold=self._suspend_threshold,
                    suspend_until=suspend_until,
                )
            except Exception:
                self._logger.exception(
                    "Failed to record expirations", extra={"worker_id": worker_id, "count": count}
                )
                continue
            if outcome is None:
                continue
            if outcome["consecutive_expires"] >= self._suspend_threshold:
                penalized.append(worker_id)
                self._logger.warning(
                    "Worker suspended after consecutive timeouts",
                    extra={
                        "worker_id": worker_id,
                        "consecutive_expires": outcome["consecutive_expires"],
                        "suspended_until": outcome["suspended_until"],
                    },
                )

        if recovered:
            self._logger.info(
                "Timeout recovery completed",
                extra={"recovered": len(recovered), "penalized": len(penalized)},
            )
        return {"recovered": len(recovered), "penalized": penalized}
