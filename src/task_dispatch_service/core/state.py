"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from task_dispatch_service.services.balance_ledger import BalanceLedger
    from task_dispatch_service.services.dispatch_engine import DispatchEngine
    from task_dispatch_service.services.platform_config import (
        PlatformConfigProvider,
        PlatformConfigStore,
    )
    from task_dispatch_service.services.qa_injector import QaInjector
    from task_dispatch_service.services.rate_limiter import RateLimitEnforcer
    from task_dispatch_service.services.scheduler import PeriodicJob
    from task_dispatch_service.services.task_service import TaskService
    from task_dispatch_service.services.task_store import TaskStore
    from task_dispatch_service.services.timeout_recovery import TimeoutRecovery
    from task_dispatch_service.services.unfreeze import UnfreezeSweeper
    from task_dispatch_service.services.withdrawal import WithdrawalService
    from task_dispatch_service.services.worker_registry import WorkerRegistry
    from task_dispatch_service.services.worker_store import WorkerStore


@dataclass
class AppState:
    """Components built by the lifespan and shared by every router."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    task_store: TaskStore | None = None
    worker_store: WorkerStore | None = None
    ledger: BalanceLedger | None = None
    config_store: PlatformConfigStore | None = None
    config_provider: PlatformConfigProvider | None = None
    rate_limits: RateLimitEnforcer | None = None
    qa_injector: QaInjector | None = None
    dispatch_engine: DispatchEngine | None = None
    task_service: TaskService | None = None
    worker_registry: WorkerRegistry | None = None
    withdrawals: WithdrawalService | None = None
    timeout_recovery: TimeoutRecovery | None = None
    unfreeze_sweeper: UnfreezeSweeper | None = None
    cron_secret: str | None = None
    jobs: list[PeriodicJob] = field(default_factory=list)

    @property
    def uptime_seconds(self) -> float:
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """Start time as ``YYYY-MM-DDTHH:MM:SSZ``."""
        return self.start_time.strftime("%Y-%m-%dT%H:%M:%SZ")


# Process-wide state, set by the lifespan
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """The running app's state. Raises RuntimeError outside the lifespan."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Forget the current state. Tests call this between apps."""
    _state_container["app_state"] = None
