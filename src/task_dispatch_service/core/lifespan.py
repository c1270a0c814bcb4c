"""Application lifecycle management."""

from __future__ import annotations

import random
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from task_dispatch_service.config import get_settings
from task_dispatch_service.core.state import init_app_state
from task_dispatch_service.logging import get_logger, setup_logging
from task_dispatch_service.services.balance_ledger import BalanceLedger
from task_dispatch_service.services.dispatch_engine import DispatchEngine
from task_dispatch_service.services.platform_config import (
    ConfigCache,
    PlatformConfigProvider,
    PlatformConfigStore,
)
from task_dispatch_service.services.qa_comparator import QaComparator
from task_dispatch_service.services.qa_injector import QaInjector
from task_dispatch_service.services.rate_limiter import RateLimitEnforcer, SlidingWindowRateLimiter
from task_dispatch_service.services.scheduler import PeriodicJob
from task_dispatch_service.services.settlement import SettlementEngine
from task_dispatch_service.services.task_service import TaskService
from task_dispatch_service.services.task_store import TaskStore
from task_dispatch_service.services.timeout_recovery import TimeoutRecovery
from task_dispatch_service.services.unfreeze import UnfreezeSweeper
from task_dispatch_service.services.withdrawal import WithdrawalService
from task_dispatch_service.services.worker_registry import WorkerRegistry
from task_dispatch_service.services.worker_store import WorkerStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()
    db_path = settings.database.path
    rng = random.Random()  # noqa: S311

    # Platform configuration documents, seeded with defaults on first start
    config_store = PlatformConfigStore(db_path=db_path)
    config_provider = PlatformConfigProvider(
        config_store, ConfigCache(settings.platform.config_cache_ttl_seconds)
    )
    seeded = config_provider.seed_defaults()
    state.config_store = config_store
    state.config_provider = config_provider

    task_store = TaskStore(db_path=db_path)
    worker_store = WorkerStore(db_path=db_path)
    ledger = BalanceLedger(db_path=db_path)
    state.task_store = task_store
    state.worker_store = worker_store
    state.ledger = ledger

    state.rate_limits = RateLimitEnforcer(SlidingWindowRateLimiter(), config_provider)

    qa_injector = QaInjector(task_store, config_provider, rng)
    qa_comparator = QaComparator(task_store, worker_store, config_provider)
    state.qa_injector = qa_injector

    state.dispatch_engine = DispatchEngine(
        task_store=task_store,
        worker_store=worker_store,
        ledger=ledger,
        settlement=SettlementEngine(ledger, config_provider),
        qa_injector=qa_injector,
        qa_comparator=qa_comparator,
        config_provider=config_provider,
        rng=rng,
    )
    state.task_service = TaskService(
        task_store=task_store,
        worker_store=worker_store,
        ledger=ledger,
        qa_injector=qa_injector,
        config_provider=config_provider,
    )
    state.worker_registry = WorkerRegistry(worker_store, ledger)
    state.withdrawals = WithdrawalService(ledger, config_provider)
    state.timeout_recovery = TimeoutRecovery(task_store, worker_store)
    state.unfreeze_sweeper = UnfreezeSweeper(ledger)
    state.cron_secret = settings.platform.cron_secret

    sweepers = settings.sweepers
    if sweepers.enabled:
        state.jobs = [
            PeriodicJob(
                "timeout-recovery",
                sweepers.timeout_recovery_interval_seconds,
                state.timeout_recovery.run,
            ),
            PeriodicJob("unfreeze", sweepers.unfreeze_interval_seconds, state.unfreeze_sweeper.run),
            PeriodicJob(
                "benchmark-inject",
                sweepers.benchmark_interval_seconds,
                qa_injector.inject_benchmark,
            ),
        ]
        for job in state.jobs:
            job.start()

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": db_path,
            "config_documents_seeded": seeded,
            "sweepers_enabled": sweepers.enabled,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    for job in state.jobs:
        await job.stop()

    task_store.close()
    worker_store.close()
    ledger.close()
    config_store.close()
