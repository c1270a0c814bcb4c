"""Unit test fixtures: cache resets and service components on temp SQLite files."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from task_dispatch_service.config import clear_settings_cache
from task_dispatch_service.core.state import reset_app_state
from task_dispatch_service.services.balance_ledger import BalanceLedger
from task_dispatch_service.services.platform_config import (
    ConfigCache,
    PlatformConfigProvider,
    PlatformConfigStore,
)
from task_dispatch_service.services.task_store import TaskStore
from task_dispatch_service.services.worker_store import WorkerStore

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _clear_caches():
    """Clear settings cache and app state between tests."""
    clear_settings_cache()
    reset_app_state()
    yield
    clear_settings_cache()
    reset_app_state()


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "task-dispatch.db")


@pytest.fixture
def config_store(db_path: str) -> Iterator[PlatformConfigStore]:
    store = PlatformConfigStore(db_path=db_path)
    yield store
    store.close()


@pytest.fixture
def config_provider(config_store: PlatformConfigStore) -> PlatformConfigProvider:
    """Provider seeded with the default documents and caching disabled."""
    provider = PlatformConfigProvider(config_store, ConfigCache(ttl_seconds=0))
    provider.seed_defaults()
    return provider


@pytest.fixture
def task_store(db_path: str) -> Iterator[TaskStore]:
    store = TaskStore(db_path=db_path)
    yield store
    store.close()


@pytest.fixture
def worker_store(db_path: str) -> Iterator[WorkerStore]:
    store = WorkerStore(db_path=db_path)
    yield store
    store.close()


@pytest.fixture
def ledger(db_path: str) -> Iterator[BalanceLedger]:
    balance_ledger = BalanceLedger(db_path=db_path)
    yield balance_ledger
    balance_ledger.close()
