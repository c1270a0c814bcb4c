"""Router test fixtures: a live app on a temp database driven over ASGI."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient

from task_dispatch_service.app import create_app
from task_dispatch_service.config import clear_settings_cache
from task_dispatch_service.core.lifespan import lifespan
from task_dispatch_service.core.state import get_app_state, reset_app_state
from tests.helpers import CRON_SECRET, ScriptedRandom

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path


@pytest.fixture
def rng() -> ScriptedRandom:
    """Random source shared by dispatch and QA injection; no roll succeeds by default."""
    return ScriptedRandom()


@pytest.fixture
async def app(tmp_path: Path, rng: ScriptedRandom) -> AsyncIterator[Any]:
    """Create a test app with a temp database and background sweepers off."""
    db_path = tmp_path / "test.db"
    config_content = f"""\
service:
  name: "task-dispatch"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{tmp_path / "logs"}"
database:
  path: "{db_path}"
request:
  max_body_size: 1048576
platform:
  config_cache_ttl_seconds: 0
  cron_secret: "{CRON_SECRET}"
sweepers:
  enabled: false
  timeout_recovery_interval_seconds: 10
  unfreeze_interval_seconds: 3600
  benchmark_interval_seconds: 300
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        state = get_app_state()
        if state.dispatch_engine is not None:
            state.dispatch_engine._rng = rng
        if state.qa_injector is not None:
            state.qa_injector._rng = rng
        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
