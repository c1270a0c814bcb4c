"""Health endpoint tests."""

from __future__ import annotations

import pytest

from tests.helpers import create_task


@pytest.mark.unit
async def test_health_returns_ok_with_correct_schema(client):
    response = await client.get("/health")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "ok"
    assert isinstance(data["uptime_seconds"], (int, float))
    assert data["started_at"].endswith("Z")
    assert data["total_tasks"] == 0
    assert data["tasks_by_status"] == {}


@pytest.mark.unit
async def test_health_counts_tasks_by_status(client):
    await create_task(client)
    await create_task(client)

    data = (await client.get("/health")).json()
    assert data["total_tasks"] == 2
    assert data["tasks_by_status"] == {"pending": 2}


@pytest.mark.unit
async def test_unknown_method_returns_405(client):
    response = await client.delete("/health")
    assert response.status_code == 405
    assert response.json()["error"] == "METHOD_NOT_ALLOWED"
