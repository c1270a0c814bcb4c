"""Unit tests for tier ladder and worker statistics."""

from __future__ import annotations

import pytest

from task_dispatch_service.services.platform_config import DEFAULT_TIERS
from task_dispatch_service.services.worker_stats import (
    build_worker_stats,
    completion_rate,
    credit_rate,
    is_suspicious,
    next_tier,
    next_tier_requirements,
)
from tests.helpers import make_worker_record


@pytest.mark.unit
def test_rates_are_zero_without_history() -> None:
    worker = make_worker_record()
    assert completion_rate(worker) == 0.0
    assert credit_rate(worker) == 0.0


@pytest.mark.unit
def test_rates_from_counters() -> None:
    worker = make_worker_record(tasks_completed=9, tasks_expired=1, credit_requests=3)
    assert completion_rate(worker) == pytest.approx(0.9)
    assert credit_rate(worker) == pytest.approx(1 / 3)


@pytest.mark.unit
def test_next_tier_ladder() -> None:
    assert next_tier("new") == "proven"
    assert next_tier("proven") == "trusted"
    assert next_tier("trusted") == "elite"
    assert next_tier("elite") is None


@pytest.mark.unit
def test_suspicious_requires_failures() -> None:
    assert is_suspicious(make_worker_record()) is False
    assert is_suspicious(make_worker_record(spot_fail=1, spot_pass=1)) is True
    assert is_suspicious(make_worker_record(spot_fail=1, spot_pass=2)) is False


@pytest.mark.unit
def test_next_tier_requirements_progress() -> None:
    worker = make_worker_record(tasks_completed=45, tasks_expired=5, credit_requests=1)
    requirements = next_tier_requirements(worker, DEFAULT_TIERS)
    assert requirements == {
        "min_tasks": 50,
        "min_completion_rate": 0.90,
        "max_credit_rate": 0.05,
        "tasks_remaining": 5,
        "completion_rate_met": True,
        "credit_rate_met": True,
    }


@pytest.mark.unit
def test_top_tier_has_no_requirements() -> None:
    assert next_tier_requirements(make_worker_record(tier="elite"), DEFAULT_TIERS) is None


@pytest.mark.unit
def test_build_worker_stats_rounds_rates() -> None:
    worker = make_worker_record(
        tasks_completed=2, tasks_expired=1, credit_requests=1, total_earned=150
    )
    stats = build_worker_stats(worker, DEFAULT_TIERS, earnings_today=75)

    assert stats["tasks_completed"] == 2
    assert stats["completion_rate"] == 0.67
    assert stats["credit_request_rate"] == 0.5
    assert stats["tier"] == "new"
    assert stats["next_tier"] == "proven"
    assert stats["next_tier_requires"]["tasks_remaining"] == 48
    assert stats["earnings_today"] == 75
    assert stats["total_earned"] == 150
