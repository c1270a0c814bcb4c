"""Worker tier ladder and derived statistics."""

from __future__ import annotations

from typing import Any

TIER_ORDER: tuple[str, ...] = ("new", "proven", "trusted", "elite")
LOWEST_TIER = TIER_ORDER[0]


def completion_rate(worker: dict[str, Any]) -> float:
    """Completed over attempted (completed + expired); 0 with no attempts."""
    completed = int(worker["tasks_completed"])
    attempted = completed + int(worker["tasks_expired"])
    return completed / attempted if attempted > 0 else 0.0


def credit_rate(worker: dict[str, Any]) -> float:
    """Buyer credit requests over completed tasks; 0 with no completions."""
    completed = int(worker["tasks_completed"])
    return int(worker["credit_requests"]) / completed if completed > 0 else 0.0


def next_tier(tier: str) -> str | None:
    if tier not in TIER_ORDER:
        return TIER_ORDER[1]
    index = TIER_ORDER.index(tier)
    return TIER_ORDER[index + 1] if index + 1 < len(TIER_ORDER) else None


def is_suspicious(worker: dict[str, Any]) -> bool:
    """Workers failing at least as many spot-checks as they pass."""
    spot_fail = int(worker["spot_fail"])
    return spot_fail > 0 and spot_fail >= int(worker["spot_pass"])


def next_tier_requirements(
    worker: dict[str, Any],
    tiers: dict[str, Any],
) -> dict[str, Any] | None:
    """Progress towards the next tier, or None at the top of the ladder."""
    target = next_tier(str(worker["tier"]))
    if target is None:
        return None
    level = tiers.get(target)
    if not isinstance(level, dict):
        return None

    min_tasks = int(level.get("min_tasks", 0))
    min_completion = float(level.get("min_completion", 0.0))
    max_credit_rate = float(level.get("max_credit_rate", 1.0))
    completed = int(worker["tasks_completed"])
    return {
        "min_tasks": min_tasks,
        "min_completion_rate": min_completion,
        "max_credit_rate": max_credit_rate,
        "tasks_remaining": max(0, min_tasks - completed),
        "completion_rate_met": completion_rate(worker) >= min_completion,
        "credit_rate_met": credit_rate(worker) <= max_credit_rate,
    }


def build_worker_stats(
    worker: dict[str, Any],
    tiers: dict[str, Any],
    earnings_today: int,
) -> dict[str, Any]:
    """Stats payload returned to workers after claims and submissions."""
    return {
        "tasks_completed": int(worker["tasks_completed"]),
        "completion_rate": round(completion_rate(worker), 2),
        "credit_request_rate": round(credit_rate(worker), 2),
        "tier": worker["tier"],
        "next_tier": next_tier(str(worker["tier"])),
        "next_tier_requires": next_tier_requirements(worker, tiers),
        "earnings_today": earnings_today,
        "total_earned": int(worker["total_earned"]),
    }
