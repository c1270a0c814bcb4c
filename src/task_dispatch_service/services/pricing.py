"""Task price lookup from the pricing configuration document."""

from __future__ import annotations

from typing import Any

UNKNOWN_TYPE_PRICE_CENTS = 5
SKILL_TYPE_PREFIX = "skill:"


def pricing_key(task_type: str) -> str:
    """Skill tasks are priced like code tasks."""
    return "code" if task_type.startswith(SKILL_TYPE_PREFIX) else task_type


def calculate_price(pricing: dict[str, Any], task_type: str, message_count: int) -> int:
    """
    Price in cents for a task of the given type and conversation length.

    With ``multi_turn`` tiers the first tier whose ``up_to_message`` covers
    the message count wins; longer conversations use the last tier.
    Types missing from the pricing document cost a flat 5 cents.
    """
    entry = pricing.get(pricing_key(task_type))
    if not isinstance(entry, dict):
        return UNKNOWN_TYPE_PRICE_CENTS

    tiers = entry.get("multi_turn")
    if tiers and message_count > 0:
        for tier in tiers:
            if message_count <= int(tier["up_to_message"]):
                return int(tier["price_cents"])
        return int(tiers[-1]["price_cents"])

    return int(entry.get("base_cents", UNKNOWN_TYPE_PRICE_CENTS))
