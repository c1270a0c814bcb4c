"""QA task injection: shadow duplicates, spot-checks and benchmark tasks."""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any

from task_dispatch_service.logging import get_logger
from task_dispatch_service.services.task_store import build_task_record
from task_dispatch_service.services.worker_stats import is_suspicious
from task_dispatch_service.timestamps import utc_now

if TYPE_CHECKING:
    import random

    from task_dispatch_service.services.platform_config import PlatformConfigProvider
    from task_dispatch_service.services.task_store import TaskStore

PLATFORM_BUYER_ID = "platform"

BENCHMARK_TEMPLATES: tuple[dict[str, Any], ...] = (
    {
        "type": "chat",
        "input": {
            "messages": [
                {"role": "user", "content": "What is 2 + 2? Answer with just the number."}
            ],
            "context": {},
        },
        "expected_output": {"answer": "4"},
        "constraints": {"timeout_seconds": 30, "min_output_length": 1},
        "price_cents": 2,
    },
    {
        "type": "translate",
        "input": {
            "messages": [{"role": "user", "content": "Translate 'hello world' to Spanish."}],
            "context": {},
        },
        "expected_output": {"answer": "hola mundo"},
        "constraints": {"timeout_seconds": 30, "min_output_length": 1},
        "price_cents": 3,
    },
    {
        "type": "code",
        "input": {
            "messages": [
                {
                    "role": "user",
                    "content": "Write a function that returns true if a number is even.",
                }
            ],
            "context": {},
        },
        "expected_output": {"contains": "% 2"},
        "constraints": {"timeout_seconds": 60, "min_output_length": 10},
        "price_cents": 5,
    },
)


class QaInjector:
    """
    Inserts platform-funded QA tasks into the pending queue.

    QA tasks look exactly like buyer tasks to workers; only the internal
    record marks them. All dice rolls come from the injected generator.
    """

    def __init__(
        self,
        task_store: TaskStore,
        config_provider: PlatformConfigProvider,
        rng: random.Random,
        benchmark_templates: tuple[dict[str, Any], ...] = BENCHMARK_TEMPLATES,
    ) -> None:
        self._task_store = task_store
        self._config_provider = config_provider
        self._rng = rng
        self._benchmark_templates = benchmark_templates
        self._logger = get_logger(__name__)

    def maybe_inject_shadow(self, task: dict[str, Any]) -> str | None:
        """Roll ``shadow_execution_rate`` for a new buyer task."""
        qa_config = self._config_provider.qa()
        if qa_config is None:
            return None
        rate = float(qa_config.get("shadow_execution_rate", 0.0))
        if self._rng.random() >= rate:
            return None
        return self._inject_duplicate(task, "shadow")

    def maybe_inject_spot_check(self, task: dict[str, Any], worker: dict[str, Any]) -> str | None:
        """Roll the worker's spot-check rate after a successful submission."""
        if task["internal"]["is_qa"]:
            return None
        qa_config = self._config_provider.qa()
        if qa_config is None:
            return None
        rates = qa_config.get("spot_check_rates", {})
        bucket = "suspicious" if is_suspicious(worker) and "suspicious" in rates else worker["tier"]
        rate = float(rates.get(bucket, 0.0))
        if self._rng.random() >= rate:
            return None
        return self._inject_duplicate(task, "spot_check")

    def inject_benchmark(self) -> str:
        """Insert one benchmark task picked at random from the templates."""
        template = self._rng.choice(self._benchmark_templates)
        record = build_task_record(
            buyer_id=PLATFORM_BUYER_ID,
            task_type=template["type"],
            task_input=copy.deepcopy(template["input"]),
            constraints=dict(template["constraints"]),
            price_cents=int(template["price_cents"]),
            created_at=utc_now(),
            qa_type="benchmark",
            expected_output=dict(template["expected_output"]),
            funded_by="platform",
        )
        self._task_store.insert_task(record)
        self._logger.info(
            "Benchmark task injected",
            extra={"task_id": record["task_id"], "type": template["type"]},
        )
        return str(record["task_id"])

    def _inject_duplicate(self, original: dict[str, Any], qa_type: str) -> str:
        record = build_task_record(
            buyer_id=PLATFORM_BUYER_ID,
            task_type=original["type"],
            task_input=copy.deepcopy(original["input"]),
            constraints=dict(original["constraints"]),
            price_cents=int(original["price_cents"]),
            created_at=utc_now(),
            sensitive=bool(original.get("sensitive", False)),
            qa_type=qa_type,
            original_task_id=original["task_id"],
            funded_by="platform",
        )
        self._task_store.insert_task(record)
        self._logger.info(
            "QA task injected",
            extra={
                "task_id": record["task_id"],
                "qa_type": qa_type,
                "original_task_id": original["task_id"],
            },
        )
        return str(record["task_id"])
