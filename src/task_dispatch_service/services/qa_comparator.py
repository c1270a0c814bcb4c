"""
QA comparison: scores a completed QA task against its reference output.

Three dimensions are averaged: word overlap (Jaccard over lowercased
whitespace tokens), length ratio, and format match. The average is mapped
to pass / flag / fail with the configured thresholds.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from task_dispatch_service.logging import get_logger

if TYPE_CHECKING:
    from task_dispatch_service.services.platform_config import PlatformConfigProvider
    from task_dispatch_service.services.task_store import TaskStore
    from task_dispatch_service.services.worker_store import WorkerStore


def word_overlap(text_a: str, text_b: str) -> float:
    words_a = set(text_a.lower().split())
    words_b = set(text_b.lower().split())
    if not words_a and not words_b:
        return 1.0
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def length_ratio(text_a: str, text_b: str) -> float:
    len_a = len(text_a)
    len_b = len(text_b)
    if len_a == 0 and len_b == 0:
        return 1.0
    if len_a == 0 or len_b == 0:
        return 0.0
    return min(len_a, len_b) / max(len_a, len_b)


def format_match(output_format: str | None) -> float:
    return 1.0 if output_format == "text" else 0.8


def score_to_verdict(score: float, thresholds: dict[str, Any]) -> str:
    if score >= float(thresholds["pass"]):
        return "pass"
    if score >= float(thresholds["flag"]):
        return "flag"
    return "fail"


def score_output(
    content: str,
    output_format: str | None,
    reference: str,
    thresholds: dict[str, Any],
) -> dict[str, Any]:
    """Build the ``qa_result`` record for one candidate output."""
    dimensions = {
        "content_overlap": word_overlap(content, reference),
        "length_ratio": length_ratio(content, reference),
        "format_match": format_match(output_format),
    }
    similarity = sum(dimensions.values()) / len(dimensions)
    return {
        "similarity": similarity,
        "dimensions": dimensions,
        "verdict": score_to_verdict(similarity, thresholds),
    }


class QaComparator:
    """Scores QA tasks and feeds verdicts into worker spot-check counters."""

    def __init__(
        self,
        task_store: TaskStore,
        worker_store: WorkerStore,
        config_provider: PlatformConfigProvider,
    ) -> None:
        self._task_store = task_store
        self._worker_store = worker_store
        self._config_provider = config_provider
        self._logger = get_logger(__name__)

    def compare(self, qa_task: dict[str, Any]) -> dict[str, Any] | None:
        """
        Score a completed QA task.

        Returns the stored result, or None when nothing was recorded: the task
        is not a completed QA task, QA config or the reference is missing, or
        another caller already scored it. Worker counters move only for the
        caller whose result was stored.
        """
        internal = qa_task["internal"]
        if not internal["is_qa"] or qa_task["output"] is None:
            return None

        qa_config = self._config_provider.qa()
        if qa_config is None:
            return None

        original: dict[str, Any] | None = None
        if internal["qa_type"] == "benchmark":
            expected = internal["expected_output"]
            if not expected:
                return None
            reference = json.dumps(expected, separators=(",", ":"))
        else:
            original_id = internal["original_task_id"]
            original = self._task_store.get_task(original_id) if original_id else None
            if original is None or original["output"] is None:
                return None
            reference = str(original["output"].get("content", ""))

        output = qa_task["output"]
        result = score_output(
            str(output.get("content", "")),
            output.get("format"),
            reference,
            qa_config["similarity_thresholds"],
        )
        if not self._task_store.set_qa_result(qa_task["task_id"], result):
            return None

        accountable = original["worker_id"] if original is not None else qa_task["worker_id"]
        if accountable is not None:
            self._apply_verdict(accountable, result["verdict"])

        self._logger.info(
            "QA comparison recorded",
            extra={
                "task_id": qa_task["task_id"],
                "qa_type": internal["qa_type"],
                "verdict": result["verdict"],
                "similarity": round(result["similarity"], 4),
                "worker_id": accountable,
            },
        )
        return result

    def compare_pending_for_original(self, original_task_id: str) -> list[dict[str, Any]]:
        """Score QA duplicates that finished before their original did."""
        results = []
        for qa_task in self._task_store.list_unscored_qa_tasks(original_task_id):
            result = self.compare(qa_task)
            if result is not None:
                results.append(result)
        return results

    def _apply_verdict(self, worker_id: str, verdict: str) -> None:
        if verdict == "pass":
            self._worker_store.increment_counters(worker_id, {"spot_pass": 1})
        elif verdict == "fail":
            self._worker_store.increment_counters(worker_id, {"spot_fail": 1})
        # flag: recorded on the task only
