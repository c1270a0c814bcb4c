"""Buyer-side operations: task creation, lookup, credit, deposits and balances."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from task_dispatch_service.core.exceptions import ConflictError, NotFoundError
from task_dispatch_service.logging import get_logger
from task_dispatch_service.services.pricing import calculate_price
from task_dispatch_service.services.task_store import build_task_record, new_task_id
from task_dispatch_service.timestamps import utc_now

if TYPE_CHECKING:
    from task_dispatch_service.schemas import CreateTaskRequest
    from task_dispatch_service.services.balance_ledger import BalanceLedger
    from task_dispatch_service.services.platform_config import PlatformConfigProvider
    from task_dispatch_service.services.qa_injector import QaInjector
    from task_dispatch_service.services.task_store import TaskStore
    from task_dispatch_service.services.worker_store import WorkerStore


def buyer_task_view(task: dict[str, Any]) -> dict[str, Any]:
    """A task as its buyer sees it: everything except the internal QA record."""
    return {key: value for key, value in task.items() if key != "internal"}


class TaskService:
    """Creates buyer tasks and handles buyer credits."""

    def __init__(
        self,
        task_store: TaskStore,
        worker_store: WorkerStore,
        ledger: BalanceLedger,
        qa_injector: QaInjector,
        config_provider: PlatformConfigProvider,
    ) -> None:
        self._task_store = task_store
        self._worker_store = worker_store
        self._ledger = ledger
        self._qa_injector = qa_injector
        self._config_provider = config_provider
        self._logger = get_logger(__name__)

    def ensure_buyer_account(self, buyer_id: str) -> dict[str, Any]:
        """Create the buyer's balance with the signup credit on first use."""
        balance = self._ledger.get_balance(buyer_id)
        if balance is not None:
            return balance
        signup_credit = self._config_provider.signup_credit_cents()
        if self._ledger.initialize_balance(buyer_id, signup_credit, ref_id="signup"):
            self._logger.info(
                "Buyer account created",
                extra={"buyer_id": buyer_id, "signup_credit_cents": signup_credit},
            )
        balance = self._ledger.get_balance(buyer_id)
        if balance is None:
            msg = f"Balance for {buyer_id} missing after initialization"
            raise RuntimeError(msg)
        return balance

    def get_balance(self, buyer_id: str) -> dict[str, Any]:
        balance = self.ensure_buyer_account(buyer_id)
        return {
            "amount_cents": balance["amount_cents"],
            "frozen_cents": balance["frozen_cents"],
            "total_deposited": balance["total_deposited"],
        }

    def deposit(self, buyer_id: str, amount_cents: int, payment_ref: str) -> dict[str, Any]:
        """
        Credit a confirmed buyer payment.

        Replays of the same ``payment_ref`` credit nothing and report
        ``applied: False``.
        """
        self.ensure_buyer_account(buyer_id)
        result = self._ledger.deposit(
            buyer_id,
            amount_cents,
            payment_ref,
            first_deposit_bonus_pct=self._config_provider.first_deposit_bonus_pct(),
        )
        if result is None:
            self._logger.info(
                "Duplicate deposit ignored",
                extra={"buyer_id": buyer_id, "payment_ref": payment_ref},
            )
            return {
                "payment_ref": payment_ref,
                "applied": False,
                "amount_cents": 0,
                "bonus_cents": 0,
                "balance_after": self.ensure_buyer_account(buyer_id)["amount_cents"],
            }

        self._logger.info(
            "Deposit credited",
            extra={
                "buyer_id": buyer_id,
                "payment_ref": payment_ref,
                "amount_cents": amount_cents,
                "bonus_cents": result["bonus_cents"],
            },
        )
        return {"payment_ref": payment_ref, "applied": True, **result}

    def create_task(self, buyer_id: str, request: CreateTaskRequest) -> dict[str, Any]:
        """
        Price a task, debit the buyer and queue it as pending.

        Raises:
            InsufficientBalanceError: The buyer cannot cover the price.
        """
        account = self.ensure_buyer_account(buyer_id)

        task_input = request.input.model_dump()
        constraints = request.constraints.model_dump()
        price_cents = calculate_price(
            self._config_provider.pricing(), request.type, len(request.input.messages)
        )

        task_id = new_task_id()
        balance_after = int(account["amount_cents"])
        if price_cents > 0:
            balance_after = self._ledger.deduct(buyer_id, price_cents, task_id, "task_pay")

        record = build_task_record(
            buyer_id=buyer_id,
            task_type=request.type,
            task_input=task_input,
            constraints=constraints,
            price_cents=price_cents,
            created_at=utc_now(),
            sensitive=request.sensitive,
            input_preview=request.input_preview,
            task_id=task_id,
        )
        try:
            self._task_store.insert_task(record)
        except Exception:
            if price_cents > 0:
                self._ledger.credit(buyer_id, price_cents, task_id, "credit")
            raise

        self._qa_injector.maybe_inject_shadow(record)

        self._logger.info(
            "Task created",
            extra={
                "task_id": task_id,
                "buyer_id": buyer_id,
                "type": request.type,
                "price_cents": price_cents,
            },
        )
        return {
            "task_id": task_id,
            "price_cents": price_cents,
            "balance_after": balance_after,
            "deadline": record["deadline"],
        }

    def get_task_for_buyer(self, task_id: str, buyer_id: str) -> dict[str, Any]:
        task = self._task_store.get_task(task_id)
        if task is None or task["buyer_id"] != buyer_id:
            raise NotFoundError("Task")
        return buyer_task_view(task)

    def credit_task(self, task_id: str, buyer_id: str) -> dict[str, Any]:
        """
        Refund a completed task to its buyer.

        Raises:
            NotFoundError: Task missing or owned by another buyer.
            ConflictError: Task is not in ``completed`` status.
        """
        task = self._task_store.mark_credited(task_id, buyer_id)
        if task is None:
            existing = self._task_store.get_task(task_id)
            if existing is None or existing["buyer_id"] != buyer_id:
                raise NotFoundError("Task")
            raise ConflictError(
                f"Task cannot be credited (current status: {existing['status']})",
                current_status=existing["status"],
            )

        price_cents = int(task["price_cents"])
        try:
            balance_after = (
                self._ledger.credit(buyer_id, price_cents, task_id, "credit")
                if price_cents > 0
                else self.ensure_buyer_account(buyer_id)["amount_cents"]
            )
        except Exception:
            self._task_store.revert_credit(task_id, buyer_id)
            self._logger.error(
                "Refund failed, task returned to completed",
                extra={"task_id": task_id, "buyer_id": buyer_id},
            )
            raise
        if task["worker_id"] is not None:
            self._worker_store.increment_counters(task["worker_id"], {"credit_requests": 1})

        self._logger.info(
            "Task credited",
            extra={"task_id": task_id, "buyer_id": buyer_id, "refund_cents": price_cents},
        )
        return {"task_id": task_id, "refund_cents": price_cents, "balance_after": balance_after}
