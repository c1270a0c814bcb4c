"""Service layer components."""

from task_dispatch_service.services.balance_ledger import BalanceLedger
from task_dispatch_service.services.dispatch_engine import DispatchEngine
from task_dispatch_service.services.platform_config import PlatformConfigProvider
from task_dispatch_service.services.qa_comparator import QaComparator
from task_dispatch_service.services.qa_injector import QaInjector
from task_dispatch_service.services.settlement import SettlementEngine
from task_dispatch_service.services.task_service import TaskService
from task_dispatch_service.services.task_store import TaskStore
from task_dispatch_service.services.timeout_recovery import TimeoutRecovery
from task_dispatch_service.services.unfreeze import UnfreezeSweeper
from task_dispatch_service.services.withdrawal import WithdrawalService
from task_dispatch_service.services.worker_registry import WorkerRegistry
from task_dispatch_service.services.worker_store import WorkerStore

__all__ = [
    "BalanceLedger",
    "DispatchEngine",
    "PlatformConfigProvider",
    "QaComparator",
    "QaInjector",
    "SettlementEngine",
    "TaskService",
    "TaskStore",
    "TimeoutRecovery",
    "UnfreezeSweeper",
    "WithdrawalService",
    "WorkerRegistry",
    "WorkerStore",
]
