"""Data models for liqwatch."""

from liqwatch.models.execution import (
    Confirmation,
    ExecutionResult,
    Instruction,
    TransactionRequest,
)
from liqwatch.models.opportunity import (
    HEALTH_FACTOR_SENTINEL,
    Opportunity,
    Protocol,
    RawAccount,
    derive_opportunity,
)
from liqwatch.models.status import SchedulerStats, TaskStatus

__all__ = [
    "HEALTH_FACTOR_SENTINEL",
    "Confirmation",
    "ExecutionResult",
    "Instruction",
    "Opportunity",
    "Protocol",
    "RawAccount",
    "SchedulerStats",
    "TaskStatus",
    "TransactionRequest",
    "derive_opportunity",
]
