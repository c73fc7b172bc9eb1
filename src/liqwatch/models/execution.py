"""Transaction and execution-result data models."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from liqwatch.models.opportunity import Protocol


@dataclass(frozen=True)
class Instruction:
    """단일 트랜잭션 인스트럭션. 내용은 프로토콜별 (placeholder)."""

    kind: str
    program_id: str
    data: bytes = b""
    accounts: tuple[str, ...] = ()


@dataclass
class TransactionRequest:
    """Unsigned liquidation transaction."""

    protocol: Protocol
    instructions: list[Instruction]
    fee_payer: str
    recent_blockhash: str
    flash_loan_amount: float = 0.0

    def message_bytes(self) -> bytes:
        """Deterministic serialization used for fee estimation and signing."""
        payload = {
            "protocol": self.protocol.value,
            "fee_payer": self.fee_payer,
            "recent_blockhash": self.recent_blockhash,
            "instructions": [
                {
                    "kind": ix.kind,
                    "program_id": ix.program_id,
                    "data": ix.data.hex(),
                    "accounts": list(ix.accounts),
                }
                for ix in self.instructions
            ],
        }
        return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()


@dataclass(frozen=True)
class Confirmation:
    """Outcome of waiting for a submitted transaction.

    confirmed=False, rejected=False → 타임아웃 (결과 미확정).
    """

    confirmed: bool
    rejected: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class ExecutionResult:
    """청산 실행 결과. 반환 후 변경 불가."""

    success: bool
    transaction_reference: Optional[str]
    profit: float
    cost_incurred: float
    error: Optional[str]
    completed_at: datetime = field(
        default_factory=lambda: datetime.now(tz=timezone.utc),
    )

    @classmethod
    def ok(
        cls, transaction_reference: str, profit: float, cost_incurred: float,
    ) -> ExecutionResult:
        return cls(
            success=True,
            transaction_reference=transaction_reference,
            profit=profit,
            cost_incurred=cost_incurred,
            error=None,
        )

    @classmethod
    def failed(
        cls,
        error: str,
        cost_incurred: float = 0.0,
        transaction_reference: Optional[str] = None,
    ) -> ExecutionResult:
        return cls(
            success=False,
            transaction_reference=transaction_reference,
            profit=0.0,
            cost_incurred=cost_incurred,
            error=error,
        )

    @property
    def was_submitted(self) -> bool:
        """True if a transaction reached the ledger (even if it was rejected)."""
        return self.transaction_reference is not None
