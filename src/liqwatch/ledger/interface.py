"""Collaborator interfaces consumed by the scanner and execution gate.

The scanner only needs account queries; the execution gate needs fee
estimation, submission and confirmation. SolanaRpcClient implements all of
them, tests substitute fakes.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from liqwatch.models.execution import Confirmation, TransactionRequest
from liqwatch.models.opportunity import RawAccount


@runtime_checkable
class Ledger(Protocol):
    async def query_accounts(
        self, program_id: str, data_size: Optional[int] = None,
    ) -> list[RawAccount]:
        """Raises ConnectivityError on timeout/unreachability."""
        ...

    async def current_height(self) -> int:
        ...

    async def latest_blockhash(self) -> str:
        ...

    async def estimate_fee(self, request: TransactionRequest) -> int:
        """Fee in lamports. May raise; callers fall back to a default."""
        ...

    async def submit(self, signed_transaction: bytes) -> str:
        """Returns the transaction reference (signature)."""
        ...

    async def await_confirmation(self, reference: str) -> Confirmation:
        ...


@runtime_checkable
class Signer(Protocol):
    """Signing capability. The gate only checks that one is present."""

    public_key: str

    def sign(self, request: TransactionRequest) -> bytes:
        ...
