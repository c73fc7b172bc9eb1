"""Shared test fixtures for liqwatch."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from liqwatch.errors import SubmissionError
from liqwatch.models.execution import Confirmation, TransactionRequest
from liqwatch.models.opportunity import Opportunity, Protocol, RawAccount, derive_opportunity

WAD = 10**18


def wad_bytes(value: float) -> bytes:
    """Encode a currency value as a little-endian u128 WAD decimal."""
    return int(round(value * WAD)).to_bytes(16, "little")


def obligation_bytes(
    collateral: float,
    borrowed: float,
    collateral_offset: int = 74,
    borrowed_offset: int = 90,
    size: int = 916,
) -> bytes:
    """Build account bytes with the two values at the given offsets."""
    data = bytearray(size)
    data[collateral_offset:collateral_offset + 16] = wad_bytes(collateral)
    data[borrowed_offset:borrowed_offset + 16] = wad_bytes(borrowed)
    return bytes(data)


class FakeLedger:
    """In-memory Ledger. Records every call; failures are injectable."""

    def __init__(self):
        self.accounts: dict[str, list[RawAccount] | Exception] = {}
        self.fee: int | Exception = 5000
        self.blockhash: str | Exception = "blockhash_1"
        self.reference = "sig_1"
        self.submit_error: Exception | None = None
        self.confirmation = Confirmation(confirmed=True, rejected=False)
        self.confirmation_error: Exception | None = None
        self.height = 250_000_000
        self.calls: list[str] = []
        self.submitted: list[bytes] = []
        self.fee_requests: list[TransactionRequest] = []

    async def query_accounts(self, program_id, data_size=None):
        self.calls.append(f"query_accounts:{program_id}:{data_size}")
        found = self.accounts.get(program_id, [])
        if isinstance(found, Exception):
            raise found
        return list(found)

    async def current_height(self):
        self.calls.append("current_height")
        return self.height

    async def latest_blockhash(self):
        self.calls.append("latest_blockhash")
        if isinstance(self.blockhash, Exception):
            raise self.blockhash
        return self.blockhash

    async def estimate_fee(self, request):
        self.calls.append("estimate_fee")
        self.fee_requests.append(request)
        if isinstance(self.fee, Exception):
            raise self.fee
        return self.fee

    async def submit(self, signed_transaction):
        self.calls.append("submit")
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(signed_transaction)
        return self.reference

    async def await_confirmation(self, reference):
        self.calls.append("await_confirmation")
        if self.confirmation_error is not None:
            raise self.confirmation_error
        return self.confirmation

    async def health_check(self):
        return {"status": "ok", "current_slot": self.height}


class FakeSigner:
    public_key = "Liquidator1111111111111111111111111111111111"

    def __init__(self):
        self.signed: list[TransactionRequest] = []

    def sign(self, request):
        self.signed.append(request)
        return b"signed:" + request.message_bytes()


def make_opportunity(
    identifier: str = "acc_1",
    protocol: Protocol = Protocol.SOLEND,
    collateral_value: float = 1000.0,
    borrowed_value: float = 980.0,
    liquidation_threshold: float = 1.05,
    liquidation_bonus: float = 0.08,
    observed_at: datetime | None = None,
) -> Opportunity:
    return derive_opportunity(
        identifier=identifier,
        protocol=protocol,
        market_id="Test Market",
        collateral_value=collateral_value,
        borrowed_value=borrowed_value,
        liquidation_threshold=liquidation_threshold,
        liquidation_bonus=liquidation_bonus,
        gas_cost=5000,
        observed_at=observed_at or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def liquidatable_opportunity() -> Opportunity:
    """HF 1.0204 < 1.05 → liquidatable, profit = 980 * 0.08 = 78.4."""
    return make_opportunity()


@pytest.fixture
def healthy_opportunity() -> Opportunity:
    """HF 2.0 → healthy, profit 0."""
    return make_opportunity(identifier="acc_healthy", borrowed_value=500.0)


@pytest.fixture
def submission_error() -> SubmissionError:
    return SubmissionError("node rejected transaction", reference=None)
