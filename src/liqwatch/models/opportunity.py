"""Opportunity and Protocol data models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

# borrowed_value == 0 → health factor has no meaning; use a large sentinel
HEALTH_FACTOR_SENTINEL = 999.0

# collateral/debt amounts are expressed in debt-token base units (USDC: 6 decimals)
BASE_UNITS_PER_TOKEN = 1_000_000


class Protocol(Enum):
    """지원하는 렌딩 프로토콜."""

    SOLEND = "solend"
    MANGO = "mango"
    KAMINO = "kamino"


@dataclass(frozen=True)
class RawAccount:
    """A program account as returned by the ledger."""

    address: str
    data: bytes
    lamports: int
    owner: str

    @property
    def data_size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class Opportunity:
    """One observed lending position at one point in time.

    Never mutated; a later observation of the same ``identifier`` replaces it.
    Build instances through :func:`derive_opportunity` so the derived fields
    stay consistent with collateral/borrowed values.
    """

    identifier: str
    protocol: Protocol
    market_id: str
    borrower: str
    collateral_token: str
    debt_token: str
    collateral_amount: float
    debt_amount: float
    collateral_value: float
    borrowed_value: float
    health_factor: float
    collateral_ratio: float
    liquidation_threshold: float
    is_liquidatable: bool
    estimated_profit: float
    gas_cost: int
    observed_at: datetime
    data_size: int = 0
    lamports: int = 0
    owner: str = ""


def compute_health_factor(collateral_value: float, borrowed_value: float) -> float:
    """collateral / borrowed. 부채 없으면 sentinel."""
    if borrowed_value <= 0:
        return HEALTH_FACTOR_SENTINEL
    return collateral_value / borrowed_value


def derive_opportunity(
    *,
    identifier: str,
    protocol: Protocol,
    market_id: str,
    collateral_value: float,
    borrowed_value: float,
    liquidation_threshold: float,
    liquidation_bonus: float,
    gas_cost: int,
    collateral_token: str = "SOL",
    debt_token: str = "USDC",
    borrower: str | None = None,
    observed_at: datetime | None = None,
    data_size: int = 0,
    lamports: int = 0,
    owner: str = "",
) -> Opportunity:
    """Build an Opportunity from the two parsed values.

    - health_factor = collateral / borrowed (sentinel when nothing is borrowed)
    - is_liquidatable ⇔ health_factor < liquidation_threshold
    - estimated_profit = borrowed * liquidation_bonus if liquidatable, else 0
    """
    health_factor = compute_health_factor(collateral_value, borrowed_value)
    if borrowed_value <= 0:
        is_liquidatable = False
        collateral_ratio = HEALTH_FACTOR_SENTINEL
    else:
        is_liquidatable = health_factor < liquidation_threshold
        collateral_ratio = health_factor * 100.0

    estimated_profit = borrowed_value * liquidation_bonus if is_liquidatable else 0.0
    if estimated_profit < 0:
        estimated_profit = 0.0

    return Opportunity(
        identifier=identifier,
        protocol=protocol,
        market_id=market_id,
        borrower=borrower or identifier,
        collateral_token=collateral_token,
        debt_token=debt_token,
        collateral_amount=collateral_value * BASE_UNITS_PER_TOKEN,
        debt_amount=borrowed_value * BASE_UNITS_PER_TOKEN,
        collateral_value=collateral_value,
        borrowed_value=borrowed_value,
        health_factor=health_factor,
        collateral_ratio=collateral_ratio,
        liquidation_threshold=liquidation_threshold,
        is_liquidatable=is_liquidatable,
        estimated_profit=estimated_profit,
        gas_cost=gas_cost,
        observed_at=observed_at or datetime.now(tz=timezone.utc),
        data_size=data_size,
        lamports=lamports,
        owner=owner,
    )
