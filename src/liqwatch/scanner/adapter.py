"""Protocol adapter — one protocol's positions → Opportunity list.

Account decoding is pluggable (AccountParser). The adapter only knows how to
query the ledger for the protocol's accounts and turn two parsed values into
the derived health metrics.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol as TypingProtocol

from liqwatch.config import PROTOCOLS
from liqwatch.errors import ParseError
from liqwatch.ledger.interface import Ledger
from liqwatch.models.opportunity import Opportunity, Protocol, RawAccount, derive_opportunity

logger = logging.getLogger(__name__)

WAD = 10**18
U128_SIZE = 16


@dataclass(frozen=True)
class ParsedValues:
    """Values extracted from one position account, in currency units."""

    collateral_value: float
    borrowed_value: float


class AccountParser(TypingProtocol):
    def parse(self, raw: bytes) -> ParsedValues:
        """Raises ParseError on malformed bytes."""
        ...


class WadValueParser:
    """Read two little-endian u128 WAD decimals at fixed offsets.

    Args:
        collateral_offset: 담보 가치 오프셋.
        borrowed_offset: 부채 가치 오프셋.
    """

    def __init__(self, collateral_offset: int, borrowed_offset: int):
        self.collateral_offset = collateral_offset
        self.borrowed_offset = borrowed_offset

    def parse(self, raw: bytes) -> ParsedValues:
        return ParsedValues(
            collateral_value=self._read_wad(raw, self.collateral_offset),
            borrowed_value=self._read_wad(raw, self.borrowed_offset),
        )

    @staticmethod
    def _read_wad(raw: bytes, offset: int) -> float:
        end = offset + U128_SIZE
        if offset < 0 or len(raw) < end:
            raise ParseError(
                f"account too short: need {end} bytes, got {len(raw)}"
            )
        return int.from_bytes(raw[offset:end], "little") / WAD


@dataclass(frozen=True)
class ProtocolSettings:
    """Static per-protocol parameters (see config.PROTOCOLS)."""

    program_id: str
    data_size: Optional[int]
    market_id: str
    liquidation_threshold: float
    liquidation_bonus: float
    gas_cost: int
    collateral_token: str = "SOL"
    debt_token: str = "USDC"

    @classmethod
    def from_config(cls, cfg: dict) -> ProtocolSettings:
        return cls(
            program_id=cfg["program_id"],
            data_size=cfg.get("data_size"),
            market_id=cfg.get("market_id", ""),
            liquidation_threshold=float(cfg["liquidation_threshold"]),
            liquidation_bonus=float(cfg["liquidation_bonus"]),
            gas_cost=int(cfg.get("gas_cost", 5000)),
            collateral_token=cfg.get("collateral_token", "SOL"),
            debt_token=cfg.get("debt_token", "USDC"),
        )


class ProtocolAdapter:
    """Scan one protocol's position accounts.

    ConnectivityError (after the ledger's own retries) propagates; the
    aggregator turns it into an empty contribution. ParseError skips only
    the offending account.
    """

    def __init__(
        self,
        protocol: Protocol,
        ledger: Ledger,
        parser: AccountParser,
        settings: ProtocolSettings,
    ):
        self.protocol = protocol
        self.ledger = ledger
        self.parser = parser
        self.settings = settings

    async def scan(self) -> list[Opportunity]:
        accounts = await self.ledger.query_accounts(
            self.settings.program_id, self.settings.data_size,
        )
        observed_at = datetime.now(tz=timezone.utc)

        opportunities: list[Opportunity] = []
        skipped = 0
        for account in accounts:
            try:
                opportunities.append(self._to_opportunity(account, observed_at))
            except ParseError as exc:
                skipped += 1
                logger.debug("[%s] skip %s: %s", self.protocol.value, account.address, exc)

        liquidatable = sum(1 for o in opportunities if o.is_liquidatable)
        logger.info(
            "[%s] %d accounts → %d positions (%d liquidatable, %d skipped)",
            self.protocol.value, len(accounts), len(opportunities), liquidatable, skipped,
        )
        return opportunities

    def _to_opportunity(self, account: RawAccount, observed_at: datetime) -> Opportunity:
        values = self.parser.parse(account.data)
        s = self.settings
        return derive_opportunity(
            identifier=account.address,
            protocol=self.protocol,
            market_id=s.market_id,
            collateral_value=values.collateral_value,
            borrowed_value=values.borrowed_value,
            liquidation_threshold=s.liquidation_threshold,
            liquidation_bonus=s.liquidation_bonus,
            gas_cost=s.gas_cost,
            collateral_token=s.collateral_token,
            debt_token=s.debt_token,
            observed_at=observed_at,
            data_size=account.data_size,
            lamports=account.lamports,
            owner=account.owner,
        )


def build_adapters(
    ledger: Ledger,
    protocols: dict | None = None,
    parsers: dict[Protocol, AccountParser] | None = None,
) -> list[ProtocolAdapter]:
    """활성화된 프로토콜마다 어댑터 생성.

    Protocols without an explicit parser get a WadValueParser using the
    offsets from their config entry.
    """
    protocols = PROTOCOLS if protocols is None else protocols
    parsers = parsers or {}

    adapters: list[ProtocolAdapter] = []
    for name, cfg in protocols.items():
        if not cfg.get("enabled"):
            continue
        try:
            protocol = Protocol(name)
        except ValueError:
            logger.warning("Unknown protocol in config: %s", name)
            continue

        parser = parsers.get(protocol) or WadValueParser(
            cfg["collateral_offset"], cfg["borrowed_offset"],
        )
        adapters.append(
            ProtocolAdapter(protocol, ledger, parser, ProtocolSettings.from_config(cfg))
        )
    return adapters
