"""Opportunity aggregator — fans out to every protocol adapter concurrently.

핵심 규칙:
- 한 프로토콜 실패가 다른 프로토콜 결과를 막지 않는다 (빈 결과로 처리)
- 결과는 health_factor 오름차순 (가장 위험한 포지션 먼저), 동률은 입력 순서 유지
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from liqwatch.models.opportunity import Opportunity, Protocol
from liqwatch.scanner.adapter import ProtocolAdapter

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    """한 번의 전체 스캔 결과."""

    opportunities: list[Opportunity]
    per_protocol_counts: dict[Protocol, int]
    liquidatable_count: int
    healthy_count: int
    scanned_at: datetime
    failures: dict[Protocol, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.opportunities)

    @property
    def liquidatable(self) -> list[Opportunity]:
        return [o for o in self.opportunities if o.is_liquidatable]


def rank_by_risk(opportunities: list[Opportunity]) -> list[Opportunity]:
    """health_factor 오름차순. sorted()는 stable → 동률은 입력 순서."""
    return sorted(opportunities, key=lambda o: o.health_factor)


class OpportunityAggregator:
    """Run every registered adapter and merge their results."""

    def __init__(self, adapters: list[ProtocolAdapter], ledger=None):
        self._adapters: dict[Protocol, ProtocolAdapter] = {a.protocol: a for a in adapters}
        self.ledger = ledger

    @property
    def protocols(self) -> list[Protocol]:
        return list(self._adapters)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def scan_all(self) -> ScanResult:
        """모든 어댑터 동시 실행 → 병합 → 집계. 어댑터 실패로 예외를 던지지 않음."""
        adapters = list(self._adapters.values())
        logger.info("Scanning %d protocols...", len(adapters))

        results = await asyncio.gather(
            *(adapter.scan() for adapter in adapters),
            return_exceptions=True,
        )

        merged: list[Opportunity] = []
        counts: dict[Protocol, int] = {}
        failures: dict[Protocol, str] = {}

        for adapter, result in zip(adapters, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                failures[adapter.protocol] = str(result) or type(result).__name__
                counts[adapter.protocol] = 0
                logger.error("[%s] scan failed: %s", adapter.protocol.value, result)
                continue
            counts[adapter.protocol] = len(result)
            merged.extend(result)

        ranked = rank_by_risk(merged)
        liquidatable_count = sum(1 for o in ranked if o.is_liquidatable)

        scan = ScanResult(
            opportunities=ranked,
            per_protocol_counts=counts,
            liquidatable_count=liquidatable_count,
            healthy_count=len(ranked) - liquidatable_count,
            scanned_at=datetime.now(tz=timezone.utc),
            failures=failures,
        )
        logger.info(
            "Scan complete: %d positions, %d liquidatable, %d failed protocols",
            scan.total, scan.liquidatable_count, len(failures),
        )
        return scan

    async def scan(self, protocol: Protocol) -> list[Opportunity]:
        """단일 프로토콜 스캔. 실패 시 빈 리스트."""
        adapter = self._adapters.get(protocol)
        if adapter is None:
            logger.warning("No adapter registered for %s", protocol)
            return []
        try:
            return await adapter.scan()
        except Exception as exc:
            logger.error("[%s] scan failed: %s", protocol.value, exc)
            return []

    async def ledger_status(self) -> dict:
        """RPC 상태 (health_check 지원하는 ledger만)."""
        health_check = getattr(self.ledger, "health_check", None)
        if health_check is None:
            return {"status": "unknown"}
        return await health_check()
