"""Background scan scheduler.

Owns the recurring-scan lifecycle:
- IDLE → start() → RUNNING: 즉시 1회 스캔 후 고정 주기 타이머
- RUNNING → stop() → IDLE: 다음 타이머만 취소, 진행 중인 tick은 끝까지 실행
- tick은 절대 겹치지 않는다 (asyncio.Lock + 단일 루프, 밀린 주기는 스킵)

Each tick merges qualifying opportunities into a bounded cache keyed by
identifier, notifies listeners once per new opportunity, and records any
error in a rolling log instead of stopping.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from liqwatch.config import SchedulerConfig
from liqwatch.models.opportunity import Opportunity, Protocol
from liqwatch.models.status import SchedulerStats, TaskStatus
from liqwatch.scanner.aggregator import OpportunityAggregator

logger = logging.getLogger(__name__)

# sync or async callable; return value ignored
Listener = Callable[[Opportunity], Any]


def cache_order(opportunities) -> list[Opportunity]:
    """최신 observed_at 먼저. 동률은 삽입 순서 유지."""
    return sorted(opportunities, key=lambda o: o.observed_at, reverse=True)


class ScanScheduler:
    """Recurring scan job with opportunity cache and listeners.

    Args:
        aggregator: Source of scan results.
        config: Scan interval, cache cap, profit threshold, notifications.
    """

    def __init__(
        self,
        aggregator: OpportunityAggregator,
        config: SchedulerConfig | None = None,
    ):
        self.aggregator = aggregator
        self.config = config or SchedulerConfig()
        self._status = TaskStatus()
        self._cache: dict[str, Opportunity] = {}
        self._listeners: list[Listener] = []
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._started_at: Optional[float] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._status.is_running

    def start(self) -> None:
        """Start scanning. Must be called from inside a running event loop."""
        if self._status.is_running:
            logger.warning("Scan scheduler already running")
            return

        loop = asyncio.get_running_loop()
        self._status.is_running = True
        self._started_at = time.monotonic()

        # 루프마다 자기 stop_event를 가진다 — stop() 직후 start()해도 이전 루프는 종료
        stop_event = asyncio.Event()
        self._stop_event = stop_event
        self._task = loop.create_task(self._run(stop_event))

        logger.info(
            "🚀 Scan scheduler started (interval %.1fs, cap %d, min profit $%.2f)",
            self.config.scan_interval,
            self.config.max_opportunities,
            self.config.min_profit_threshold,
        )

    def stop(self) -> None:
        """Stop scanning. An in-flight tick finishes; no new tick is armed."""
        if not self._status.is_running:
            logger.warning("Scan scheduler is not running")
            return

        self._status.is_running = False
        self._started_at = None
        if self._stop_event is not None:
            self._stop_event.set()
        logger.info("🛑 Scan scheduler stopped")

    async def wait_closed(self) -> None:
        """Wait for the run loop to exit after stop()."""
        task = self._task
        if task is not None and not self._status.is_running:
            await task

    async def _run(self, stop_event: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        next_fire = loop.time()

        while not stop_event.is_set():
            await self._perform_scan()
            if stop_event.is_set():
                break

            interval = self.config.scan_interval
            next_fire += interval
            now = loop.time()
            if now >= next_fire:
                # tick이 주기를 넘김 → 밀린 발화는 스킵 (동시 실행 금지)
                missed = int((now - next_fire) // interval) + 1
                logger.warning(
                    "Scan tick overran its period; skipping %d missed tick(s)", missed,
                )
                next_fire += missed * interval

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=next_fire - now)
            except asyncio.TimeoutError:
                pass  # normal — time to scan again

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def trigger_scan(self) -> None:
        """Run one tick now (serialized with the timer's ticks)."""
        logger.info("Manual scan triggered")
        await self._perform_scan()

    async def _perform_scan(self) -> None:
        async with self._lock:
            try:
                result = await self.aggregator.scan_all()

                for protocol, message in result.failures.items():
                    self._record_error(f"{protocol.value}: {message}")

                threshold = self.config.min_profit_threshold
                qualifying = [
                    o for o in result.opportunities
                    if o.is_liquidatable and o.estimated_profit >= threshold
                ]

                new = self._merge(qualifying)
                self._status.total_scans += 1
                self._status.opportunities_found += len(new)

                if self.config.notifications_enabled:
                    await self._notify(new)

                self._status.last_scan_time = datetime.now(tz=timezone.utc)
                logger.info(
                    "✅ Scan #%d: %d qualifying, %d new, cache %d",
                    self._status.total_scans, len(qualifying), len(new), len(self._cache),
                )
            except Exception as exc:
                logger.exception("Background scan failed")
                self._record_error(str(exc) or type(exc).__name__)

    def _merge(self, qualifying: list[Opportunity]) -> list[Opportunity]:
        """캐시 병합. 새로 발견된 기회 목록을 캐시 순서로 반환.

        Only entries that survive eviction count as new; an opportunity
        evicted in the same tick is neither counted nor notified.
        """
        new: dict[str, Opportunity] = {}

        for opp in qualifying:
            current = self._cache.get(opp.identifier)
            if current is None:
                self._cache[opp.identifier] = opp
                new[opp.identifier] = opp
            elif opp.observed_at > current.observed_at:
                self._cache[opp.identifier] = opp
                if opp.identifier in new:
                    new[opp.identifier] = opp

        self._evict()
        return cache_order(
            opp for key, opp in new.items() if self._cache.get(key) is opp
        )

    def _evict(self) -> None:
        """max_opportunities 초과 시 가장 오래된 관측부터 제거."""
        cap = self.config.max_opportunities
        if len(self._cache) <= cap:
            return
        keep = cache_order(self._cache.values())[:cap]
        evicted = len(self._cache) - len(keep)
        self._cache = {o.identifier: o for o in keep}
        logger.debug("Evicted %d stale opportunities", evicted)

    async def _notify(self, opportunities: list[Opportunity]) -> None:
        listeners = list(self._listeners)
        for opp in opportunities:
            for listener in listeners:
                try:
                    outcome = listener(opp)
                    if inspect.isawaitable(outcome):
                        await outcome
                except Exception:
                    logger.exception("Opportunity listener %r failed", listener)

    def _record_error(self, message: str) -> None:
        self._status.record_error(
            f"{datetime.now(tz=timezone.utc).isoformat()}: {message}"
        )

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        """등록되지 않은 리스너면 no-op."""
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_status(self) -> TaskStatus:
        """Snapshot copy — never the live status object."""
        return self._status.snapshot()

    def get_opportunities(self, limit: int | None = None) -> list[Opportunity]:
        ordered = cache_order(self._cache.values())
        if limit is not None:
            return ordered[: max(limit, 0)]
        return ordered

    def get_latest_opportunities(self, count: int = 10) -> list[Opportunity]:
        return self.get_opportunities(limit=count)

    def get_opportunities_by_protocol(self, protocol: Protocol | str) -> list[Opportunity]:
        """알 수 없는 프로토콜 이름이면 빈 리스트."""
        if isinstance(protocol, str):
            try:
                protocol = Protocol(protocol.lower())
            except ValueError:
                logger.warning("Unknown protocol: %s", protocol)
                return []
        return [o for o in self.get_opportunities() if o.protocol == protocol]

    def get_stats(self) -> SchedulerStats:
        total_scans = self._status.total_scans
        found = self._status.opportunities_found
        uptime = (
            time.monotonic() - self._started_at
            if self._status.is_running and self._started_at is not None
            else 0.0
        )
        return SchedulerStats(
            total_scans=total_scans,
            opportunities_found=found,
            average_opportunities_per_scan=found / total_scans if total_scans else 0.0,
            uptime_seconds=uptime,
            error_rate=len(self._status.errors) / total_scans if total_scans else 0.0,
        )

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------

    def clear_opportunities(self) -> None:
        self._cache.clear()
        logger.info("🗑️ Cleared cached opportunities")

    def update_config(self, **changes) -> SchedulerConfig:
        """Apply config changes. The interval change takes effect at the next tick."""
        self.config = self.config.updated(**changes)
        self._evict()
        logger.info("Scheduler config updated: %s", self.config)
        return self.config
