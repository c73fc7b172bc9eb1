"""Tests for ScanScheduler — lifecycle, cache merge/eviction, listeners, error log."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from conftest import make_opportunity

from liqwatch.config import SchedulerConfig
from liqwatch.models.opportunity import Protocol
from liqwatch.scanner.aggregator import ScanResult, rank_by_risk
from liqwatch.scheduler import ScanScheduler, cache_order

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _at(seconds: int) -> datetime:
    return T0 + timedelta(seconds=seconds)


def _result(opportunities, failures=None) -> ScanResult:
    ranked = rank_by_risk(opportunities)
    liquidatable = sum(1 for o in ranked if o.is_liquidatable)
    return ScanResult(
        opportunities=ranked,
        per_protocol_counts={},
        liquidatable_count=liquidatable,
        healthy_count=len(ranked) - liquidatable,
        scanned_at=datetime.now(tz=timezone.utc),
        failures=failures or {},
    )


class StubAggregator:
    """Returns queued results in order; repeats the last one when exhausted."""

    def __init__(self, *results, delay: float = 0.0):
        self.results = list(results) or [_result([])]
        self.delay = delay
        self.calls = 0
        self.active = 0
        self.max_active = 0

    async def scan_all(self):
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            item = self.results.pop(0) if len(self.results) > 1 else self.results[0]
            if isinstance(item, Exception):
                raise item
            return item
        finally:
            self.active -= 1


@pytest.fixture
def fast_interval(monkeypatch):
    monkeypatch.setattr("liqwatch.config.MIN_SCAN_INTERVAL_MS", 10)


class TestCacheMerge:
    async def test_qualifying_opportunities_cached(self):
        opp = make_opportunity("acc_1")  # profit 78.4
        scheduler = ScanScheduler(StubAggregator(_result([opp])))
        await scheduler.trigger_scan()

        assert scheduler.get_opportunities() == [opp]
        assert scheduler.get_status().opportunities_found == 1

    async def test_below_profit_threshold_ignored(self):
        small = make_opportunity("small", collateral_value=100.0, borrowed_value=99.0)  # profit 7.92
        healthy = make_opportunity("healthy", borrowed_value=500.0)
        scheduler = ScanScheduler(StubAggregator(_result([small, healthy])))
        await scheduler.trigger_scan()

        assert scheduler.get_opportunities() == []
        assert scheduler.get_status().opportunities_found == 0

    async def test_threshold_is_inclusive(self):
        # borrowed 125 * 0.08 = 10.0 exactly
        opp = make_opportunity("edge", collateral_value=120.0, borrowed_value=125.0)
        scheduler = ScanScheduler(StubAggregator(_result([opp])))
        await scheduler.trigger_scan()
        assert len(scheduler.get_opportunities()) == 1

    async def test_same_identifier_keeps_newer_observation(self):
        old = make_opportunity("acc_1", borrowed_value=990.0, observed_at=_at(0))
        new = make_opportunity("acc_1", borrowed_value=995.0, observed_at=_at(30))
        seen = []
        scheduler = ScanScheduler(StubAggregator(_result([old]), _result([new])))
        scheduler.add_listener(seen.append)

        await scheduler.trigger_scan()
        await scheduler.trigger_scan()

        assert scheduler.get_opportunities() == [new]
        assert scheduler.get_status().opportunities_found == 1
        assert seen == [old]

    async def test_older_observation_does_not_replace(self):
        new = make_opportunity("acc_1", borrowed_value=995.0, observed_at=_at(30))
        stale = make_opportunity("acc_1", borrowed_value=990.0, observed_at=_at(0))
        scheduler = ScanScheduler(StubAggregator(_result([new]), _result([stale])))
        await scheduler.trigger_scan()
        await scheduler.trigger_scan()
        assert scheduler.get_opportunities() == [new]

    async def test_cap_evicts_oldest(self):
        opps = [make_opportunity(f"acc_{i}", observed_at=_at(i)) for i in range(5)]
        scheduler = ScanScheduler(
            StubAggregator(_result(opps)), SchedulerConfig(max_opportunities=3),
        )
        await scheduler.trigger_scan()

        cached = scheduler.get_opportunities()
        assert [o.identifier for o in cached] == ["acc_4", "acc_3", "acc_2"]
        assert scheduler.get_status().opportunities_found == 3

    async def test_cache_never_exceeds_cap_across_scans(self):
        results = [
            _result([make_opportunity(f"s{n}_{i}", observed_at=_at(n * 10 + i)) for i in range(4)])
            for n in range(4)
        ]
        scheduler = ScanScheduler(
            StubAggregator(*results), SchedulerConfig(max_opportunities=6),
        )
        for _ in range(4):
            await scheduler.trigger_scan()
            assert len(scheduler.get_opportunities()) <= 6

    async def test_evicted_opportunity_not_renotified(self):
        # cap 1, two positions observed together every tick
        results = [
            _result([
                make_opportunity("A", observed_at=_at(tick)),
                make_opportunity("B", observed_at=_at(tick)),
            ])
            for tick in range(4)
        ]
        seen = []
        scheduler = ScanScheduler(
            StubAggregator(*results), SchedulerConfig(max_opportunities=1),
        )
        scheduler.add_listener(lambda opp: seen.append(opp.identifier))

        for _ in range(4):
            await scheduler.trigger_scan()

        cached = [o.identifier for o in scheduler.get_opportunities()]
        assert len(cached) == 1
        assert seen == cached
        assert scheduler.get_status().opportunities_found == 1


class TestListeners:
    async def test_listener_called_once_per_new_opportunity(self):
        a = make_opportunity("a", observed_at=_at(0))
        b = make_opportunity("b", observed_at=_at(1))
        seen = []
        scheduler = ScanScheduler(StubAggregator(_result([a, b])))
        scheduler.add_listener(seen.append)

        await scheduler.trigger_scan()
        await scheduler.trigger_scan()

        assert sorted(o.identifier for o in seen) == ["a", "b"]

    async def test_async_listener_awaited(self):
        seen = []

        async def listener(opp):
            await asyncio.sleep(0)
            seen.append(opp.identifier)

        scheduler = ScanScheduler(StubAggregator(_result([make_opportunity("a")])))
        scheduler.add_listener(listener)
        await scheduler.trigger_scan()
        assert seen == ["a"]

    async def test_failing_listener_does_not_stop_others(self):
        seen = []

        def broken(opp):
            raise RuntimeError("listener bug")

        scheduler = ScanScheduler(StubAggregator(_result([make_opportunity("a")])))
        scheduler.add_listener(broken)
        scheduler.add_listener(seen.append)
        await scheduler.trigger_scan()

        assert [o.identifier for o in seen] == ["a"]
        assert len(scheduler.get_opportunities()) == 1
        assert scheduler.get_status().errors == []

    async def test_notifications_disabled(self):
        seen = []
        scheduler = ScanScheduler(
            StubAggregator(_result([make_opportunity("a")])),
            SchedulerConfig(notifications_enabled=False),
        )
        scheduler.add_listener(seen.append)
        await scheduler.trigger_scan()

        assert seen == []
        assert len(scheduler.get_opportunities()) == 1

    async def test_remove_listener(self):
        seen = []
        scheduler = ScanScheduler(StubAggregator(_result([make_opportunity("a")])))
        scheduler.add_listener(seen.append)
        scheduler.remove_listener(seen.append)
        await scheduler.trigger_scan()
        assert seen == []

    def test_remove_unknown_listener_is_noop(self):
        scheduler = ScanScheduler(StubAggregator())
        scheduler.remove_listener(print)


class TestErrorLog:
    async def test_scan_exception_recorded(self):
        scheduler = ScanScheduler(StubAggregator(RuntimeError("aggregator exploded")))
        await scheduler.trigger_scan()

        status = scheduler.get_status()
        assert len(status.errors) == 1
        assert "aggregator exploded" in status.errors[0]
        assert status.total_scans == 0

    async def test_protocol_failures_recorded(self):
        result = _result([make_opportunity("a")], failures={Protocol.MANGO: "RPC unavailable"})
        scheduler = ScanScheduler(StubAggregator(result))
        await scheduler.trigger_scan()

        status = scheduler.get_status()
        assert status.total_scans == 1
        assert any("mango: RPC unavailable" in e for e in status.errors)

    async def test_error_log_keeps_last_ten(self):
        errors = [RuntimeError(f"failure {i}") for i in range(15)]
        scheduler = ScanScheduler(StubAggregator(*errors, RuntimeError("final")))
        for _ in range(15):
            await scheduler.trigger_scan()

        status = scheduler.get_status()
        assert len(status.errors) == 10
        assert "failure 5" in status.errors[0]
        assert "failure 14" in status.errors[-1]

    async def test_recovers_after_failure(self):
        scheduler = ScanScheduler(
            StubAggregator(RuntimeError("transient"), _result([make_opportunity("a")])),
        )
        await scheduler.trigger_scan()
        await scheduler.trigger_scan()

        status = scheduler.get_status()
        assert status.total_scans == 1
        assert len(scheduler.get_opportunities()) == 1


class TestLifecycle:
    async def test_start_runs_immediate_scan(self, fast_interval):
        agg = StubAggregator()
        scheduler = ScanScheduler(agg, SchedulerConfig(scan_interval_ms=1000))
        scheduler.start()
        await asyncio.sleep(0.02)

        assert scheduler.is_running
        assert agg.calls == 1
        assert scheduler.get_status().last_scan_time is not None

        scheduler.stop()
        await scheduler.wait_closed()

    async def test_periodic_ticks(self, fast_interval):
        agg = StubAggregator()
        scheduler = ScanScheduler(agg, SchedulerConfig(scan_interval_ms=50))
        scheduler.start()
        await asyncio.sleep(0.125)
        scheduler.stop()
        await scheduler.wait_closed()

        assert 2 <= agg.calls <= 4

    async def test_stop_halts_scanning(self, fast_interval):
        agg = StubAggregator()
        scheduler = ScanScheduler(agg, SchedulerConfig(scan_interval_ms=20))
        scheduler.start()
        await asyncio.sleep(0.05)
        scheduler.stop()
        await scheduler.wait_closed()

        calls = agg.calls
        await asyncio.sleep(0.08)
        assert agg.calls == calls
        assert scheduler.is_running is False

    async def test_double_start_is_noop(self, fast_interval):
        agg = StubAggregator()
        scheduler = ScanScheduler(agg, SchedulerConfig(scan_interval_ms=50))
        scheduler.start()
        task = scheduler._task
        scheduler.start()
        assert scheduler._task is task

        await asyncio.sleep(0.125)
        scheduler.stop()
        await scheduler.wait_closed()
        assert agg.calls <= 4

    def test_stop_when_idle_is_noop(self):
        scheduler = ScanScheduler(StubAggregator())
        scheduler.stop()
        assert scheduler.is_running is False

    def test_start_requires_running_loop(self):
        scheduler = ScanScheduler(StubAggregator())
        with pytest.raises(RuntimeError):
            scheduler.start()
        assert scheduler.is_running is False

    async def test_restart_after_stop(self, fast_interval):
        agg = StubAggregator()
        scheduler = ScanScheduler(agg, SchedulerConfig(scan_interval_ms=1000))
        scheduler.start()
        await asyncio.sleep(0.02)
        scheduler.stop()
        await scheduler.wait_closed()

        scheduler.start()
        await asyncio.sleep(0.02)
        assert agg.calls == 2
        scheduler.stop()
        await scheduler.wait_closed()

    async def test_ticks_never_overlap(self, fast_interval):
        agg = StubAggregator(delay=0.03)
        scheduler = ScanScheduler(agg, SchedulerConfig(scan_interval_ms=10))
        scheduler.start()
        await asyncio.gather(scheduler.trigger_scan(), scheduler.trigger_scan())
        await asyncio.sleep(0.05)
        scheduler.stop()
        await scheduler.wait_closed()

        assert agg.max_active == 1


class TestQueries:
    async def test_latest_opportunities_newest_first(self):
        opps = [make_opportunity(f"acc_{i}", observed_at=_at(i)) for i in range(4)]
        scheduler = ScanScheduler(StubAggregator(_result(opps)))
        await scheduler.trigger_scan()

        latest = scheduler.get_latest_opportunities(2)
        assert [o.identifier for o in latest] == ["acc_3", "acc_2"]

    async def test_by_protocol(self):
        solend = make_opportunity("s", protocol=Protocol.SOLEND)
        kamino = make_opportunity("k", protocol=Protocol.KAMINO)
        scheduler = ScanScheduler(StubAggregator(_result([solend, kamino])))
        await scheduler.trigger_scan()

        assert scheduler.get_opportunities_by_protocol(Protocol.KAMINO) == [kamino]
        assert scheduler.get_opportunities_by_protocol("solend") == [solend]
        assert scheduler.get_opportunities_by_protocol(Protocol.MANGO) == []

    async def test_by_unknown_protocol_name(self):
        scheduler = ScanScheduler(StubAggregator(_result([make_opportunity("s")])))
        await scheduler.trigger_scan()
        assert scheduler.get_opportunities_by_protocol("port") == []

    async def test_status_is_snapshot(self):
        scheduler = ScanScheduler(StubAggregator(RuntimeError("x")))
        await scheduler.trigger_scan()

        snapshot = scheduler.get_status()
        snapshot.errors.clear()
        snapshot.total_scans = 42
        assert len(scheduler.get_status().errors) == 1
        assert scheduler.get_status().total_scans == 0

    async def test_stats(self):
        scheduler = ScanScheduler(StubAggregator(
            _result([make_opportunity("a", observed_at=_at(0))]),
            _result([
                make_opportunity("b", observed_at=_at(1)),
                make_opportunity("c", observed_at=_at(2)),
            ]),
        ))
        await scheduler.trigger_scan()
        await scheduler.trigger_scan()

        stats = scheduler.get_stats()
        assert stats.total_scans == 2
        assert stats.opportunities_found == 3
        assert stats.average_opportunities_per_scan == pytest.approx(1.5)
        assert stats.error_rate == 0.0
        assert stats.uptime_seconds == 0.0

    def test_stats_without_scans(self):
        stats = ScanScheduler(StubAggregator()).get_stats()
        assert stats.average_opportunities_per_scan == 0.0
        assert stats.error_rate == 0.0

    async def test_clear_opportunities(self):
        scheduler = ScanScheduler(StubAggregator(_result([make_opportunity("a")])))
        await scheduler.trigger_scan()
        scheduler.clear_opportunities()

        assert scheduler.get_opportunities() == []
        assert scheduler.get_status().opportunities_found == 1


class TestUpdateConfig:
    async def test_shrinking_cap_evicts(self):
        opps = [make_opportunity(f"acc_{i}", observed_at=_at(i)) for i in range(5)]
        scheduler = ScanScheduler(StubAggregator(_result(opps)))
        await scheduler.trigger_scan()

        scheduler.update_config(max_opportunities=2)
        assert [o.identifier for o in scheduler.get_opportunities()] == ["acc_4", "acc_3"]

    def test_invalid_update_rejected(self):
        scheduler = ScanScheduler(StubAggregator())
        with pytest.raises(ValueError):
            scheduler.update_config(max_opportunities=0)
        assert scheduler.config.max_opportunities == 100

    def test_interval_clamped(self):
        scheduler = ScanScheduler(StubAggregator())
        config = scheduler.update_config(scan_interval_ms=1)
        assert config.scan_interval_ms == 1000


class TestCacheOrder:
    def test_newest_first_stable(self):
        a = make_opportunity("a", observed_at=_at(0))
        b = make_opportunity("b", observed_at=_at(5))
        c = make_opportunity("c", observed_at=_at(0))
        assert [o.identifier for o in cache_order([a, b, c])] == ["b", "a", "c"]
