"""CLI — one-shot scan or background monitor.

Usage:
    python -m liqwatch                      # monitor mode
    python -m liqwatch --mode scan          # single scan, print table
    python -m liqwatch --interval 15 --protocols solend,kamino --min-profit 25
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal

from liqwatch.config import AppConfig, redact_endpoint
from liqwatch.ledger.rpc_client import SolanaRpcClient
from liqwatch.models.opportunity import Opportunity
from liqwatch.models.status import TaskStatus
from liqwatch.monitoring.telegram import TelegramAlerter
from liqwatch.scanner.adapter import build_adapters
from liqwatch.scanner.aggregator import OpportunityAggregator, ScanResult
from liqwatch.scheduler.scan_scheduler import ScanScheduler

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Banner
# ---------------------------------------------------------------------------

BANNER = r"""
╔══════════════════════════════════════════════╗
║   liqwatch — Solana Liquidation Scanner      ║
║   Solend · Mango · Kamino                     ║
╚══════════════════════════════════════════════╝
"""

# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


def format_opportunity_line(opp: Opportunity) -> str:
    """단일 포지션을 한 줄 문자열로 포맷."""
    flag = "🔴" if opp.is_liquidatable else "🟢"
    return (
        f"  {flag} [{opp.protocol.value:<6}] {opp.identifier[:44]:<44} "
        f"| HF: {opp.health_factor:8.4f} "
        f"| coll: ${opp.collateral_value:>12,.2f} "
        f"| debt: ${opp.borrowed_value:>12,.2f} "
        f"| profit: ${opp.estimated_profit:>10,.2f}"
    )


def log_results(result: ScanResult, limit: int = 20) -> None:
    """스캔 결과를 콘솔에 출력."""
    counts = ", ".join(
        f"{p.value}:{n}" for p, n in sorted(
            result.per_protocol_counts.items(), key=lambda kv: kv[0].value,
        )
    )
    print(f"\nScanned {result.total} positions ({counts})")
    print(f"  🔴 liquidatable: {result.liquidatable_count}")
    print(f"  🟢 healthy:      {result.healthy_count}")
    for protocol, error in result.failures.items():
        print(f"  ⚠️  {protocol.value} unavailable: {error}")

    if result.opportunities:
        print(f"\nMost at-risk positions (top {min(limit, result.total)}):")
        for opp in result.opportunities[:limit]:
            print(format_opportunity_line(opp))
    print()


def format_status(status: TaskStatus) -> str:
    last = status.last_scan_time.isoformat() if status.last_scan_time else "never"
    lines = [
        "═" * 50,
        "  Scheduler Status",
        "═" * 50,
        f"  Running: {status.is_running}",
        f"  Last scan: {last}",
        f"  Total scans: {status.total_scans}",
        f"  Opportunities found: {status.opportunities_found}",
        f"  Recent errors: {len(status.errors)}",
        "═" * 50,
    ]
    return "\n".join(lines)


def console_listener(opp: Opportunity) -> None:
    """스케줄러 리스너: 새 기회를 콘솔에 출력."""
    print(format_opportunity_line(opp))


# ---------------------------------------------------------------------------
# Core
# ---------------------------------------------------------------------------


def build_aggregator(client: SolanaRpcClient, config: AppConfig) -> OpportunityAggregator:
    adapters = build_adapters(client, config.enabled_protocols())
    return OpportunityAggregator(adapters, ledger=client)


async def run_once(config: AppConfig) -> ScanResult:
    """단일 스캔: connect → scan_all → return."""
    async with SolanaRpcClient.from_config(config.rpc) as client:
        aggregator = build_aggregator(client, config)
        status = await aggregator.ledger_status()
        logger.info(
            "RPC %s (%s) — slot %s",
            status.get("endpoint"), status.get("status"), status.get("current_slot"),
        )
        return await aggregator.scan_all()


def _build_alerter() -> TelegramAlerter:
    """환경변수에서 TelegramAlerter 생성."""
    return TelegramAlerter(
        bot_token=os.environ.get("TELEGRAM_BOT_TOKEN"),
        chat_id=os.environ.get("TELEGRAM_CHAT_ID"),
    )


async def monitor_loop(config: AppConfig) -> TaskStatus:
    """백그라운드 모니터: 스케줄러 실행 → 시그널 대기 → 정리."""
    alerter = _build_alerter()

    print(BANNER)
    print(f"Cluster: {config.rpc.cluster}")
    print(f"RPC: {redact_endpoint(config.rpc.endpoint)}")
    print(f"Scan interval: {config.scheduler.scan_interval:.0f}s")
    print(f"Min profit: ${config.scheduler.min_profit_threshold:.2f}")
    print(f"Notifications: {'ON' if config.scheduler.notifications_enabled else 'OFF'}")
    print(f"Telegram alerts: {'ON' if alerter.enabled else 'OFF'}")
    print(f"Protocols: {', '.join(config.enabled_protocols())}")
    print("-" * 60)

    stop_event = asyncio.Event()

    def _handle_signal():
        print("\n⚡ Shutting down gracefully...")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _handle_signal)
        except NotImplementedError:
            pass  # Windows

    async with SolanaRpcClient.from_config(config.rpc) as client:
        aggregator = build_aggregator(client, config)
        scheduler = ScanScheduler(aggregator, config.scheduler)
        scheduler.add_listener(console_listener)
        if alerter.enabled:
            scheduler.add_listener(alerter.alert_opportunity)

        scheduler.start()
        await stop_event.wait()
        scheduler.stop()
        await scheduler.wait_closed()

    status = scheduler.get_status()
    print(format_status(status))
    print("Goodbye! 🤙")
    return status


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """커맨드라인 인자 파싱."""
    parser = argparse.ArgumentParser(
        prog="liqwatch",
        description="Solana lending liquidation scanner",
    )
    parser.add_argument(
        "--mode", type=str, default="monitor",
        choices=["monitor", "scan"],
        help="monitor (background scheduler) or scan (single pass)",
    )
    parser.add_argument(
        "--interval", type=float, default=None,
        help="Scan interval in seconds (default: 30, min: 1)",
    )
    parser.add_argument(
        "--protocols", type=str, default=None,
        help="Comma-separated protocols to scan (e.g., solend,kamino)",
    )
    parser.add_argument(
        "--min-profit", type=float, default=None,
        help="Minimum estimated profit (USD) to cache/notify",
    )
    parser.add_argument(
        "--max-opportunities", type=int, default=None,
        help="Opportunity cache size",
    )
    parser.add_argument(
        "--no-notify", action="store_true", default=False,
        help="Disable opportunity listeners",
    )
    parser.add_argument(
        "--log-level", type=str, default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser.parse_args(argv)


def apply_args(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """CLI 인자를 설정에 반영."""
    changes: dict = {}
    if args.interval is not None:
        changes["scan_interval_ms"] = int(args.interval * 1000)
    if args.min_profit is not None:
        changes["min_profit_threshold"] = args.min_profit
    if args.max_opportunities is not None:
        changes["max_opportunities"] = args.max_opportunities
    if args.no_notify:
        changes["notifications_enabled"] = False
    if changes:
        config.scheduler = config.scheduler.updated(**changes)

    if args.protocols:
        names = {s.strip().lower() for s in args.protocols.split(",") if s.strip()}
        unknown = names - set(config.protocols)
        if unknown:
            raise SystemExit(f"Unknown protocol(s): {', '.join(sorted(unknown))}")
        config.protocols = {
            name: dict(cfg, enabled=name in names)
            for name, cfg in config.protocols.items()
        }
    return config


def cli_main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    config = apply_args(AppConfig.from_env(), args)

    if args.mode == "scan":
        result = asyncio.run(run_once(config))
        log_results(result)
        return

    asyncio.run(monitor_loop(config))


if __name__ == "__main__":
    cli_main()
