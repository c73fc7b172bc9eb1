"""Scanner configuration — protocol table, RPC endpoints, env-based config."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace

# ---------------------------------------------------------------------------
# 프로토콜 정의
# ---------------------------------------------------------------------------
#
# collateral_offset / borrowed_offset: byte offsets of the two u128 WAD
# decimals read by the default parser. Solend's obligation layout places
# depositedValue at 74 and borrowedValue at 90. Mango/Kamino offsets are
# unverified placeholders until a protocol-specific parser is plugged in.

PROTOCOLS: dict = {
    "solend": {
        "enabled": True,
        "description": "Solend main pool obligations",
        "program_id": "So1endDq2YkqhipRh3WViPa8hdiSpxWy6z3Z6tMCpAo",
        "data_size": 916,
        "market_id": "Solend Main",
        "liquidation_threshold": 1.05,
        "liquidation_bonus": 0.08,
        "gas_cost": 5000,
        "collateral_token": "SOL",
        "debt_token": "USDC",
        "collateral_offset": 74,
        "borrowed_offset": 90,
    },
    "mango": {
        "enabled": True,
        "description": "Mango Markets accounts",
        "program_id": "mv3ekLzLbnVPNxjSKvqBpU3ZeZXPQdEC3bp5MDEBG68",
        "data_size": 2000,
        "market_id": "Mango Markets",
        "liquidation_threshold": 1.10,
        "liquidation_bonus": 0.10,
        "gas_cost": 8000,
        "collateral_token": "SOL",
        "debt_token": "USDC",
        "collateral_offset": 72,
        "borrowed_offset": 88,
    },
    "kamino": {
        "enabled": True,
        "description": "Kamino Lend obligations",
        "program_id": "KLend2g3cP87fffoy8q1mQqGKjrxjC8boSyAYavgmjD",
        "data_size": 1500,
        "market_id": "Kamino Finance",
        "liquidation_threshold": 1.08,
        "liquidation_bonus": 0.09,
        "gas_cost": 6000,
        "collateral_token": "SOL",
        "debt_token": "USDC",
        "collateral_offset": 72,
        "borrowed_offset": 88,
    },
}

# ---------------------------------------------------------------------------
# RPC 엔드포인트
# ---------------------------------------------------------------------------

RPC_ENDPOINTS: dict[str, str] = {
    "mainnet": "https://api.mainnet-beta.solana.com",
    "testnet": "https://api.testnet.solana.com",
    "devnet": "https://api.devnet.solana.com",
}

HELIUS_ENDPOINTS: dict[str, str] = {
    "mainnet": "https://mainnet.helius-rpc.com/?api-key={key}",
    "devnet": "https://devnet.helius-rpc.com/?api-key={key}",
}

DEFAULT_CLUSTER = "mainnet"


def get_rpc_endpoint(cluster: str = DEFAULT_CLUSTER, api_key: str | None = None) -> str:
    """Helius 키가 있으면 Helius, 없으면 공개 RPC."""
    if cluster not in RPC_ENDPOINTS:
        raise ValueError(f"Unknown cluster: {cluster}")
    if api_key and cluster in HELIUS_ENDPOINTS:
        return HELIUS_ENDPOINTS[cluster].format(key=api_key)
    return RPC_ENDPOINTS[cluster]


def redact_endpoint(url: str) -> str:
    """Drop the query string so API keys never reach the logs."""
    return url.split("?", 1)[0]


def rpc_provider_name(url: str, cluster: str) -> str:
    """로그/상태 표시용 RPC 제공자 이름."""
    if "helius" in url:
        return "Helius Devnet" if cluster == "devnet" else "Helius Mainnet"
    return "Solana public RPC"


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() not in ("false", "0", "no")


# ---------------------------------------------------------------------------
# RpcConfig
# ---------------------------------------------------------------------------


@dataclass
class RpcConfig:
    """Ledger RPC connection settings."""

    cluster: str = DEFAULT_CLUSTER
    endpoint: str = RPC_ENDPOINTS[DEFAULT_CLUSTER]
    timeout: int = 30  # seconds
    max_retries: int = 3
    retry_base_delay: float = 2.0  # seconds, doubled per attempt

    def __post_init__(self):
        if self.max_retries < 1:
            self.max_retries = 1

    @classmethod
    def from_env(cls) -> RpcConfig:
        cluster = os.environ.get("LIQWATCH_CLUSTER", DEFAULT_CLUSTER).lower()
        endpoint = os.environ.get("LIQWATCH_RPC_URL") or get_rpc_endpoint(
            cluster, os.environ.get("HELIUS_API_KEY"),
        )
        return cls(
            cluster=cluster,
            endpoint=endpoint,
            timeout=int(os.environ.get("LIQWATCH_RPC_TIMEOUT", "30")),
            max_retries=int(os.environ.get("LIQWATCH_RPC_MAX_RETRIES", "3")),
        )


# ---------------------------------------------------------------------------
# SchedulerConfig
# ---------------------------------------------------------------------------

MIN_SCAN_INTERVAL_MS = 1000


@dataclass(frozen=True)
class SchedulerConfig:
    """Background scan settings.

    Attributes:
        scan_interval_ms: Period between scan ticks. Clamped to >= 1s.
        max_opportunities: Cache cap; oldest observations are evicted first.
        min_profit_threshold: Liquidatable positions below this estimated
            profit are ignored by the scheduler.
        notifications_enabled: When False, listeners are never invoked.
    """

    scan_interval_ms: int = 30_000
    max_opportunities: int = 100
    min_profit_threshold: float = 10.0
    notifications_enabled: bool = True

    def __post_init__(self):
        # 최소 스캔 간격 강제
        if self.scan_interval_ms < MIN_SCAN_INTERVAL_MS:
            object.__setattr__(self, "scan_interval_ms", MIN_SCAN_INTERVAL_MS)
        if self.max_opportunities < 1:
            raise ValueError("max_opportunities must be >= 1")
        if self.min_profit_threshold < 0:
            raise ValueError("min_profit_threshold must be >= 0")

    @property
    def scan_interval(self) -> float:
        """Interval in seconds."""
        return self.scan_interval_ms / 1000.0

    def updated(self, **changes) -> SchedulerConfig:
        """Return a validated copy with ``changes`` applied."""
        return replace(self, **changes)

    @classmethod
    def from_env(cls) -> SchedulerConfig:
        return cls(
            scan_interval_ms=int(os.environ.get("LIQWATCH_SCAN_INTERVAL_MS", "30000")),
            max_opportunities=int(os.environ.get("LIQWATCH_MAX_OPPORTUNITIES", "100")),
            min_profit_threshold=float(os.environ.get("LIQWATCH_MIN_PROFIT", "10")),
            notifications_enabled=_env_bool("LIQWATCH_NOTIFICATIONS", "true"),
        )


@dataclass
class AppConfig:
    """CLI 전체 설정."""

    rpc: RpcConfig = field(default_factory=RpcConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    protocols: dict = field(default_factory=lambda: PROTOCOLS)

    @classmethod
    def from_env(cls) -> AppConfig:
        return cls(rpc=RpcConfig.from_env(), scheduler=SchedulerConfig.from_env())

    def enabled_protocols(self) -> dict:
        """활성화된 프로토콜만 반환."""
        return {
            name: cfg
            for name, cfg in self.protocols.items()
            if cfg.get("enabled")
        }
