"""Solana JSON-RPC client with retry and error handling."""

from __future__ import annotations

import asyncio
import base64
import binascii
import itertools
import logging
from typing import Any, Optional

import aiohttp

from liqwatch.config import (
    DEFAULT_CLUSTER,
    RPC_ENDPOINTS,
    RpcConfig,
    redact_endpoint,
    rpc_provider_name,
)
from liqwatch.errors import (
    ConnectivityError,
    FeeEstimationError,
    LedgerError,
    RpcError,
    SubmissionError,
)
from liqwatch.ledger.retry import retry_async
from liqwatch.models.execution import Confirmation, TransactionRequest
from liqwatch.models.opportunity import RawAccount

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30  # seconds
DEFAULT_MAX_RETRIES = 3
DEFAULT_COMMITMENT = "confirmed"
CONFIRMATION_TIMEOUT = 60.0  # seconds
CONFIRMATION_POLL_INTERVAL = 2.0  # seconds

# 재시도 대상 HTTP 상태
RETRYABLE_STATUSES = {429, 500, 502, 503, 504}


class SolanaRpcClient:
    """Async client for the Solana JSON-RPC API.

    Usage:
        async with SolanaRpcClient(endpoint) as client:
            accounts = await client.query_accounts(program_id, data_size=916)
    """

    def __init__(
        self,
        endpoint: str = RPC_ENDPOINTS[DEFAULT_CLUSTER],
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = 2.0,
        cluster: str = DEFAULT_CLUSTER,
        commitment: str = DEFAULT_COMMITMENT,
    ):
        self.endpoint = endpoint
        self.cluster = cluster
        self.commitment = commitment
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self._session: Optional[aiohttp.ClientSession] = None
        self._ids = itertools.count(1)

    @classmethod
    def from_config(cls, config: RpcConfig) -> SolanaRpcClient:
        return cls(
            endpoint=config.endpoint,
            timeout=config.timeout,
            max_retries=config.max_retries,
            retry_base_delay=config.retry_base_delay,
            cluster=config.cluster,
        )

    async def open(self) -> None:
        """Open aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        """Close aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> SolanaRpcClient:
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def redacted_endpoint(self) -> str:
        return redact_endpoint(self.endpoint)

    # ------------------------------------------------------------------
    # Account queries
    # ------------------------------------------------------------------

    async def query_accounts(
        self, program_id: str, data_size: Optional[int] = None,
    ) -> list[RawAccount]:
        """getProgramAccounts — dataSize 필터. 디코딩 불가 항목은 스킵."""
        options: dict[str, Any] = {
            "encoding": "base64",
            "commitment": self.commitment,
        }
        if data_size is not None:
            options["filters"] = [{"dataSize": data_size}]

        result = await self._call("getProgramAccounts", [program_id, options])
        if not isinstance(result, list):
            logger.warning("getProgramAccounts returned %s, expected list", type(result).__name__)
            return []

        accounts: list[RawAccount] = []
        for entry in result:
            account = self._decode_account(entry)
            if account is not None:
                accounts.append(account)

        logger.info(
            "Fetched %d accounts for program %s (dataSize=%s)",
            len(accounts), program_id, data_size,
        )
        return accounts

    @staticmethod
    def _decode_account(entry: Any) -> Optional[RawAccount]:
        try:
            info = entry["account"]
            data_field = info["data"]
            encoded = data_field[0] if isinstance(data_field, list) else data_field
            return RawAccount(
                address=str(entry["pubkey"]),
                data=base64.b64decode(encoded),
                lamports=int(info.get("lamports", 0)),
                owner=str(info.get("owner", "")),
            )
        except (KeyError, TypeError, IndexError, ValueError, binascii.Error) as exc:
            logger.warning("Skipping undecodable account entry: %s", exc)
            return None

    async def current_height(self) -> int:
        """getSlot."""
        result = await self._call("getSlot", [{"commitment": self.commitment}])
        return int(result)

    async def latest_blockhash(self) -> str:
        """getLatestBlockhash."""
        result = await self._call(
            "getLatestBlockhash", [{"commitment": self.commitment}],
        )
        try:
            return str(result["value"]["blockhash"])
        except (KeyError, TypeError) as exc:
            raise LedgerError(f"Malformed getLatestBlockhash response: {result!r}") from exc

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def estimate_fee(self, request: TransactionRequest) -> int:
        """getFeeForMessage. value가 null이면 FeeEstimationError."""
        message = base64.b64encode(request.message_bytes()).decode()
        result = await self._call(
            "getFeeForMessage", [message, {"commitment": self.commitment}],
        )
        value = result.get("value") if isinstance(result, dict) else None
        if value is None:
            raise FeeEstimationError("getFeeForMessage returned no fee")
        return int(value)

    async def submit(self, signed_transaction: bytes) -> str:
        """sendTransaction. 재시도 없음 — 같은 트랜잭션을 두 번 보내지 않는다."""
        encoded = base64.b64encode(signed_transaction).decode()
        try:
            result = await self._call(
                "sendTransaction",
                [encoded, {"encoding": "base64", "preflightCommitment": self.commitment}],
                attempts=1,
            )
        except RpcError as exc:
            raise SubmissionError(f"sendTransaction rejected: {exc}") from exc
        except ConnectivityError as exc:
            raise SubmissionError(f"sendTransaction failed: {exc}") from exc
        return str(result)

    async def await_confirmation(
        self,
        reference: str,
        timeout: float = CONFIRMATION_TIMEOUT,
        poll_interval: float = CONFIRMATION_POLL_INTERVAL,
    ) -> Confirmation:
        """getSignatureStatuses 폴링.

        err 존재 → rejected, confirmed/finalized → confirmed,
        timeout → 둘 다 False.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            result = await self._call(
                "getSignatureStatuses",
                [[reference], {"searchTransactionHistory": True}],
            )
            statuses = result.get("value") if isinstance(result, dict) else None
            status = statuses[0] if statuses else None

            if status is not None:
                if status.get("err") is not None:
                    return Confirmation(
                        confirmed=True, rejected=True, error=str(status["err"]),
                    )
                if status.get("confirmationStatus") in ("confirmed", "finalized"):
                    return Confirmation(confirmed=True, rejected=False)

            if loop.time() >= deadline:
                logger.warning("Confirmation timeout for %s after %.0fs", reference, timeout)
                return Confirmation(confirmed=False, rejected=False)
            await asyncio.sleep(poll_interval)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def health_check(self) -> dict:
        """RPC 연결 상태. 절대 예외를 던지지 않음."""
        status = {
            "status": "ok",
            "cluster": self.cluster,
            "endpoint": self.redacted_endpoint,
            "provider": rpc_provider_name(self.endpoint, self.cluster),
            "current_slot": None,
        }
        try:
            status["current_slot"] = await self.current_height()
        except LedgerError as exc:
            logger.warning("RPC health check failed: %s", exc)
            status["status"] = "error"
            status["error"] = str(exc)
        return status

    # ------------------------------------------------------------------
    # JSON-RPC helpers with retry
    # ------------------------------------------------------------------

    async def _call(
        self, method: str, params: list, attempts: int | None = None,
    ) -> Any:
        """JSON-RPC 호출. ConnectivityError만 재시도."""
        return await retry_async(
            lambda: self._post_once(method, params),
            attempts=attempts or self.max_retries,
            base_delay=self.retry_base_delay,
            label=f"RPC {method}",
        )

    async def _post_once(self, method: str, params: list) -> Any:
        await self.open()
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            async with self._session.post(self.endpoint, json=payload) as resp:
                if resp.status in RETRYABLE_STATUSES:
                    raise ConnectivityError(f"{method}: HTTP {resp.status}")
                if resp.status != 200:
                    body = await resp.text()
                    raise RpcError(f"{method}: HTTP {resp.status} {body[:200]}")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ConnectivityError(f"{method}: {str(exc) or type(exc).__name__}") from exc
        except ValueError as exc:
            raise RpcError(f"{method}: invalid JSON response") from exc

        if not isinstance(data, dict):
            raise RpcError(f"{method}: malformed response")

        error = data.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise RpcError(f"{method}: {message}", code=code)

        return data.get("result")
