"""Liquidation executors — profit gate + submit + confirm.

절대 크래시하지 않는다. 모든 결과는 ExecutionResult로 반환.

Decision protocol shared by both variants:
1. signer 없음 → "not authorized" (네트워크 호출 없음)
2. 트랜잭션 빌드
3. 수수료 추정 (실패 시 기본값)
4. 순이익 = 예상 이익 - 비용
5. 순이익 < 최소 이익 → "not profitable" (제출 없음)
6. 서명 → 제출 → 확인. 자동 재시도 없음.

Usage (signer is any object with ``public_key`` and ``sign(request) -> bytes``):
    async with SolanaRpcClient.from_config(RpcConfig.from_env()) as client:
        opportunity = scheduler.get_latest_opportunities(1)[0]
        executor = FlashLoanExecutor(client, min_profit_floor=25.0)
        result = await executor.execute(opportunity, signer)
        await alerter.alert_execution(result, opportunity)
"""

from __future__ import annotations

import logging
from typing import Optional

from liqwatch.errors import AuthorizationError, SubmissionError
from liqwatch.execution.transaction_builder import (
    build_flash_loan_request,
    build_liquidation_request,
)
from liqwatch.ledger.interface import Ledger, Signer
from liqwatch.models.execution import ExecutionResult, TransactionRequest
from liqwatch.models.opportunity import Opportunity

logger = logging.getLogger(__name__)

LAMPORT_PRICE_USD = 0.000005  # 1 lamport ≈ $0.000005
MIN_PROFIT_FLOOR_USD = 10.0
DEFAULT_FEE_LAMPORTS = 5000
DEFAULT_FLASH_FEE_LAMPORTS = 10000  # 플래시론 트랜잭션은 인스트럭션이 더 많음
FLASH_LOAN_FEE_RATE = 0.001  # 0.1%

ERR_NOT_AUTHORIZED = "not authorized"
ERR_NOT_PROFITABLE = "not profitable"
ERR_REJECTED = "execution rejected"
ERR_CONFIRMATION_TIMEOUT = "confirmation timeout"


def require_signer(signer: Optional[Signer]) -> Signer:
    """Raise AuthorizationError unless a usable signing capability is present."""
    if signer is None or not callable(getattr(signer, "sign", None)):
        raise AuthorizationError("no signing capability")
    return signer


class ExecutionGate:
    """Base executor: direct-capital liquidation.

    Args:
        ledger: Fee estimation, submission and confirmation.
        min_profit_floor: 최소 순이익 (USD). 스케줄러 threshold와 무관.
        lamport_price: Lamport → USD 환산.
    """

    name = "liquidation"
    default_fee_lamports = DEFAULT_FEE_LAMPORTS

    def __init__(
        self,
        ledger: Ledger,
        min_profit_floor: float = MIN_PROFIT_FLOOR_USD,
        lamport_price: float = LAMPORT_PRICE_USD,
    ):
        self.ledger = ledger
        self.min_profit_floor = min_profit_floor
        self.lamport_price = lamport_price

    async def execute(
        self, opportunity: Opportunity, signer: Optional[Signer],
    ) -> ExecutionResult:
        """Run the decision protocol for one opportunity (절대 예외를 던지지 않음)."""
        try:
            signer = require_signer(signer)
        except AuthorizationError:
            logger.warning("[%s] %s: no signer", self.name, opportunity.identifier)
            return ExecutionResult.failed(ERR_NOT_AUTHORIZED)

        logger.info(
            "🚀 [%s] %s %s — est. profit $%.2f",
            self.name, opportunity.protocol.value, opportunity.identifier,
            opportunity.estimated_profit,
        )

        try:
            request = await self.build_request(opportunity, signer.public_key)
        except Exception as exc:
            logger.exception("[%s] failed to build transaction", self.name)
            return ExecutionResult.failed(f"build failed: {exc}")

        fee = await self.estimate_fee(request)
        cost = self.total_cost(request, fee)
        net_profit = opportunity.estimated_profit - cost

        if net_profit < self.min_profit_floor:
            logger.info(
                "[%s] skip %s: net $%.2f < floor $%.2f (cost $%.4f)",
                self.name, opportunity.identifier, net_profit, self.min_profit_floor, cost,
            )
            return ExecutionResult.failed(ERR_NOT_PROFITABLE)

        return await self._submit(opportunity, signer, request, cost)

    # ------------------------------------------------------------------
    # Overridable policy
    # ------------------------------------------------------------------

    async def build_request(
        self, opportunity: Opportunity, fee_payer: str,
    ) -> TransactionRequest:
        return await build_liquidation_request(self.ledger, opportunity, fee_payer)

    def total_cost(self, request: TransactionRequest, fee_lamports: int) -> float:
        """Execution cost in USD."""
        return fee_lamports * self.lamport_price

    async def estimate_fee(self, request: TransactionRequest) -> int:
        """수수료 추정. 실패 시 기본값 (중단하지 않음)."""
        try:
            fee = await self.ledger.estimate_fee(request)
        except Exception as exc:
            logger.warning(
                "[%s] fee estimation failed (%s), using default %d lamports",
                self.name, exc, self.default_fee_lamports,
            )
            return self.default_fee_lamports
        if not fee:
            return self.default_fee_lamports
        return int(fee)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def _submit(
        self,
        opportunity: Opportunity,
        signer: Signer,
        request: TransactionRequest,
        cost: float,
    ) -> ExecutionResult:
        reference: Optional[str] = None
        try:
            signed = signer.sign(request)
            reference = await self.ledger.submit(signed)
            logger.info("[%s] transaction sent: %s", self.name, reference)
            confirmation = await self.ledger.await_confirmation(reference)
        except SubmissionError as exc:
            reference = exc.reference or reference
            logger.error("[%s] submission failed: %s", self.name, exc)
            return ExecutionResult.failed(
                str(exc),
                cost_incurred=cost if reference else 0.0,
                transaction_reference=reference,
            )
        except Exception as exc:
            logger.exception("[%s] execution failed", self.name)
            return ExecutionResult.failed(
                str(exc) or type(exc).__name__,
                cost_incurred=cost if reference else 0.0,
                transaction_reference=reference,
            )

        if confirmation.rejected:
            logger.error(
                "[%s] transaction %s rejected on-chain: %s",
                self.name, reference, confirmation.error,
            )
            return ExecutionResult.failed(
                ERR_REJECTED, cost_incurred=cost, transaction_reference=reference,
            )
        if not confirmation.confirmed:
            return ExecutionResult.failed(
                ERR_CONFIRMATION_TIMEOUT, cost_incurred=cost, transaction_reference=reference,
            )

        logger.info(
            "✅ [%s] %s liquidated — profit $%.2f, cost $%.4f",
            self.name, opportunity.identifier, opportunity.estimated_profit, cost,
        )
        return ExecutionResult.ok(
            reference, profit=opportunity.estimated_profit, cost_incurred=cost,
        )


class LiquidationExecutor(ExecutionGate):
    """Direct-capital liquidation (liquidator's own funds repay the debt)."""


class FlashLoanExecutor(ExecutionGate):
    """Borrowed-capital liquidation: borrow → liquidate → repay in one transaction.

    Cost adds ``flash_loan_amount * flash_fee_rate`` to the network fee.
    """

    name = "flash-loan"
    default_fee_lamports = DEFAULT_FLASH_FEE_LAMPORTS

    def __init__(
        self,
        ledger: Ledger,
        min_profit_floor: float = MIN_PROFIT_FLOOR_USD,
        lamport_price: float = LAMPORT_PRICE_USD,
        flash_fee_rate: float = FLASH_LOAN_FEE_RATE,
    ):
        super().__init__(ledger, min_profit_floor, lamport_price)
        self.flash_fee_rate = flash_fee_rate

    async def build_request(
        self, opportunity: Opportunity, fee_payer: str,
    ) -> TransactionRequest:
        return await build_flash_loan_request(self.ledger, opportunity, fee_payer)

    def total_cost(self, request: TransactionRequest, fee_lamports: int) -> float:
        network = super().total_cost(request, fee_lamports)
        return network + request.flash_loan_amount * self.flash_fee_rate
