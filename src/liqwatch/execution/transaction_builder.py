"""Liquidation transaction builder.

Instruction payloads are protocol-specific; until a protocol's liquidation
instruction encoder is plugged in, instructions target the system program
with empty data so the request can still be priced and signed.
"""

from __future__ import annotations

import logging

from liqwatch.ledger.interface import Ledger
from liqwatch.models.execution import Instruction, TransactionRequest
from liqwatch.models.opportunity import Opportunity

logger = logging.getLogger(__name__)

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"

# 플래시론 금액 = 부채 + 1% 청산 보너스
FLASH_LOAN_BUFFER = 0.01


def flash_loan_amount(opp: Opportunity) -> float:
    """Amount to borrow (currency units) to repay the position's debt."""
    return opp.borrowed_value * (1.0 + FLASH_LOAN_BUFFER)


def liquidation_instruction(opp: Opportunity) -> Instruction:
    return Instruction(
        kind="liquidate",
        program_id=SYSTEM_PROGRAM_ID,
        accounts=(opp.identifier, opp.borrower),
    )


async def build_liquidation_request(
    ledger: Ledger, opp: Opportunity, fee_payer: str,
) -> TransactionRequest:
    """직접 자본 청산: liquidate 1개."""
    blockhash = await ledger.latest_blockhash()
    return TransactionRequest(
        protocol=opp.protocol,
        instructions=[liquidation_instruction(opp)],
        fee_payer=fee_payer,
        recent_blockhash=blockhash,
    )


async def build_flash_loan_request(
    ledger: Ledger, opp: Opportunity, fee_payer: str,
) -> TransactionRequest:
    """플래시론 청산: borrow → liquidate → repay."""
    amount = flash_loan_amount(opp)
    blockhash = await ledger.latest_blockhash()
    amount_data = f"{amount:.6f}".encode()
    return TransactionRequest(
        protocol=opp.protocol,
        instructions=[
            Instruction(kind="flash_borrow", program_id=SYSTEM_PROGRAM_ID, data=amount_data),
            liquidation_instruction(opp),
            Instruction(kind="flash_repay", program_id=SYSTEM_PROGRAM_ID, data=amount_data),
        ],
        fee_payer=fee_payer,
        recent_blockhash=blockhash,
        flash_loan_amount=amount,
    )
