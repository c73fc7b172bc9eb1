"""Telegram Bot API alerts.

청산 기회, 실행 결과, 에러 알림 전송.
봇 토큰 미설정 시 모든 메서드가 no-op (크래시 없음).
"""

from __future__ import annotations

import logging
from typing import Optional

import aiohttp

from liqwatch.models.execution import ExecutionResult
from liqwatch.models.opportunity import Opportunity

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


class TelegramAlerter:
    """Telegram 알림 발송기.

    Args:
        bot_token: Telegram Bot API 토큰. None이면 비활성.
        chat_id: 메시지 대상 채팅 ID. None이면 비활성.
    """

    def __init__(
        self,
        bot_token: str | None = None,
        chat_id: str | None = None,
    ):
        self._bot_token = bot_token
        self._chat_id = chat_id

    @property
    def enabled(self) -> bool:
        """토큰과 chat_id 모두 설정됐을 때만 활성."""
        return bool(self._bot_token and self._chat_id)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def alert_opportunity(self, opp: Opportunity) -> None:
        """청산 기회 감지 알림. 스케줄러 리스너로 등록 가능."""
        if not self.enabled:
            return
        try:
            await self._send_message(self._format_opportunity(opp))
        except Exception as exc:
            logger.error("Failed to send opportunity alert: %s", exc)

    async def alert_execution(
        self, result: ExecutionResult, opp: Optional[Opportunity] = None,
    ) -> None:
        """청산 실행 결과 알림.

        result = await LiquidationExecutor(client).execute(opp, signer)
        await alerter.alert_execution(result, opp)
        """
        if not self.enabled:
            return
        try:
            await self._send_message(self._format_execution(result, opp))
        except Exception as exc:
            logger.error("Failed to send execution alert: %s", exc)

    async def alert_error(self, message: str, level: str = "error") -> None:
        """에러/경고 알림."""
        if not self.enabled:
            return
        try:
            emoji = "🚨" if level == "error" else "⚠️"
            text = f"{emoji} <b>{level.upper()}</b>\n{message}"
            await self._send_message(text)
        except Exception as exc:
            logger.error("Failed to send error alert: %s", exc)

    # ------------------------------------------------------------------
    # Internal: HTTP
    # ------------------------------------------------------------------

    async def _send_message(self, text: str, parse_mode: str = "HTML") -> None:
        """Telegram sendMessage API 호출."""
        url = f"{TELEGRAM_API_URL}/bot{self._bot_token}/sendMessage"
        payload = {
            "chat_id": self._chat_id,
            "text": text,
            "parse_mode": parse_mode,
        }
        async with aiohttp.ClientSession() as session:
            async with session.post(url, json=payload) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    logger.warning("Telegram API %d: %s", resp.status, body[:200])

    # ------------------------------------------------------------------
    # Formatting helpers
    # ------------------------------------------------------------------

    def _format_opportunity(self, opp: Opportunity) -> str:
        return (
            f"🔴 <b>Liquidatable Position</b>\n"
            f"{'━' * 24}\n"
            f"Protocol: {opp.protocol.value} ({opp.market_id})\n"
            f"Account: <code>{opp.identifier}</code>\n"
            f"Health: <b>{opp.health_factor:.4f}</b> "
            f"(threshold {opp.liquidation_threshold:.2f})\n"
            f"Collateral: ${opp.collateral_value:,.2f} {opp.collateral_token}\n"
            f"Debt: ${opp.borrowed_value:,.2f} {opp.debt_token}\n"
            f"Est. Profit: <b>${opp.estimated_profit:,.2f}</b>"
        )

    def _format_execution(
        self, result: ExecutionResult, opp: Optional[Opportunity],
    ) -> str:
        target = f"Account: <code>{opp.identifier}</code>\n" if opp else ""
        if result.success:
            return (
                f"✅ <b>Liquidation Executed</b>\n"
                f"{'━' * 24}\n"
                f"{target}"
                f"Tx: <code>{result.transaction_reference}</code>\n"
                f"Profit: ${result.profit:,.2f}\n"
                f"Cost: ${result.cost_incurred:,.4f}"
            )
        tx_line = (
            f"Tx: <code>{result.transaction_reference}</code>\n"
            if result.transaction_reference else ""
        )
        return (
            f"❌ <b>Liquidation Failed</b>\n"
            f"{'━' * 24}\n"
            f"{target}"
            f"{tx_line}"
            f"Reason: {result.error or 'Unknown'}"
        )
