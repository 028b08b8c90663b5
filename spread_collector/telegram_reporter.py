"""텔레그램 봇을 통한 연결 상태 알림 및 차익 기회 리포트 모듈"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import aiohttp

from spread_collector.config import Config
from spread_collector.models import (
    ConnectionEvent, ConnectionState, HealthStatus, Opportunity, Venue,
)

logger = logging.getLogger(__name__)

HEALTH_ICONS = {
    HealthStatus.OPERATIONAL: "🟢",
    HealthStatus.PARTIAL: "🟡",
    HealthStatus.DOWN: "🔴",
}


class TelegramReporter:
    """텔레그램 봇을 통한 대시보드 스타일 상태 리포트 및 알림"""

    def __init__(self, config: Config):
        self.bot_token = config.telegram_bot_token
        self.chat_id = config.telegram_chat_id
        self.enabled = bool(self.bot_token and self.chat_id)
        # 거래소별 연결 이력: 알림은 상태가 실제로 바뀔 때만
        self._connected: set[Venue] = set()
        self._lost: set[Venue] = set()

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")

    async def send_message(self, text: str) -> None:
        """텔레그램 메시지 전송 (실패 시 로깅만, 수집에 영향 없음)"""
        if not self.enabled:
            return
        try:
            url = f"https://api.telegram.org/bot{self.bot_token}/sendMessage"
            payload = {"chat_id": self.chat_id, "text": text, "parse_mode": "HTML"}
            async with aiohttp.ClientSession() as session:
                async with session.post(url, json=payload, timeout=aiohttp.ClientTimeout(total=10)) as resp:
                    if resp.status != 200:
                        body = await resp.text()
                        logger.warning("텔레그램 전송 실패 (status=%d): %s", resp.status, body)
        except Exception:
            logger.warning("텔레그램 메시지 전송 중 예외 발생", exc_info=True)

    async def send_startup_report(self, config: Config, instrument_count: int) -> None:
        """시스템 시작 알림"""
        if not self.enabled:
            return
        text = (
            "━━━━━━━━━━━━━━━━━━━━\n"
            "🚀 <b>SPREAD COLLECTOR ONLINE</b>\n"
            "━━━━━━━━━━━━━━━━━━━━\n"
            f"🕐 {self._now_str()}\n"
            "\n"
            f"📌 추적 종목: <b>{instrument_count}</b>개\n"
            f"⏱ 버킷 폭: <code>{config.bucket_width}s</code>\n"
            f"💾 플러시: <code>{config.flush_interval}s</code>\n"
            f"🔁 재연결: <code>{config.max_reconnect_attempts}회 × {config.reconnect_base_delay}s</code>\n"
            "━━━━━━━━━━━━━━━━━━━━"
        )
        await self.send_message(text)

    def classify_connection_event(self, event: ConnectionEvent) -> tuple[str, str] | None:
        """연결 이벤트로 거래소별 상태를 갱신하고 보낼 알림 (제목, 본문) 반환"""
        venue = event.venue
        if event.exhausted:
            self._connected.discard(venue)
            self._lost.add(venue)
            return "⛔ <b>RECONNECT GAVE UP</b>", "재연결 한도 초과, 수동 connect 필요"
        if event.state == ConnectionState.CONNECTED:
            was_lost = venue in self._lost
            self._connected.add(venue)
            self._lost.discard(venue)
            if was_lost:
                return "✅ <b>RECONNECTED</b>", "데이터 수신 재개"
            return None
        if event.state == ConnectionState.DISCONNECTED and venue in self._connected:
            self._connected.discard(venue)
            self._lost.add(venue)
            return "⚠️ <b>CONNECTION LOST</b>", "🔄 자동 재연결 시도 중..."
        return None

    async def send_connection_alert(self, event: ConnectionEvent,
                                    health: HealthStatus) -> None:
        """연결 끊김 / 재연결 포기 / 복구 알림.

        재연결 시도마다 오는 DISCONNECTED는 무시하고, 연결 상태에서 끊긴
        경우에만 LOST를 보낸다. RECONNECTED는 앞서 끊김이 있었을 때만.
        """
        alert = self.classify_connection_event(event)
        if alert is None or not self.enabled:
            return
        title, body = alert
        venue = event.venue.value.upper()
        text = (
            "━━━━━━━━━━━━━━━━━━━━\n"
            f"{title}\n"
            "━━━━━━━━━━━━━━━━━━━━\n"
            f"🕐 {self._now_str()}\n"
            "\n"
            f"📡 거래소: <code>{venue}</code>\n"
            + (f"📝 사유: {event.reason}\n" if event.reason else "")
            + f"{HEALTH_ICONS[health]} 시스템 상태: <b>{health.value.upper()}</b>\n"
            "\n"
            f"{body}\n"
            "━━━━━━━━━━━━━━━━━━━━"
        )
        await self.send_message(text)

    async def send_opportunity_report(self, opportunities: list[Opportunity]) -> None:
        """최근 스프레드 상위 종목 리포트"""
        if not self.enabled:
            return
        if not opportunities:
            rows = ["  데이터 수집 중 (샘플 부족)"]
        else:
            rows = [
                f"  {i}. <code>{o.instrument_key:<10}</code> "
                f"<b>{o.avg_spread_pct:.4f}%</b> "
                f"(n={o.count}, ${o.current_price:,.4f})"
                for i, o in enumerate(opportunities, 1)
            ]
        text = (
            "━━━━━━━━━━━━━━━━━━━━\n"
            "🎯 <b>BEST OPPORTUNITIES</b>\n"
            "━━━━━━━━━━━━━━━━━━━━\n"
            f"🕐 {self._now_str()}\n"
            "\n"
            + "\n".join(rows) + "\n"
            "━━━━━━━━━━━━━━━━━━━━"
        )
        await self.send_message(text)
