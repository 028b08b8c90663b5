"""Lighter 피드 모듈 - market_stats 구독, 세 가지 envelope 정규화, 마켓 발견"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Iterable

from spread_collector.feed_client import FeedClient
from spread_collector.models import ConnectionEvent, Venue

if TYPE_CHECKING:
    from spread_collector.config import Config
    from spread_collector.integrity_logger import IntegrityLogger

logger = logging.getLogger(__name__)


class LighterClient(FeedClient):
    """Lighter market_stats 스트림 (market id 기준 mark price)

    지원 envelope:
      1. channel == "market_stats:all" → market_stats = {"<id>": {...}, ...}
      2. channel == "market_stats:<id>" → market_stats = {"market_id": ..., ...}
      3. type == "update/market_stats" → market_stats = {"market_id": ..., ...}
    """

    VENUE = Venue.LIGHTER
    NAME = "Lighter"

    def __init__(self, config: Config,
                 on_price: Callable[[int, float], None],
                 on_state_change: Callable[[ConnectionEvent], None] | None = None,
                 integrity_logger: IntegrityLogger | None = None,
                 on_markets_discovered: Callable[[list[int]], None] | None = None):
        super().__init__(config, on_price, on_state_change, integrity_logger)
        self.on_markets_discovered = on_markets_discovered
        self.discovered_markets: set[int] = set()

    def build_ws_url(self) -> str:
        return self.config.venue_b_ws_url

    def subscription_message(self) -> dict:
        return {"type": "subscribe", "channel": "market_stats/all"}

    def parse_message(self, message: dict) -> list[tuple[int, float]] | None:
        channel = message.get("channel")
        stats = message.get("market_stats")
        if not isinstance(stats, dict):
            if message.get("type") in ("connected", "subscribed", "ping", "pong"):
                return []
            return None

        if channel == "market_stats:all":
            readings = []
            for market_id_str, market in stats.items():
                market_id = self.parse_market_id(market_id_str)
                if market_id is None or not isinstance(market, dict):
                    continue
                readings.append((market_id, market.get("mark_price")))
            self._note_markets(m for m, _ in readings)
            return self.iter_valid(readings)

        is_single = isinstance(channel, str) and channel.startswith("market_stats:")
        if is_single or message.get("type") == "update/market_stats":
            market_id = self.parse_market_id(stats.get("market_id"))
            if market_id is None:
                return []
            return self.iter_valid([(market_id, stats.get("mark_price"))])
        return None

    @staticmethod
    def parse_market_id(value: Any) -> int | None:
        """정수 market id만 허용 (1.5, True 등은 None)"""
        if isinstance(value, bool):
            return None
        if isinstance(value, float) and not value.is_integer():
            return None
        try:
            return int(value)
        except (TypeError, ValueError, OverflowError):
            return None

    def _note_markets(self, market_ids: Iterable[int]) -> None:
        """처음 보는 market id가 있으면 발견 콜백 호출"""
        new_ids = [m for m in market_ids if m not in self.discovered_markets]
        if not new_ids:
            return
        self.discovered_markets.update(new_ids)
        logger.info(f"[{self.NAME}] 신규 마켓 {len(new_ids)}개 발견")
        if self.on_markets_discovered:
            self.on_markets_discovered(sorted(new_ids))
