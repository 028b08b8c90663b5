"""Hyperliquid 피드 모듈 - allMids 구독 및 코인별 mid 가격 정규화"""

from __future__ import annotations

import logging

from spread_collector.feed_client import FeedClient
from spread_collector.models import Venue

logger = logging.getLogger(__name__)


class HyperliquidClient(FeedClient):
    """Hyperliquid allMids 스트림 (메시지 하나에 전체 코인 mid 가격)"""

    VENUE = Venue.HYPERLIQUID
    NAME = "Hyperliquid"

    def build_ws_url(self) -> str:
        return self.config.venue_a_ws_url

    def subscription_message(self) -> dict:
        return {"method": "subscribe", "subscription": {"type": "allMids"}}

    def parse_message(self, message: dict) -> list[tuple[str, float]] | None:
        channel = message.get("channel")
        if channel == "subscriptionResponse":
            logger.info(f"[{self.NAME}] 구독 확인")
            return []
        if channel == "pong":
            return []
        if channel == "allMids":
            data = message.get("data")
            mids = data.get("mids") if isinstance(data, dict) else None
            if not isinstance(mids, dict):
                return None
            return self.iter_valid(mids.items())
        return None
