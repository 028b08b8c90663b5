"""페어링 모듈 - 거래소별 최신 가격 캐시 및 동기화된 스프레드 관측치 생성"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Callable

from spread_collector.models import SpreadObservation, Venue, VenuePrice

if TYPE_CHECKING:
    from spread_collector.instruments import InstrumentTable

logger = logging.getLogger(__name__)

ObservationHandler = Callable[[SpreadObservation], None]


class InstrumentPriceCache:
    """종목별, 거래소별 최신 가격 (last-write-wins)"""

    def __init__(self):
        self._prices: dict[str, dict[Venue, VenuePrice]] = defaultdict(dict)

    def set(self, price: VenuePrice) -> None:
        self._prices[price.instrument_key][price.venue] = price

    def get(self, instrument_key: str, venue: Venue) -> VenuePrice | None:
        entry = self._prices.get(instrument_key)
        return entry.get(venue) if entry else None

    def both_known(self, instrument_key: str) -> bool:
        entry = self._prices.get(instrument_key)
        return bool(entry) and all(v in entry for v in Venue)

    def __contains__(self, instrument_key: str) -> bool:
        return instrument_key in self._prices

    def __len__(self) -> int:
        return len(self._prices)


class PairingEngine:
    """두 거래소 가격을 합쳐 SpreadObservation을 방출.

    가격 갱신은 항상 캐시에 반영되고, 양쪽 가격이 모두 있을 때만 관측치가
    생성된다. 관측치 시각은 소스 타임스탬프가 아닌 이 호출 시각이다.
    max_price_age > 0이면 반대편 가격이 그보다 오래된 경우 방출하지 않는다.
    """

    def __init__(self, table: InstrumentTable, max_price_age: float = 0.0,
                 clock: Callable[[], float] = time.time):
        self.table = table
        self.max_price_age = max_price_age
        self.clock = clock
        self.cache = InstrumentPriceCache()
        self.emitted_count = 0
        self.stale_count = 0
        self._subscribers: list[tuple[str, ObservationHandler]] = []

    def subscribe(self, handler: ObservationHandler, name: str | None = None) -> None:
        """관측치 구독자 등록 (등록 순서대로 호출)"""
        self._subscribers.append((name or getattr(handler, "__qualname__", "handler"), handler))

    def on_venue_a_price(self, instrument_key: str, price: float) -> SpreadObservation | None:
        return self._update(Venue.HYPERLIQUID, instrument_key, price)

    def on_venue_b_price(self, instrument_key: str, price: float) -> SpreadObservation | None:
        return self._update(Venue.LIGHTER, instrument_key, price)

    def _update(self, venue: Venue, instrument_key: str,
                price: float) -> SpreadObservation | None:
        # 매핑 테이블에 없는 종목은 캐시도 만들지 않음
        if instrument_key not in self.table:
            return None

        now = self.clock()
        self.cache.set(VenuePrice(venue, instrument_key, price, now))

        side_a = self.cache.get(instrument_key, Venue.HYPERLIQUID)
        side_b = self.cache.get(instrument_key, Venue.LIGHTER)
        if side_a is None or side_b is None:
            return None

        if self.max_price_age > 0:
            age = now - min(side_a.observed_at, side_b.observed_at)
            if age > self.max_price_age:
                self.stale_count += 1
                logger.debug(f"[Pairing] {instrument_key} 오래된 가격 ({age:.1f}s), 방출 안 함")
                return None

        observation = SpreadObservation.from_prices(
            instrument_key, side_a.price, side_b.price, now,
        )
        self.emitted_count += 1
        self._emit(observation)
        return observation

    def _emit(self, observation: SpreadObservation) -> None:
        """구독자별 실패 격리 (한 구독자 예외가 다른 구독자/캐시에 영향 없음)"""
        for name, handler in self._subscribers:
            try:
                handler(observation)
            except Exception:
                logger.error(f"[Pairing] 구독자 {name} 처리 실패", exc_info=True)
