"""스프레드 엔진 모듈 - 피드 이벤트 큐, 페어링/집계/이력/저장 연결, 연결 상태 뷰"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Callable, Iterable

from spread_collector.aggregator import BucketAggregator
from spread_collector.history import RecentHistoryRing
from spread_collector.models import (
    BucketSummary, ConnectionEvent, ConnectionState, HealthStatus, Opportunity,
    RecordKind, SpreadObservation, Venue, compute_health,
)
from spread_collector.pairing import PairingEngine
from spread_collector.ranker import OpportunityRanker

if TYPE_CHECKING:
    from spread_collector.config import Config
    from spread_collector.feed_client import FeedClient
    from spread_collector.instruments import InstrumentMapping, InstrumentTable
    from spread_collector.integrity_logger import IntegrityLogger
    from spread_collector.store import PersistenceSink

logger = logging.getLogger(__name__)

ConnectionListener = Callable[[ConnectionEvent, HealthStatus], None]
SummaryListener = Callable[[BucketSummary], None]

DISCOVERY = "discovery"  # 큐 항목 태그: (DISCOVERY, market_ids, None)


class SpreadEngine:
    """단일 이벤트 루프 위의 상태 소유자.

    피드 콜백은 submit_*()으로 bounded 큐에 넣기만 하고, run() 태스크가 큐를
    비우며 페어링 → 구독자(집계, 이력, 저장) 순으로 처리한다. 상태를 바꾸는
    메서드는 모두 await 없는 동기 메서드라 서로 끼어들 수 없다.
    큐가 가득 차면 가장 오래된 이벤트를 버린다 (새 가격이 이전 가격을 대체).
    """

    def __init__(self, config: Config, table: InstrumentTable,
                 store: PersistenceSink | None = None,
                 integrity_logger: IntegrityLogger | None = None,
                 clock: Callable[[], float] = time.time):
        self.config = config
        self.table = table
        self.store = store
        self.integrity_logger = integrity_logger
        self.clock = clock

        self.pairing = PairingEngine(table, config.max_price_age, clock)
        self.aggregator = BucketAggregator(config.bucket_width)
        self.history = RecentHistoryRing(config.ring_capacity)
        self.ranker = OpportunityRanker(config.min_rank_samples, config.rank_top_n)
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=config.queue_maxsize)

        self.connection_states: dict[Venue, ConnectionState] = {
            v: ConnectionState.DISCONNECTED for v in Venue
        }
        self.exhausted: dict[Venue, bool] = {v: False for v in Venue}
        self.latest_observations: dict[str, SpreadObservation] = {}
        self.known_venue_a_codes: set[str] = set()
        self.tracked_keys: list[str] = []
        self.dropped_count = 0
        self.feeds: dict[Venue, FeedClient] = {}
        self._summary_listeners: list[SummaryListener] = []
        self._connection_listeners: list[ConnectionListener] = []

        self.pairing.subscribe(self.aggregator.add, "aggregator")
        self.pairing.subscribe(self.history.push, "history")
        self.pairing.subscribe(self._persist_observation, "store")
        self.pairing.subscribe(self._update_latest, "latest")

    # ── 구독 ──

    def subscribe_observations(self, handler: Callable[[SpreadObservation], None]) -> None:
        """실시간 SpreadObservation 스트림 구독"""
        self.pairing.subscribe(handler)

    def subscribe_summaries(self, handler: SummaryListener) -> None:
        self._summary_listeners.append(handler)

    def subscribe_connection(self, handler: ConnectionListener) -> None:
        """거래소별 연결 상태 변경 + 시스템 상태 구독"""
        self._connection_listeners.append(handler)

    # ── 피드 연결 ──

    def attach_feeds(self, *clients: FeedClient) -> None:
        for client in clients:
            self.feeds[client.VENUE] = client

    def set_tracked(self, keys: Iterable[str]) -> None:
        """추적 종목 변경 → 두 피드 필터 갱신 (빈 목록 = 전체)"""
        self.tracked_keys = [k for k in keys if k in self.table]
        venue_a = self.feeds.get(Venue.HYPERLIQUID)
        venue_b = self.feeds.get(Venue.LIGHTER)
        if venue_a:
            venue_a.set_tracked(self.table.venue_a_filter(self.tracked_keys))
        if venue_b:
            venue_b.set_tracked(self.table.venue_b_filter(self.tracked_keys))

    # ── 입력 (피드 콜백) ──

    def submit_venue_a(self, coin: str, price: float) -> None:
        self._put((Venue.HYPERLIQUID, coin, price))

    def submit_venue_b(self, market_id: int, price: float) -> None:
        self._put((Venue.LIGHTER, market_id, price))

    def submit_discovery(self, market_ids: Iterable[int]) -> None:
        """Lighter 신규 마켓 발견 → 큐를 거쳐 매핑 테이블에 추가"""
        self._put((DISCOVERY, list(market_ids), None))

    def _put(self, item: tuple) -> None:
        try:
            self.queue.put_nowait(item)
        except asyncio.QueueFull:
            # drop-oldest (발견 이벤트는 버리지 않고 바로 적용)
            oldest = self.queue.get_nowait()
            self.queue.put_nowait(item)
            if oldest[0] == DISCOVERY:
                self.process(oldest)
                return
            self.dropped_count += 1
            if self.integrity_logger:
                self.integrity_logger.record_queue_drop()
            if self.dropped_count % 1000 == 1:
                logger.warning(f"[Engine] 큐 포화, 오래된 이벤트 버림 (누적 {self.dropped_count})")

    # ── 처리 루프 ──

    async def run(self) -> None:
        """큐 소비 루프"""
        while True:
            item = await self.queue.get()
            try:
                self.process(item)
            except Exception:
                logger.error(f"[Engine] 이벤트 처리 실패: {item}", exc_info=True)

    def drain(self) -> int:
        """큐에 쌓인 이벤트를 모두 즉시 처리, 처리 수 반환"""
        processed = 0
        while not self.queue.empty():
            self.process(self.queue.get_nowait())
            processed += 1
        return processed

    def process(self, item: tuple) -> SpreadObservation | None:
        """native id → InstrumentKey 변환 후 페어링. 매핑 없는 종목은 무시"""
        venue, native_id, price = item
        if venue == DISCOVERY:
            self.apply_discovery(native_id)
            return None
        if venue == Venue.HYPERLIQUID:
            self.known_venue_a_codes.add(native_id)
            mapping = self.table.by_venue_a_code(native_id)
            if mapping is None:
                return None
            return self.pairing.on_venue_a_price(mapping.instrument_key, price)
        mapping = self.table.by_venue_b_market(native_id)
        if mapping is None:
            return None
        return self.pairing.on_venue_b_price(mapping.instrument_key, price)

    def apply_discovery(self, market_ids: Iterable[int]) -> list[InstrumentMapping]:
        """Hyperliquid에서 본 코인과 짝이 맞는 신규 마켓만 추가 (추가 전용)"""
        added = self.table.discover(market_ids, self.known_venue_a_codes)
        if added and self.tracked_keys:
            self.set_tracked(self.tracked_keys)
        return added

    # ── 구독자 ──

    def _persist_observation(self, observation: SpreadObservation) -> None:
        self._persist(RecordKind.PRICE_UPDATE, observation.to_record())

    def _update_latest(self, observation: SpreadObservation) -> None:
        self.latest_observations[observation.instrument_key] = observation

    def _persist(self, kind: RecordKind, record: dict) -> None:
        """저장 실패는 로깅만 (메모리 상태에 영향 없음)"""
        if self.store is None:
            return
        try:
            self.store.append(kind, record)
        except Exception as e:
            logger.error(f"[Engine] 저장 실패 ({kind.value}): {e}")
            if self.integrity_logger:
                self.integrity_logger.record_store_failure(kind.value, str(e))

    # ── 집계 / 순위 ──

    def flush_completed(self, now: float | None = None) -> list[BucketSummary]:
        """완료 버킷 요약 → 저장 + 구독자 통지"""
        now = self.clock() if now is None else now
        summaries = self.aggregator.flush_completed(now)
        for summary in summaries:
            self._persist(RecordKind.AGGREGATED_BUCKET, summary.to_record())
            for listener in self._summary_listeners:
                try:
                    listener(summary)
                except Exception:
                    logger.error("[Engine] 버킷 요약 구독자 실패", exc_info=True)
        return summaries

    async def run_aggregation(self) -> None:
        """aggregation_check_interval 주기로 완료 버킷 플러시"""
        while True:
            await asyncio.sleep(self.config.aggregation_check_interval)
            try:
                self.flush_completed()
            except Exception as e:
                logger.error(f"[Engine] 버킷 플러시 실패: {e}")

    def current_bucket_summary(self, instrument_key: str,
                               now: float | None = None) -> BucketSummary | None:
        now = self.clock() if now is None else now
        return self.aggregator.current_summary(instrument_key, now)

    def rank(self) -> list[Opportunity]:
        return self.ranker.rank(self.history)

    # ── 연결 상태 ──

    @property
    def health(self) -> HealthStatus:
        return compute_health(self.connection_states)

    def on_connection_event(self, event: ConnectionEvent) -> None:
        """피드 상태 변경 → 시스템 상태 재계산 및 통지"""
        previous = self.health
        self.connection_states[event.venue] = event.state
        self.exhausted[event.venue] = event.exhausted
        health = self.health
        if health != previous:
            logger.info(f"[Engine] 시스템 상태 {previous.value} → {health.value}")
        if event.exhausted:
            logger.error(f"[Engine] {event.venue.value} 재연결 포기, 수동 connect 필요")
        for listener in self._connection_listeners:
            try:
                listener(event, health)
            except Exception:
                logger.error("[Engine] 연결 상태 구독자 실패", exc_info=True)

    def stats(self) -> dict:
        return {
            "instruments": len(self.table),
            "table_version": self.table.version,
            "observations": self.pairing.emitted_count,
            "stale_rejections": self.pairing.stale_count,
            "late_observations": self.aggregator.late_count,
            "open_buckets": self.aggregator.open_bucket_count(),
            "history_size": self.history.total_size(),
            "queue_depth": self.queue.qsize(),
            "queue_drops": self.dropped_count,
            "health": self.health.value,
        }
