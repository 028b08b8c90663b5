"""시간 버킷 집계 모듈 - 고빈도 관측치를 고정 폭 버킷 요약으로 변환"""

from __future__ import annotations

import logging
import math
from collections import defaultdict

from spread_collector.models import BucketSummary, SpreadObservation

logger = logging.getLogger(__name__)

DEFAULT_BUCKET_WIDTH = 300  # 5분


def bucket_start_for(timestamp: float, width: float) -> float:
    """floor(t / width) * width"""
    return math.floor(timestamp / width) * width


class BucketAggregator:
    """종목별 시간 버킷 집계.

    bucket_start < floor(now / width) * width 인 버킷은 완료된 것으로 보고
    flush_completed()에서 요약 후 제거한다. 이미 플러시된 구간에 늦게 도착한
    관측치는 버킷을 다시 열지 않고 버린다.
    """

    def __init__(self, width: float = DEFAULT_BUCKET_WIDTH):
        if width <= 0:
            raise ValueError(f"bucket width must be positive: {width}")
        self.width = width
        self._buckets: dict[str, dict[float, list[SpreadObservation]]] = defaultdict(dict)
        self._closed_before: float = -math.inf  # 이 시각 이전 버킷은 플러시 완료
        self.late_count = 0

    def bucket_start(self, timestamp: float) -> float:
        return bucket_start_for(timestamp, self.width)

    def add(self, observation: SpreadObservation) -> bool:
        """관측치를 해당 버킷에 추가. 이미 닫힌 버킷이면 False"""
        start = self.bucket_start(observation.observed_at)
        if start < self._closed_before:
            self.late_count += 1
            logger.debug(
                f"[Aggregator] {observation.instrument_key} 닫힌 버킷 {start} 지연 도착, 버림"
            )
            return False
        self._buckets[observation.instrument_key].setdefault(start, []).append(observation)
        return True

    def flush_completed(self, now: float) -> list[BucketSummary]:
        """완료된 버킷 요약 반환 후 제거 (빈 버킷은 요약 없이 제거)"""
        current = self.bucket_start(now)
        self._closed_before = max(self._closed_before, current)
        results = []

        for symbol in list(self._buckets):
            symbol_buckets = self._buckets[symbol]
            for start in sorted(symbol_buckets):
                if start >= current:
                    continue
                summary = self.summarize(symbol, start, symbol_buckets.pop(start))
                if summary:
                    results.append(summary)
            if not symbol_buckets:
                del self._buckets[symbol]

        if results:
            logger.info(f"[Aggregator] 완료 버킷 {len(results)}개 요약")
        return results

    def current_summary(self, instrument_key: str, now: float) -> BucketSummary | None:
        """진행 중 버킷의 중간 요약 (실시간 표시용, 버킷은 유지)"""
        start = self.bucket_start(now)
        observations = self._buckets.get(instrument_key, {}).get(start)
        if not observations:
            return None
        return self.summarize(instrument_key, start, observations)

    def clear_older_than(self, retention_hours: float, now: float) -> int:
        """보관 기간보다 오래된 버킷 강제 제거 (메모리 안전장치), 제거 수 반환"""
        cutoff = self.bucket_start(now - retention_hours * 3600)
        removed = 0
        for symbol in list(self._buckets):
            symbol_buckets = self._buckets[symbol]
            for start in [s for s in symbol_buckets if s < cutoff]:
                del symbol_buckets[start]
                removed += 1
            if not symbol_buckets:
                del self._buckets[symbol]
        if removed:
            logger.warning(f"[Aggregator] 보관 기간 초과 버킷 {removed}개 제거")
        return removed

    def open_bucket_count(self) -> int:
        return sum(len(b) for b in self._buckets.values())

    def open_buckets(self, instrument_key: str) -> dict[float, list[SpreadObservation]]:
        return dict(self._buckets.get(instrument_key, {}))

    @staticmethod
    def summarize(instrument_key: str, bucket_start: float,
                  observations: list[SpreadObservation]) -> BucketSummary | None:
        """산술 평균 (가격/스프레드/퍼센트) + 부호 있는 최소/최대 스프레드"""
        valid = [
            o for o in observations
            if all(math.isfinite(v) for v in (o.price_a, o.price_b, o.spread, o.spread_pct))
        ]
        if not valid:
            return None
        n = len(valid)
        spreads = [o.spread for o in valid]
        return BucketSummary(
            instrument_key=instrument_key,
            bucket_start=bucket_start,
            avg_price_a=sum(o.price_a for o in valid) / n,
            avg_price_b=sum(o.price_b for o in valid) / n,
            avg_spread=sum(spreads) / n,
            avg_spread_pct=sum(o.spread_pct for o in valid) / n,
            min_spread=min(spreads),
            max_spread=max(spreads),
            count=n,
        )
