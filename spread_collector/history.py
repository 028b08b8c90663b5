"""최근 관측 이력 모듈 - 종목별 고정 용량 FIFO 링 버퍼"""

from __future__ import annotations

from collections import deque

from spread_collector.models import SpreadObservation

DEFAULT_RING_CAPACITY = 30


class RecentHistoryRing:
    """종목별 최근 N개 관측치 (순위 계산 전용, 저장하지 않음)"""

    def __init__(self, capacity: int = DEFAULT_RING_CAPACITY):
        if capacity <= 0:
            raise ValueError(f"ring capacity must be positive: {capacity}")
        self.capacity = capacity
        self._rings: dict[str, deque[SpreadObservation]] = {}

    def push(self, observation: SpreadObservation) -> None:
        """추가, 용량 초과 시 가장 오래된 항목 제거"""
        ring = self._rings.get(observation.instrument_key)
        if ring is None:
            ring = deque(maxlen=self.capacity)
            self._rings[observation.instrument_key] = ring
        ring.append(observation)

    def get(self, instrument_key: str) -> list[SpreadObservation]:
        return list(self._rings.get(instrument_key, ()))

    def items(self) -> list[tuple[str, list[SpreadObservation]]]:
        return [(k, list(v)) for k, v in self._rings.items()]

    def clear_older_than(self, cutoff: float) -> int:
        """cutoff 이전 관측치 제거, 제거 수 반환"""
        removed = 0
        for key in list(self._rings):
            ring = self._rings[key]
            while ring and ring[0].observed_at < cutoff:
                ring.popleft()
                removed += 1
            if not ring:
                del self._rings[key]
        return removed

    def __len__(self) -> int:
        return len(self._rings)

    def total_size(self) -> int:
        return sum(len(r) for r in self._rings.values())
