"""메모리 버퍼 모듈 - 레코드 종류별, 심볼별 분리 저장 및 플러시"""

from __future__ import annotations

import sys
import logging
from collections import defaultdict

from spread_collector.models import RecordKind

logger = logging.getLogger(__name__)


class DataBuffer:
    """메모리 버퍼 - 심볼별 price_update / aggregated_bucket 레코드 저장.

    이벤트 루프 안의 동기 메서드로만 접근하므로 별도 락이 필요 없다.
    """

    def __init__(self, max_memory_mb: int = 500):
        self.max_memory_bytes = max_memory_mb * 1024 * 1024
        self._data: dict[RecordKind, dict[str, list[dict]]] = {
            kind: defaultdict(list) for kind in RecordKind
        }

    def add(self, kind: RecordKind, symbol: str, record: dict) -> None:
        self._data[RecordKind(kind)][symbol].append(record)

    def pending(self, kind: RecordKind, symbol: str | None = None) -> list[dict]:
        """아직 플러시되지 않은 레코드 (복사본)"""
        store = self._data[RecordKind(kind)]
        if symbol is not None:
            return list(store.get(symbol, []))
        return [r for records in store.values() for r in records]

    def flush(self) -> dict[RecordKind, dict[str, list[dict]]]:
        """모든 데이터를 반환하고 버퍼 초기화"""
        result = {kind: dict(store) for kind, store in self._data.items()}
        self._data = {kind: defaultdict(list) for kind in RecordKind}
        return result

    def record_count(self) -> int:
        return sum(len(r) for store in self._data.values() for r in store.values())

    def estimate_memory_usage(self) -> int:
        """현재 메모리 사용량 추정 (바이트)"""
        total = 0
        for store in self._data.values():
            for records in store.values():
                total += sys.getsizeof(records)
                for r in records:
                    total += sys.getsizeof(r)
        return total

    def needs_force_flush(self) -> bool:
        """강제 플러시 필요 여부"""
        return self.estimate_memory_usage() >= self.max_memory_bytes
