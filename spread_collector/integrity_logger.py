"""데이터 무결성 로깅 모듈 - 재연결, 파싱 실패, 큐 드롭, 저장 실패, 플러시 통계"""

from __future__ import annotations

import json
import logging
import time
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


class IntegrityLogger:
    """데이터 무결성 로깅"""

    MAX_EVENT_BUFFER = 10000  # 이벤트 기록 최대 보관 수

    def __init__(self, log_dir: Path | str):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._reconnects: list[dict] = []
        self._parse_errors: list[dict] = []
        self._store_failures: list[dict] = []
        self._flush_stats: list[dict] = []
        self._message_counts: dict[str, int] = defaultdict(int)
        self._queue_drops = 0
        self._daily = defaultdict(int)

    def _append_bounded(self, events: list[dict], event: dict) -> list[dict]:
        if len(events) >= self.MAX_EVENT_BUFFER:
            events = events[-self.MAX_EVENT_BUFFER // 2:]
        events.append(event)
        return events

    def record_reconnect(self, venue: str, reason: str,
                         timestamp: float | None = None) -> None:
        """연결 끊김/재연결 이벤트 기록"""
        self._reconnects = self._append_bounded(self._reconnects, {
            "timestamp": timestamp or time.time(),
            "venue": venue,
            "reason": reason,
        })
        self._daily["reconnects"] += 1

    def record_parse_error(self, venue: str, reason: str) -> None:
        """버려진 메시지 기록"""
        self._parse_errors = self._append_bounded(self._parse_errors, {
            "timestamp": time.time(),
            "venue": venue,
            "reason": reason,
        })
        self._daily["parse_errors"] += 1

    def record_queue_drop(self, count: int = 1) -> None:
        """큐 포화로 버린 이벤트 수"""
        self._queue_drops += count
        self._daily["queue_drops"] += count

    def record_store_failure(self, kind: str, reason: str) -> None:
        """저장소 append 실패 기록"""
        self._store_failures = self._append_bounded(self._store_failures, {
            "timestamp": time.time(),
            "kind": kind,
            "reason": reason,
        })
        self._daily["store_failures"] += 1
        logger.warning(f"[저장 실패] {kind}: {reason}")

    def record_flush(self, symbol: str, kind: str, record_count: int,
                     file_size: int, time_range: tuple[float, float]) -> None:
        """플러시 통계 기록"""
        self._flush_stats.append({
            "symbol": symbol,
            "kind": kind,
            "record_count": record_count,
            "file_size": file_size,
            "time_start": time_range[0],
            "time_end": time_range[1],
        })
        self._daily["flushes"] += 1
        self._daily["records"] += record_count

    def increment_message_count(self, venue: str) -> None:
        """메시지 수신 카운트 증가"""
        self._message_counts[venue] += 1

    def get_periodic_stats(self) -> dict:
        """현재 주기 통계 반환"""
        now = datetime.now(timezone.utc)
        return {
            "timestamp": now.isoformat(),
            "reconnects": list(self._reconnects),
            "reconnect_count": len(self._reconnects),
            "parse_error_count": len(self._parse_errors),
            "store_failure_count": len(self._store_failures),
            "queue_drops": self._queue_drops,
            "flush_stats": list(self._flush_stats),
            "message_counts": dict(self._message_counts),
        }

    async def write_periodic_log(self) -> Path:
        """주기적 통계 JSON 로그 작성"""
        stats = self.get_periodic_stats()
        now = datetime.now(timezone.utc)
        log_file = self.log_dir / f"stats_{now.strftime('%Y%m%d_%H')}.json"
        with open(log_file, "w") as f:
            json.dump(stats, f, indent=2, default=str)
        # 주기 통계 리셋
        self._reconnects.clear()
        self._parse_errors.clear()
        self._store_failures.clear()
        self._flush_stats.clear()
        self._message_counts.clear()
        self._queue_drops = 0
        logger.info(f"[로그] {log_file}")
        return log_file

    async def write_daily_summary(self) -> Path:
        """일별 요약 리포트 생성 (일별 카운터 리셋)"""
        now = datetime.now(timezone.utc)
        summary = {
            "date": now.strftime("%Y-%m-%d"),
            "total_reconnects": self._daily["reconnects"],
            "total_parse_errors": self._daily["parse_errors"],
            "total_queue_drops": self._daily["queue_drops"],
            "total_store_failures": self._daily["store_failures"],
            "total_flushes": self._daily["flushes"],
            "total_records": self._daily["records"],
        }
        log_file = self.log_dir / f"daily_{now.strftime('%Y%m%d')}.json"
        with open(log_file, "w") as f:
            json.dump(summary, f, indent=2, default=str)
        self._daily.clear()
        return log_file
