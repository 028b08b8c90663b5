"""보관 기간 정리 모듈 - 오래된 버킷/관측치/Parquet 파일 삭제"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from spread_collector.aggregator import BucketAggregator
    from spread_collector.config import Config
    from spread_collector.history import RecentHistoryRing

logger = logging.getLogger(__name__)


class RetentionSweeper:
    """주기적 보관 기간 정리"""

    def __init__(self, config: Config, aggregator: BucketAggregator,
                 history: RecentHistoryRing):
        self.config = config
        self.aggregator = aggregator
        self.history = history

    async def run(self) -> None:
        """주기적 정리 루프"""
        while True:
            await asyncio.sleep(self.config.sweep_interval)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"[Retention] 정리 실패: {e}")

    def sweep(self, now: float | None = None) -> dict:
        """메모리 버킷, 링 버퍼, 저장 파일 정리. 항목별 삭제 수 반환"""
        now = time.time() if now is None else now
        horizon = self.config.retention_hours * 3600
        result = {
            "buckets": self.aggregator.clear_older_than(self.config.retention_hours, now),
            "observations": self.history.clear_older_than(now - horizon),
            "files": self.cleanup_old_files(now),
        }
        logger.info(
            f"[Retention] 정리 완료: 버킷 {result['buckets']}, "
            f"관측치 {result['observations']}, 파일 {result['files']}"
        )
        return result

    def cleanup_old_files(self, now: float | None = None) -> int:
        """retention_days 이상 경과한 Parquet 파일 삭제, 삭제 수 반환"""
        data_dir = Path(self.config.data_dir)
        if not data_dir.exists():
            return 0

        now = time.time() if now is None else now
        files = [
            {"path": str(p), "age_days": (now - p.stat().st_mtime) / 86400}
            for p in data_dir.glob("*.parquet")
        ]
        deleted = 0
        for path in self.get_files_to_delete(files):
            try:
                Path(path).unlink()
                deleted += 1
                logger.info(f"[Retention] 삭제: {path}")
            except OSError as e:
                logger.error(f"[Retention] 삭제 실패: {path} {e}")
        return deleted

    def get_files_to_delete(self, files: list[dict]) -> list[str]:
        """삭제 대상 파일 판별 - 테스트용 순수 함수.

        Args:
            files: 각 항목은 {"path": str, "age_days": float}

        Returns:
            삭제 대상 파일 경로 목록
        """
        return [
            f["path"]
            for f in files
            if f["age_days"] >= self.config.retention_days
        ]
