"""영속 저장소 모듈 - 레코드 추가, 심볼/기간 조회, JSON 내보내기"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import pandas as pd

from spread_collector.flusher import Flusher
from spread_collector.models import RecordKind

if TYPE_CHECKING:
    from spread_collector.buffer import DataBuffer

logger = logging.getLogger(__name__)

# 내보내기 문서의 필드 이름 (저장 컬럼 → 출력 키)
EXPORT_FIELDS = {
    "timestamp": "timestamp",
    "symbol": "symbol",
    "price_a": "priceA",
    "price_b": "priceB",
    "spread": "spread",
    "spread_pct": "spreadPct",
}


class PersistenceSink(Protocol):
    """엔진이 사용하는 저장소 인터페이스"""

    def append(self, kind: RecordKind, record: dict) -> None: ...

    def query(self, symbol: str, start: float, end: float,
              kind: RecordKind = RecordKind.PRICE_UPDATE) -> list[dict]: ...


class SpreadStore:
    """DataBuffer(미저장분) + data_dir의 Parquet 파일(저장분)을 합친 저장소"""

    def __init__(self, buffer: DataBuffer, data_dir: Path | str):
        self.buffer = buffer
        self.data_dir = Path(data_dir)

    def append(self, kind: RecordKind, record: dict) -> None:
        """레코드 추가 (symbol 키 필수)"""
        self.buffer.add(kind, record["symbol"], record)

    def query(self, symbol: str, start: float, end: float,
              kind: RecordKind = RecordKind.PRICE_UPDATE) -> list[dict]:
        """symbol의 start <= timestamp <= end 레코드, 시간순"""
        df = self._load(RecordKind(kind), symbol)
        if df.empty:
            return []
        df = df[(df["timestamp"] >= start) & (df["timestamp"] <= end)]
        return df.to_dict("records")

    def export_price_updates(self, start_ms: int | None = None,
                             end_ms: int | None = None) -> list[dict]:
        """전체 price_update 이력 (시간순).

        출력 timestamp와 범위 인자 start_ms / end_ms 모두 epoch ms, 양끝 포함.
        """
        df = self._load(RecordKind.PRICE_UPDATE)
        if df.empty:
            return []
        df = df[list(EXPORT_FIELDS)].rename(columns=EXPORT_FIELDS)
        df["timestamp"] = (df["timestamp"] * 1000).round().astype("int64")
        if start_ms is not None:
            df = df[df["timestamp"] >= start_ms]
        if end_ms is not None:
            df = df[df["timestamp"] <= end_ms]
        records = df.to_dict("records")
        for r in records:
            r["timestamp"] = int(r["timestamp"])
        return records

    def write_export(self, path: Path | str, start_ms: int | None = None,
                     end_ms: int | None = None) -> Path:
        """price_update 이력을 JSON 문서 하나로 저장 (범위는 epoch ms)"""
        path = Path(path)
        records = self.export_price_updates(start_ms, end_ms)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(records, f, indent=2)
        logger.info(f"[Store] 내보내기 완료: {path} ({len(records)}건)")
        return path

    def stats(self) -> dict:
        """저장 레코드 수 및 첫/마지막 시각"""
        updates = self._load(RecordKind.PRICE_UPDATE)
        aggregated = self._load(RecordKind.AGGREGATED_BUCKET)
        return {
            "total_updates": len(updates),
            "total_aggregated": len(aggregated),
            "first_timestamp": float(updates["timestamp"].min()) if len(updates) else None,
            "last_timestamp": float(updates["timestamp"].max()) if len(updates) else None,
        }

    def _load(self, kind: RecordKind, symbol: str | None = None) -> pd.DataFrame:
        """저장 파일 + 버퍼 레코드를 하나의 DataFrame으로 (timestamp 오름차순)"""
        pattern = Flusher.file_glob(symbol, kind.value) if symbol else f"*_{kind.value}_*.parquet"
        frames = []
        if self.data_dir.exists():
            for fpath in sorted(self.data_dir.glob(pattern)):
                try:
                    frames.append(pd.read_parquet(fpath))
                except Exception as e:
                    logger.error(f"[Store] 파일 읽기 실패: {fpath} {e}")
        pending = self.buffer.pending(kind, symbol)
        if pending:
            frames.append(pd.DataFrame(pending))
        frames = [f for f in frames if not f.empty]
        if not frames:
            return pd.DataFrame()
        df = pd.concat(frames, ignore_index=True)
        return df.sort_values("timestamp", kind="stable").reset_index(drop=True)
