"""데이터 모델 정의 - 거래소별 가격 이벤트, 스프레드 관측치, 버킷 요약, 연결 상태"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum


# ── 거래소 / 연결 상태 ──

class Venue(str, Enum):
    """비교 대상 거래소 (A: 기준 거래소)"""
    HYPERLIQUID = "hyperliquid"  # venue A, 코인 코드 기준
    LIGHTER = "lighter"          # venue B, 숫자 market id 기준


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class HealthStatus(str, Enum):
    """두 피드의 연결 상태를 합친 시스템 상태"""
    OPERATIONAL = "operational"
    PARTIAL = "partial"
    DOWN = "down"


class RecordKind(str, Enum):
    """영속 저장소 레코드 종류"""
    PRICE_UPDATE = "price_update"
    AGGREGATED_BUCKET = "aggregated_bucket"


@dataclass(frozen=True)
class ConnectionEvent:
    """FeedClient 연결 상태 변경 이벤트"""
    venue: Venue
    state: ConnectionState
    exhausted: bool = False      # 재연결 한도 초과 후 포기
    reason: str = ""
    timestamp: float = field(default_factory=time.time)


def compute_health(states: dict[Venue, ConnectionState]) -> HealthStatus:
    """연결된 피드 수로 시스템 상태 판정 (2: 정상, 1: 부분, 0: 다운)"""
    connected = sum(
        1 for venue in Venue
        if states.get(venue) == ConnectionState.CONNECTED
    )
    if connected == len(Venue):
        return HealthStatus.OPERATIONAL
    if connected > 0:
        return HealthStatus.PARTIAL
    return HealthStatus.DOWN


# ── 가격 / 스프레드 ──

@dataclass(frozen=True)
class VenuePrice:
    """거래소 하나의 최신 가격 (덮어쓰기 전용, 이력 없음)"""
    venue: Venue
    instrument_key: str
    price: float
    observed_at: float           # 수신 시각 (unix timestamp)


@dataclass(frozen=True)
class SpreadObservation:
    """양쪽 가격이 모두 있을 때만 생성되는 동기화 관측치"""
    instrument_key: str
    price_a: float
    price_b: float
    spread: float                # price_b - price_a
    spread_pct: float            # spread / price_a * 100
    observed_at: float           # 페어링 시각 (unix timestamp)

    @classmethod
    def from_prices(cls, instrument_key: str, price_a: float, price_b: float,
                    observed_at: float) -> SpreadObservation:
        spread = price_b - price_a
        return cls(
            instrument_key=instrument_key,
            price_a=price_a,
            price_b=price_b,
            spread=spread,
            spread_pct=spread / price_a * 100,
            observed_at=observed_at,
        )

    def to_record(self) -> dict:
        """영속 저장소용 price_update 레코드"""
        return {
            "timestamp": self.observed_at,
            "symbol": self.instrument_key,
            "price_a": self.price_a,
            "price_b": self.price_b,
            "spread": self.spread,
            "spread_pct": self.spread_pct,
        }


# ── 집계 ──

@dataclass(frozen=True)
class BucketSummary:
    """완료된 시간 버킷 요약 (방출 후 불변)"""
    instrument_key: str
    bucket_start: float          # floor(t / width) * width
    avg_price_a: float
    avg_price_b: float
    avg_spread: float
    avg_spread_pct: float
    min_spread: float            # 부호 있는 최소값
    max_spread: float            # 부호 있는 최대값
    count: int

    def to_record(self) -> dict:
        """영속 저장소용 aggregated_bucket 레코드"""
        return {
            "timestamp": self.bucket_start,
            "symbol": self.instrument_key,
            "avg_price_a": self.avg_price_a,
            "avg_price_b": self.avg_price_b,
            "avg_spread": self.avg_spread,
            "avg_spread_pct": self.avg_spread_pct,
            "min_spread": self.min_spread,
            "max_spread": self.max_spread,
            "count": self.count,
        }


@dataclass(frozen=True)
class Opportunity:
    """최근 관측 윈도우 기준 차익 기회 순위 항목"""
    instrument_key: str
    avg_spread: float
    avg_spread_pct: float        # 평균 퍼센트의 절대값
    max_abs_spread: float
    min_abs_spread: float
    count: int
    current_price: float         # 가장 최근 venue A 가격
