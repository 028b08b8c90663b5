"""차익 기회 순위 모듈 - 최근 이력 기반 평균 스프레드 정렬"""

from __future__ import annotations

from typing import TYPE_CHECKING

from spread_collector.models import Opportunity

if TYPE_CHECKING:
    from spread_collector.history import RecentHistoryRing


class OpportunityRanker:
    """평균 스프레드(%) 절대값 내림차순 상위 N개"""

    def __init__(self, min_samples: int = 5, top_n: int = 10):
        self.min_samples = min_samples
        self.top_n = top_n

    def rank(self, history: RecentHistoryRing) -> list[Opportunity]:
        """샘플 수가 min_samples 미만인 종목은 제외 (오류 아님)"""
        opportunities = []
        for symbol, observations in history.items():
            if len(observations) < self.min_samples:
                continue
            n = len(observations)
            spreads = [o.spread for o in observations]
            abs_spreads = [abs(s) for s in spreads]
            avg_pct = sum(o.spread_pct for o in observations) / n
            opportunities.append(Opportunity(
                instrument_key=symbol,
                avg_spread=sum(spreads) / n,
                # 방향과 무관하게 큰 스프레드가 같은 순위
                avg_spread_pct=abs(avg_pct),
                max_abs_spread=max(abs_spreads),
                min_abs_spread=min(abs_spreads),
                count=n,
                current_price=observations[-1].price_a,
            ))

        opportunities.sort(key=lambda o: (-o.avg_spread_pct, o.instrument_key))
        return opportunities[:self.top_n]
