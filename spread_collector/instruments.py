"""종목 매핑 테이블 모듈 - InstrumentKey ↔ Hyperliquid 코인 / Lighter market id"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

logger = logging.getLogger(__name__)


# Lighter market id → 코인 (1000PEPE 등 1000X 마켓은 X로 정규화)
VENUE_B_MARKET_COINS: dict[int, str] = {
    0: "ETH", 1: "BTC", 2: "SOL", 3: "DOGE", 4: "PEPE", 5: "WIF",
    6: "WLD", 7: "XRP", 8: "LINK", 9: "AVAX", 10: "NEAR", 11: "DOT",
    12: "TON", 13: "TAO", 14: "POL", 15: "TRUMP", 16: "SUI", 17: "SHIB",
    18: "BONK", 19: "FLOKI", 20: "BERA", 21: "FARTCOIN", 22: "AI16Z", 23: "POPCAT",
    24: "HYPE", 25: "BNB", 26: "JUP", 27: "AAVE", 28: "MKR", 29: "ENA",
    30: "UNI", 31: "APT", 32: "SEI", 33: "KAITO", 34: "IP", 35: "LTC",
    36: "CRV", 37: "PENDLE", 38: "ONDO", 39: "ADA", 40: "S", 41: "VIRTUAL",
    42: "SPX", 43: "TRX", 44: "SYRUP", 45: "PUMP", 46: "LDO", 47: "PENGU",
    48: "PAXG", 49: "EIGEN", 50: "ARB", 51: "RESOLV", 52: "GRASS", 53: "ZORA",
    54: "LAUNCHCOIN", 55: "OP", 56: "ZK", 57: "PROVE", 58: "BCH", 59: "HBAR",
    60: "ZRO", 61: "GMX", 62: "DYDX", 63: "MNT", 64: "ETHFI", 65: "AERO",
    66: "USELESS", 67: "TIA", 68: "MORPHO", 69: "VVV", 70: "YZY", 71: "XPL",
    72: "WLFI", 73: "CRO", 74: "NMR", 75: "DOLO", 76: "LINEA", 77: "XMR",
    78: "PYTH", 79: "SKY", 80: "MYX", 81: "TOSHI", 82: "AVNT", 83: "ASTER",
    84: "0G", 85: "STBL", 86: "APEX", 87: "FF",
}


def instrument_key_for(coin: str) -> str:
    """코인 코드 → 정규 InstrumentKey ("<BASE>-USD")"""
    return f"{coin.upper()}-USD"


@dataclass(frozen=True)
class InstrumentMapping:
    instrument_key: str
    venue_a_code: str            # Hyperliquid 코인
    venue_b_market_id: int       # Lighter market id


class InstrumentTable:
    """단일 소유 매핑 테이블 (순서 유지, 추가 전용, 버전 관리)"""

    def __init__(self, mappings: Iterable[InstrumentMapping] = (),
                 excluded: Iterable[str] = (),
                 market_coins: dict[int, str] | None = None):
        self.excluded = set(excluded)
        self.market_coins = dict(VENUE_B_MARKET_COINS if market_coins is None else market_coins)
        self.version = 0
        self._by_key: dict[str, InstrumentMapping] = {}
        self._by_coin: dict[str, InstrumentMapping] = {}
        self._by_market: dict[int, InstrumentMapping] = {}
        for m in mappings:
            self._add(m)

    @classmethod
    def from_config(cls, instruments: Iterable[str] = (),
                    excluded: Iterable[str] = ()) -> InstrumentTable:
        """알려진 Lighter 마켓으로 초기 테이블 구성 (instruments 비어있으면 전체)"""
        wanted = set(instruments)
        excluded = set(excluded)
        mappings = []
        for market_id, coin in VENUE_B_MARKET_COINS.items():
            key = instrument_key_for(coin)
            if key in excluded:
                continue
            if wanted and key not in wanted:
                continue
            mappings.append(InstrumentMapping(key, coin, market_id))
        return cls(mappings, excluded)

    def _add(self, mapping: InstrumentMapping) -> bool:
        if mapping.instrument_key in self.excluded:
            return False
        if (mapping.instrument_key in self._by_key
                or mapping.venue_a_code in self._by_coin
                or mapping.venue_b_market_id in self._by_market):
            return False
        self._by_key[mapping.instrument_key] = mapping
        self._by_coin[mapping.venue_a_code] = mapping
        self._by_market[mapping.venue_b_market_id] = mapping
        self.version += 1
        return True

    def __contains__(self, instrument_key: str) -> bool:
        return instrument_key in self._by_key

    def __len__(self) -> int:
        return len(self._by_key)

    def __iter__(self):
        return iter(self._by_key.values())

    def keys(self) -> list[str]:
        return list(self._by_key)

    def get(self, instrument_key: str) -> InstrumentMapping | None:
        return self._by_key.get(instrument_key)

    def by_venue_a_code(self, coin: str) -> InstrumentMapping | None:
        return self._by_coin.get(coin)

    def by_venue_b_market(self, market_id: int) -> InstrumentMapping | None:
        return self._by_market.get(market_id)

    def discover(self, market_ids: Iterable[int],
                 known_venue_a_codes: Iterable[str]) -> list[InstrumentMapping]:
        """새로 관측된 Lighter 마켓을 매핑에 추가.

        코인이 알려져 있고, Hyperliquid에서 이미 본 코인이며, 제외 목록에 없고,
        아직 매핑되지 않은 market id만 추가된다. 추가된 매핑 목록 반환.
        """
        known = set(known_venue_a_codes)
        added = []
        for market_id in market_ids:
            if market_id in self._by_market:
                continue
            coin = self.market_coins.get(market_id)
            if not coin or coin not in known:
                continue
            mapping = InstrumentMapping(instrument_key_for(coin), coin, market_id)
            if self._add(mapping):
                added.append(mapping)
        if added:
            logger.info(f"[Discovery] 신규 페어 {len(added)}개 추가 (version={self.version})")
        return added

    def venue_a_filter(self, keys: Iterable[str]) -> set[str]:
        """HyperliquidClient.set_tracked 용 코인 집합"""
        return {self._by_key[k].venue_a_code for k in keys if k in self._by_key}

    def venue_b_filter(self, keys: Iterable[str]) -> dict[int, str]:
        """LighterClient.set_tracked 용 market id → InstrumentKey 맵"""
        return {
            self._by_key[k].venue_b_market_id: k
            for k in keys if k in self._by_key
        }
