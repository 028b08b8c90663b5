"""시스템 설정 모듈 - config.yaml 로드 및 Config 데이터클래스"""

from dataclasses import dataclass, field, asdict
from pathlib import Path

import yaml


@dataclass
class Config:
    """시스템 설정 (config.yaml에서 로드)"""
    instruments: list[str] = field(default_factory=list)  # 비어있으면 전체 매핑
    excluded_instruments: list[str] = field(default_factory=lambda: ["MKR-USD"])
    venue_a_ws_url: str = "wss://api.hyperliquid.xyz/ws"
    venue_b_ws_url: str = "wss://mainnet.zklighter.elliot.ai/stream"
    reconnect_base_delay: float = 3.0
    max_reconnect_attempts: int = 5
    ws_open_timeout: float = 10.0
    ws_ping_interval: float = 20.0
    queue_maxsize: int = 10000
    bucket_width: int = 300
    aggregation_check_interval: int = 10
    ring_capacity: int = 30
    min_rank_samples: int = 5
    rank_top_n: int = 10
    max_price_age: float = 0.0   # 0 = 페어링 시 staleness 검사 안 함
    retention_hours: int = 24
    retention_days: int = 7
    sweep_interval: int = 3600
    flush_interval: int = 300
    max_buffer_mb: int = 500
    data_dir: str = "./data"
    log_dir: str = "./logs"
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    report_interval: int = 3600

    @classmethod
    def from_yaml(cls, path: str) -> "Config":
        """YAML 파일에서 Config 객체 생성"""
        p = Path(path)
        if not p.exists():
            return cls()
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def to_yaml(self, path: str) -> None:
        """Config 객체를 YAML 파일로 저장"""
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(asdict(self), f, default_flow_style=False, allow_unicode=True)

    def to_dict(self) -> dict:
        """Config를 딕셔너리로 변환"""
        return asdict(self)
