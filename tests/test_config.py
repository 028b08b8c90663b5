"""Config YAML 라운드트립 테스트
Feature: spread-collector, Property 1: 설정 YAML 라운드트립
"""

import tempfile
import os

import pytest
from hypothesis import given, strategies as st, settings

from spread_collector.config import Config


# ── Hypothesis 전략 ──

key_st = st.from_regex(r"[A-Z]{2,8}-USD", fullmatch=True)

config_st = st.builds(
    Config,
    instruments=st.lists(key_st, max_size=5),
    excluded_instruments=st.lists(key_st, max_size=3),
    reconnect_base_delay=st.integers(min_value=0, max_value=60).map(float),
    max_reconnect_attempts=st.integers(min_value=0, max_value=20),
    queue_maxsize=st.integers(min_value=1, max_value=100000),
    bucket_width=st.sampled_from([60, 300, 900, 3600]),
    ring_capacity=st.integers(min_value=1, max_value=500),
    min_rank_samples=st.integers(min_value=1, max_value=50),
    rank_top_n=st.integers(min_value=1, max_value=50),
    max_price_age=st.integers(min_value=0, max_value=600).map(float),
    retention_hours=st.integers(min_value=1, max_value=168),
    retention_days=st.integers(min_value=1, max_value=90),
    flush_interval=st.integers(min_value=10, max_value=86400),
    max_buffer_mb=st.integers(min_value=50, max_value=2000),
    data_dir=st.just("./data"),
    log_dir=st.just("./logs"),
    telegram_bot_token=st.from_regex(r"[a-zA-Z0-9:_\-]{0,50}", fullmatch=True),
    telegram_chat_id=st.from_regex(r"[0-9\-]{0,20}", fullmatch=True),
)


# ── Property 1: Config YAML 라운드트립 ──

class TestConfigYamlRoundtrip:

    @given(config=config_st)
    @settings(max_examples=100)
    def test_yaml_roundtrip(self, config: Config):
        """YAML 저장 후 다시 읽으면 동일한 Config"""
        with tempfile.NamedTemporaryFile(suffix=".yaml", delete=False, mode="w") as f:
            tmp_path = f.name

        try:
            config.to_yaml(tmp_path)
            restored = Config.from_yaml(tmp_path)
            assert config == restored, f"Roundtrip failed: {config} != {restored}"
        finally:
            os.unlink(tmp_path)


# ── 단위 테스트 ──

class TestConfigUnit:

    def test_default_config(self):
        c = Config()
        assert c.instruments == []
        assert c.excluded_instruments == ["MKR-USD"]
        assert c.reconnect_base_delay == 3.0
        assert c.max_reconnect_attempts == 5
        assert c.bucket_width == 300
        assert c.ring_capacity == 30
        assert c.min_rank_samples == 5
        assert c.rank_top_n == 10
        assert c.max_price_age == 0.0

    def test_from_yaml_missing_file(self):
        c = Config.from_yaml("/nonexistent/path.yaml")
        assert c == Config()

    def test_from_yaml_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert Config.from_yaml(str(path)) == Config()

    def test_from_yaml_ignores_unknown_keys(self):
        with tempfile.NamedTemporaryFile(suffix=".yaml", delete=False, mode="w") as f:
            f.write("instruments: [BTC-USD]\nunknown_key: 42\n")
            tmp_path = f.name
        try:
            c = Config.from_yaml(tmp_path)
            assert c.instruments == ["BTC-USD"]
        finally:
            os.unlink(tmp_path)

    def test_to_dict(self):
        d = Config(bucket_width=60).to_dict()
        assert d["bucket_width"] == 60
        assert "venue_a_ws_url" in d
