"""LighterClient 테스트 - market_stats 세 가지 envelope 정규화 및 마켓 발견"""

import json

import pytest

from spread_collector.config import Config
from spread_collector.lighter_client import LighterClient
from spread_collector.models import Venue


def make_client(tracked=None):
    prices = []
    discovered = []
    client = LighterClient(
        Config(),
        on_price=lambda m, p: prices.append((m, p)),
        on_markets_discovered=discovered.append,
    )
    if tracked is not None:
        client.set_tracked(tracked)
    return client, prices, discovered


class TestEnvelopes:

    def test_all_markets_envelope(self):
        client, _, _ = make_client()
        msg = {
            "channel": "market_stats:all",
            "market_stats": {
                "0": {"market_id": 0, "mark_price": "3000.5"},
                "1": {"market_id": 1, "mark_price": "50000"},
            },
        }
        assert sorted(client.parse_message(msg)) == [(0, 3000.5), (1, 50000.0)]

    def test_single_market_channel_envelope(self):
        client, _, _ = make_client()
        msg = {"channel": "market_stats:1", "market_stats": {"market_id": 1, "mark_price": "50050"}}
        assert client.parse_message(msg) == [(1, 50050.0)]

    def test_update_type_envelope(self):
        client, _, _ = make_client()
        msg = {"type": "update/market_stats", "channel": "market_stats/all",
               "market_stats": {"market_id": "2", "mark_price": 150.25}}
        assert client.parse_message(msg) == [(2, 150.25)]

    def test_bad_readings_dropped(self):
        client, _, _ = make_client()
        msg = {
            "channel": "market_stats:all",
            "market_stats": {
                "0": {"mark_price": "NaN"},
                "x": {"mark_price": "1"},
                "1": {"mark_price": "50000"},
                "2": "not a dict",
            },
        }
        assert client.parse_message(msg) == [(1, 50000.0)]

    def test_single_market_bad_id(self):
        client, _, _ = make_client()
        msg = {"channel": "market_stats:1", "market_stats": {"market_id": None, "mark_price": "1"}}
        assert client.parse_message(msg) == []

    def test_fractional_market_id_dropped(self):
        """1.5 같은 market id는 BTC(1)로 잘리지 않고 버려짐"""
        client, prices, _ = make_client()
        msg = {"type": "update/market_stats", "market_stats": {"market_id": 1.5, "mark_price": "50000"}}
        assert client.parse_message(msg) == []
        client._handle_message(json.dumps(msg))
        assert prices == []

    def test_control_messages_ignored(self):
        client, _, _ = make_client()
        assert client.parse_message({"type": "connected"}) == []
        assert client.parse_message({"type": "subscribed", "channel": "market_stats:all"}) == []
        assert client.parse_message({"type": "ping"}) == []

    def test_unknown_envelope(self):
        client, _, _ = make_client()
        assert client.parse_message({"type": "order_book"}) is None
        assert client.parse_message({"channel": "trades:1", "market_stats": {}}) is None


class TestDiscovery:

    def test_new_markets_reported_once(self):
        client, _, discovered = make_client()
        msg = {"channel": "market_stats:all",
               "market_stats": {"5": {"mark_price": "2"}, "1": {"mark_price": "50000"}}}
        client.parse_message(msg)
        client.parse_message(msg)
        assert discovered == [[1, 5]]

        msg["market_stats"]["7"] = {"mark_price": "0.5"}
        client.parse_message(msg)
        assert discovered == [[1, 5], [7]]

    def test_invalid_price_market_still_discovered(self):
        client, _, discovered = make_client()
        client.parse_message({"channel": "market_stats:all",
                              "market_stats": {"3": {"mark_price": "bad"}}})
        assert discovered == [[3]]


class TestLighterUnit:

    def test_venue(self):
        client, _, _ = make_client()
        assert client.VENUE == Venue.LIGHTER
        assert client.build_ws_url() == "wss://mainnet.zklighter.elliot.ai/stream"
        assert client.subscription_message() == {"type": "subscribe", "channel": "market_stats/all"}

    def test_filter_by_market_id_map(self):
        client, prices, _ = make_client(tracked={1: "BTC-USD"})
        client._handle_message(json.dumps({
            "channel": "market_stats:all",
            "market_stats": {"0": {"mark_price": "3000"}, "1": {"mark_price": "50000"}},
        }))
        assert prices == [(1, 50000.0)]

    def test_parse_market_id(self):
        assert LighterClient.parse_market_id("12") == 12
        assert LighterClient.parse_market_id(3) == 3
        assert LighterClient.parse_market_id("abc") is None
        assert LighterClient.parse_market_id(None) is None
        assert LighterClient.parse_market_id(2.0) == 2
        assert LighterClient.parse_market_id(1.5) is None
        assert LighterClient.parse_market_id(True) is None
        assert LighterClient.parse_market_id(float("inf")) is None
