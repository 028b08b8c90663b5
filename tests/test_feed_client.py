"""FeedClient 테스트
Feature: spread-collector
Property 5: 선형 백오프
Property 6: 재연결 한도 및 시도 횟수 리셋
Property 7: 잘못된 가격 값은 해당 값만 버림
"""

import asyncio
import json
from unittest.mock import MagicMock, patch

import pytest
from hypothesis import given, strategies as st, settings

from spread_collector.config import Config
from spread_collector.feed_client import FeedClient
from spread_collector.hyperliquid_client import HyperliquidClient
from spread_collector.models import ConnectionState


class FakeWebSocket:
    """websockets.connect() 대체: 정해진 메시지를 보낸 뒤 정상 종료"""

    def __init__(self, messages=()):
        self.messages = list(messages)
        self.sent = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def send(self, msg):
        self.sent.append(msg)

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for m in self.messages:
            yield m


class HangingConnect:
    """연결 단계에서 영원히 대기 (Connecting 상태 유지)"""

    async def __aenter__(self):
        await asyncio.Event().wait()

    async def __aexit__(self, *exc):
        return False


def make_client(max_attempts=3, base_delay=0.0, **kwargs):
    config = Config(reconnect_base_delay=base_delay, max_reconnect_attempts=max_attempts)
    prices = []
    events = []
    client = HyperliquidClient(
        config,
        on_price=lambda coin, price: prices.append((coin, price)),
        on_state_change=events.append,
        **kwargs,
    )
    return client, prices, events


def all_mids(mids):
    return json.dumps({"channel": "allMids", "data": {"mids": mids}})


# ── Property 5: 선형 백오프 ──

class TestLinearBackoff:

    @given(
        attempt=st.integers(min_value=1, max_value=100),
        base=st.floats(min_value=0.0, max_value=60.0),
    )
    @settings(max_examples=200)
    def test_delay_is_base_times_attempt(self, attempt, base):
        assert FeedClient.compute_reconnect_delay(attempt, base) == base * attempt

    def test_default_base(self):
        assert FeedClient.compute_reconnect_delay(1) == 3.0
        assert FeedClient.compute_reconnect_delay(5) == 15.0

    @given(max_attempts=st.integers(min_value=0, max_value=20))
    @settings(max_examples=50)
    def test_next_delay_sequence(self, max_attempts):
        """max_attempts번 지연을 돌려준 뒤 None"""
        client, _, _ = make_client(max_attempts=max_attempts, base_delay=3.0)
        delays = [client.next_reconnect_delay() for _ in range(max_attempts)]
        assert delays == [3.0 * (i + 1) for i in range(max_attempts)]
        assert client.next_reconnect_delay() is None
        assert client.next_reconnect_delay() is None


# ── Property 6: 재연결 한도 및 시도 횟수 리셋 ──

class TestReconnectStateMachine:

    @given(max_attempts=st.integers(min_value=0, max_value=6))
    @settings(max_examples=20, deadline=None)
    def test_gives_up_after_max_failures(self, max_attempts):
        """연속 실패 max_attempts회 이후 자동 재연결 없음"""
        client, _, events = make_client(max_attempts=max_attempts)
        with patch("spread_collector.feed_client.websockets.connect",
                   side_effect=OSError("refused")) as mock_connect:
            asyncio.run(client.run())

        assert mock_connect.call_count == max_attempts + 1
        assert client.exhausted is True
        assert client.state == ConnectionState.DISCONNECTED
        assert events[-1].exhausted is True
        assert events[-1].state == ConnectionState.DISCONNECTED
        assert all(not e.exhausted for e in events[:-1])

    def test_attempts_reset_after_connected(self):
        """Connected 전이 시 시도 횟수 0으로 리셋"""
        client, prices, events = make_client(max_attempts=3)
        calls = []

        def fake_connect(*args, **kwargs):
            calls.append(client.reconnect_attempts)
            if len(calls) == 3:
                return FakeWebSocket([all_mids({"BTC": "50000"})])
            raise OSError("refused")

        with patch("spread_collector.feed_client.websockets.connect", side_effect=fake_connect):
            asyncio.run(client.run())

        # 실패 2회 → 연결 성공(리셋) → 정상 종료 후 다시 3회 실패로 포기
        assert calls == [0, 1, 2, 1, 2, 3]
        assert prices == [("BTC", 50000.0)]
        assert ConnectionState.CONNECTED in [e.state for e in events]
        assert client.exhausted is True

    def test_resubscribes_on_every_connect(self):
        client, _, _ = make_client(max_attempts=1)
        sockets = [FakeWebSocket(), FakeWebSocket()]
        with patch("spread_collector.feed_client.websockets.connect",
                   side_effect=sockets + [OSError("refused")]):
            asyncio.run(client.run())

        expected = json.dumps(client.subscription_message())
        assert sockets[0].sent == [expected]
        assert sockets[1].sent == [expected]

    def test_state_sequence(self):
        client, _, events = make_client(max_attempts=0)
        with patch("spread_collector.feed_client.websockets.connect",
                   return_value=FakeWebSocket()):
            asyncio.run(client.run())

        assert [e.state for e in events] == [
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.DISCONNECTED,
        ]

    def test_reconnect_recorded(self):
        il = MagicMock()
        client, _, _ = make_client(max_attempts=1, integrity_logger=il)
        with patch("spread_collector.feed_client.websockets.connect",
                   side_effect=OSError("refused")):
            asyncio.run(client.run())
        assert il.record_reconnect.call_count == 2
        il.record_reconnect.assert_called_with("hyperliquid", "refused")


# ── connect / disconnect ──

class TestConnectDisconnect:

    def test_disconnect_during_backoff(self):
        """백오프 대기 중 disconnect → 대기 태스크 취소, 추가 연결 없음"""
        client, _, events = make_client(max_attempts=5, base_delay=100.0)

        async def scenario():
            with patch("spread_collector.feed_client.websockets.connect",
                       side_effect=OSError("refused")) as mock_connect:
                task = client.connect()
                for _ in range(5):
                    await asyncio.sleep(0)
                assert client.reconnect_attempts == 1
                await client.disconnect()
                assert task.cancelled()
                assert mock_connect.call_count == 1

        asyncio.run(scenario())
        assert client.state == ConnectionState.DISCONNECTED
        assert client._task is None

    def test_disconnect_while_connecting(self):
        """Connecting 상태에서 disconnect → 진행 중 연결 시도 중단"""
        client, _, events = make_client()

        async def scenario():
            with patch("spread_collector.feed_client.websockets.connect",
                       return_value=HangingConnect()):
                task = client.connect()
                for _ in range(3):
                    await asyncio.sleep(0)
                assert client.state == ConnectionState.CONNECTING
                await client.disconnect()
                assert task.cancelled()

        asyncio.run(scenario())
        assert client.state == ConnectionState.DISCONNECTED
        assert events[-1].reason == "disconnect"

    def test_disconnect_idempotent(self):
        client, _, events = make_client()

        async def scenario():
            await client.disconnect()
            await client.disconnect()

        asyncio.run(scenario())
        assert client.state == ConnectionState.DISCONNECTED
        assert events == []

    def test_connect_returns_live_task(self):
        client, _, _ = make_client(base_delay=100.0)

        async def scenario():
            with patch("spread_collector.feed_client.websockets.connect",
                       side_effect=OSError("refused")):
                first = client.connect()
                second = client.connect()
                assert first is second
                await client.disconnect()

        asyncio.run(scenario())

    def test_connect_after_exhausted_clears_flag(self):
        client, _, _ = make_client(max_attempts=0)

        async def scenario():
            with patch("spread_collector.feed_client.websockets.connect",
                       side_effect=OSError("refused")):
                await client.connect()
                assert client.exhausted is True
                task = client.connect()
                assert client.exhausted is False
                await task
                assert client.exhausted is True

        asyncio.run(scenario())


# ── Property 7: 잘못된 가격 값은 해당 값만 버림 ──

class TestPriceParsing:

    @given(value=st.one_of(
        st.text(max_size=20),
        st.floats(allow_nan=True, allow_infinity=True),
        st.integers(),
        st.none(),
        st.lists(st.integers(), max_size=2),
    ))
    @settings(max_examples=300)
    def test_parse_price_never_raises(self, value):
        price = FeedClient.parse_price(value)
        assert price is None or (price > 0 and price != float("inf"))

    def test_parse_price_values(self):
        assert FeedClient.parse_price("50000.5") == 50000.5
        assert FeedClient.parse_price(42) == 42.0
        assert FeedClient.parse_price("abc") is None
        assert FeedClient.parse_price("NaN") is None
        assert FeedClient.parse_price("inf") is None
        assert FeedClient.parse_price("0") is None
        assert FeedClient.parse_price("-1") is None

    def test_iter_valid_drops_only_bad(self):
        pairs = [("BTC", "50000"), ("ETH", "bad"), ("SOL", "150.5"), ("DOGE", None)]
        assert FeedClient.iter_valid(pairs) == [("BTC", 50000.0), ("SOL", 150.5)]


# ── 메시지 처리 ──

class TestMessageHandling:

    def test_malformed_json_dropped(self):
        il = MagicMock()
        client, prices, events = make_client(integrity_logger=il)
        client._handle_message("{not json")
        client._handle_message("[1, 2, 3]")
        assert prices == []
        assert events == []
        assert il.record_parse_error.call_count == 2

    def test_unknown_envelope_dropped(self):
        il = MagicMock()
        client, prices, _ = make_client(integrity_logger=il)
        client._handle_message(json.dumps({"channel": "somethingElse"}))
        assert prices == []
        il.record_parse_error.assert_called_once()
        il.increment_message_count.assert_called_once_with("hyperliquid")

    def test_filter_applied(self):
        client, prices, _ = make_client()
        client.set_tracked({"BTC"})
        client._handle_message(all_mids({"BTC": "50000", "ETH": "3000"}))
        assert prices == [("BTC", 50000.0)]

    def test_empty_filter_accepts_all(self):
        client, prices, _ = make_client()
        client.set_tracked(set())
        client._handle_message(all_mids({"BTC": "50000", "ETH": "3000"}))
        assert sorted(prices) == [("BTC", 50000.0), ("ETH", 3000.0)]
