"""WebSocket 피드 공통 모듈 - 연결 상태 머신, 선형 백오프 재연결, 메시지 필터링"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from typing import TYPE_CHECKING, Any, Callable, Collection, Iterable

import websockets

from spread_collector.models import ConnectionEvent, ConnectionState, Venue

if TYPE_CHECKING:
    from spread_collector.config import Config
    from spread_collector.integrity_logger import IntegrityLogger

logger = logging.getLogger(__name__)


class FeedClient:
    """거래소 스트림 하나를 담당하는 클라이언트 (거래소별 파서는 서브클래스)"""

    VENUE: Venue
    NAME = "Feed"

    def __init__(self, config: Config,
                 on_price: Callable[[Any, float], None],
                 on_state_change: Callable[[ConnectionEvent], None] | None = None,
                 integrity_logger: IntegrityLogger | None = None):
        self.config = config
        self.on_price = on_price
        self.on_state_change = on_state_change
        self.integrity_logger = integrity_logger
        self.base_delay = config.reconnect_base_delay
        self.max_reconnect_attempts = config.max_reconnect_attempts
        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self.exhausted = False
        self.tracked: Collection = set()  # 비어있으면 전체 수신
        self._task: asyncio.Task | None = None
        self._ws = None

    # ── 서브클래스 구현 ──

    def build_ws_url(self) -> str:
        raise NotImplementedError

    def subscription_message(self) -> dict:
        raise NotImplementedError

    def parse_message(self, message: dict) -> list[tuple[Any, float]] | None:
        """envelope → [(native_id, price)]. 모르는 envelope이면 None"""
        raise NotImplementedError

    # ── 공개 인터페이스 ──

    def connect(self) -> asyncio.Task:
        """수신 태스크 시작. 이미 실행 중이면 기존 태스크 반환"""
        if self._task and not self._task.done():
            return self._task
        self.reconnect_attempts = 0
        self.exhausted = False
        self._task = asyncio.create_task(self.run(), name=f"{self.VENUE.value}-feed")
        return self._task

    async def disconnect(self) -> None:
        """연결 종료 (어느 상태에서든 호출 가능, 백오프 대기/연결 시도도 취소)"""
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._ws = None
        self._set_state(ConnectionState.DISCONNECTED, reason="disconnect")

    def set_tracked(self, tracked: Collection) -> None:
        """수신 필터 변경 (빈 set/dict = 전체 수신)"""
        self.tracked = tracked
        logger.info(f"[{self.NAME}] 추적 대상 {len(tracked) or '전체'}")

    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    # ── 연결 루프 ──

    async def run(self) -> None:
        """연결 → 구독 → 수신 루프. 재연결 한도 초과 시 반환"""
        while True:
            reason = "connection closed"
            try:
                await self._connect_and_collect()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                reason = str(e) or type(e).__name__
                logger.error(f"[{self.NAME}] 연결 에러: {reason}")

            delay = self.next_reconnect_delay()
            self._set_state(ConnectionState.DISCONNECTED, reason=reason,
                            exhausted=delay is None)
            if self.integrity_logger:
                self.integrity_logger.record_reconnect(self.VENUE.value, reason)
            if delay is None:
                logger.error(f"[{self.NAME}] 최대 재연결 횟수 도달, 재연결 중단")
                return
            logger.info(
                f"[{self.NAME}] {delay}초 후 재연결 "
                f"(시도 {self.reconnect_attempts}/{self.max_reconnect_attempts})"
            )
            await asyncio.sleep(delay)

    async def _connect_and_collect(self) -> None:
        """WebSocket 연결, 구독 재요청, 메시지 수신"""
        self._set_state(ConnectionState.CONNECTING)
        async with websockets.connect(
            self.build_ws_url(),
            open_timeout=self.config.ws_open_timeout,
            ping_interval=self.config.ws_ping_interval,
        ) as ws:
            self._ws = ws
            try:
                self.reconnect_attempts = 0
                self._set_state(ConnectionState.CONNECTED)
                logger.info(f"[{self.NAME}] 연결 성공")
                # 세션 재개 없음: 매 연결마다 구독을 다시 보내고 다음 스냅샷부터 재구성
                await ws.send(json.dumps(self.subscription_message()))
                async for raw_msg in ws:
                    self._handle_message(raw_msg)
            finally:
                self._ws = None

    def next_reconnect_delay(self) -> float | None:
        """다음 재연결 대기 시간. 한도 초과 시 None"""
        if self.reconnect_attempts >= self.max_reconnect_attempts:
            return None
        self.reconnect_attempts += 1
        return self.compute_reconnect_delay(self.reconnect_attempts, self.base_delay)

    @staticmethod
    def compute_reconnect_delay(attempt: int, base_delay: float = 3.0) -> float:
        """선형 백오프 (base * attempt)"""
        return base_delay * attempt

    def _set_state(self, state: ConnectionState, reason: str = "",
                   exhausted: bool = False) -> None:
        if state == self.state and not exhausted:
            return
        self.state = state
        self.exhausted = exhausted
        if self.on_state_change:
            self.on_state_change(ConnectionEvent(
                venue=self.VENUE, state=state, exhausted=exhausted, reason=reason,
            ))

    # ── 메시지 처리 ──

    def _handle_message(self, raw_msg: str | bytes) -> None:
        """수신 메시지 파싱 → 필터 → on_price. 잘못된 메시지는 해당 메시지만 버림"""
        try:
            data = json.loads(raw_msg)
        except (TypeError, ValueError) as e:
            self._record_parse_error(f"JSON 파싱 실패: {e}")
            return
        if not isinstance(data, dict):
            self._record_parse_error(f"알 수 없는 메시지 형식: {type(data).__name__}")
            return

        if self.integrity_logger:
            self.integrity_logger.increment_message_count(self.VENUE.value)

        readings = self.parse_message(data)
        if readings is None:
            self._record_parse_error(f"알 수 없는 envelope: {sorted(data)[:5]}")
            return
        for native_id, price in readings:
            if self._accepts(native_id):
                self.on_price(native_id, price)

    def _accepts(self, native_id: Any) -> bool:
        return not self.tracked or native_id in self.tracked

    def _record_parse_error(self, reason: str) -> None:
        logger.debug(f"[{self.NAME}] 메시지 버림: {reason}")
        if self.integrity_logger:
            self.integrity_logger.record_parse_error(self.VENUE.value, reason)

    @staticmethod
    def parse_price(value: Any) -> float | None:
        """가격 문자열/숫자 → 양의 유한 float. 잘못된 값은 None"""
        try:
            price = float(value)
        except (TypeError, ValueError, OverflowError):
            return None
        if not math.isfinite(price) or price <= 0:
            return None
        return price

    @staticmethod
    def iter_valid(pairs: Iterable[tuple[Any, Any]]) -> list[tuple[Any, float]]:
        """(id, 원시 가격) 목록에서 유효한 가격만 남김"""
        result = []
        for native_id, raw_price in pairs:
            price = FeedClient.parse_price(raw_price)
            if price is not None:
                result.append((native_id, price))
        return result
