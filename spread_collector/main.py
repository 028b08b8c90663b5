"""메인 애플리케이션 - 모든 모듈 초기화 및 동시 실행"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

from spread_collector.buffer import DataBuffer
from spread_collector.config import Config
from spread_collector.engine import SpreadEngine
from spread_collector.flusher import Flusher
from spread_collector.hyperliquid_client import HyperliquidClient
from spread_collector.instruments import InstrumentTable
from spread_collector.integrity_logger import IntegrityLogger
from spread_collector.lighter_client import LighterClient
from spread_collector.models import ConnectionEvent, HealthStatus
from spread_collector.retention import RetentionSweeper
from spread_collector.store import SpreadStore
from spread_collector.telegram_reporter import TelegramReporter

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
    ],
)
logger = logging.getLogger(__name__)


async def main(config_path: str = "config.yaml") -> None:
    """모든 모듈 초기화 및 asyncio.gather로 동시 실행"""
    config = Config.from_yaml(config_path)

    # 디렉토리 생성 (로깅 FileHandler보다 먼저)
    Path(config.data_dir).mkdir(parents=True, exist_ok=True)
    Path(config.log_dir).mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(
        Path(config.log_dir) / "spread_collector.log", encoding="utf-8"
    )
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )
    logging.getLogger().addHandler(file_handler)

    # 모듈 초기화
    integrity_logger = IntegrityLogger(config.log_dir)
    telegram = TelegramReporter(config)
    buffer = DataBuffer(config.max_buffer_mb)
    flusher = Flusher(config, buffer, integrity_logger)
    store = SpreadStore(buffer, config.data_dir)
    table = InstrumentTable.from_config(config.instruments, config.excluded_instruments)
    engine = SpreadEngine(config, table, store, integrity_logger)
    sweeper = RetentionSweeper(config, engine.aggregator, engine.history)

    venue_a = HyperliquidClient(
        config, engine.submit_venue_a, engine.on_connection_event, integrity_logger,
    )
    venue_b = LighterClient(
        config, engine.submit_venue_b, engine.on_connection_event, integrity_logger,
        on_markets_discovered=engine.submit_discovery,
    )
    engine.attach_feeds(venue_a, venue_b)
    engine.set_tracked(config.instruments)

    # 알림 전송은 수집 경로를 막지 않도록 별도 태스크
    background: set[asyncio.Task] = set()

    def _alert(event: ConnectionEvent, health: HealthStatus) -> None:
        task = asyncio.create_task(telegram.send_connection_alert(event, health))
        background.add(task)
        task.add_done_callback(background.discard)

    engine.subscribe_connection(_alert)

    await telegram.send_startup_report(config, len(table))
    logger.info("=== Hyperliquid ↔ Lighter 스프레드 수집 시스템 시작 ===")
    logger.info(f"종목: {len(table)}개 {config.instruments or '(전체)'}")
    logger.info(f"버킷 폭: {config.bucket_width}초, 플러시 주기: {config.flush_interval}초")

    # 주기적 로그/리포트 태스크
    async def periodic_log():
        while True:
            await asyncio.sleep(config.flush_interval)
            await integrity_logger.write_periodic_log()
            logger.info(f"[통계] {engine.stats()}")

    async def daily_summary():
        while True:
            await asyncio.sleep(86400)
            await integrity_logger.write_daily_summary()

    async def opportunity_report():
        while True:
            await asyncio.sleep(config.report_interval)
            await telegram.send_opportunity_report(engine.rank())

    # 강제 플러시 감시
    async def force_flush_monitor():
        while True:
            await asyncio.sleep(30)
            if buffer.needs_force_flush():
                logger.warning("[강제 플러시] 메모리 임계값 초과")
                flusher.flush_now()

    venue_a.connect()
    venue_b.connect()

    tasks = [
        engine.run(),
        engine.run_aggregation(),
        flusher.run(),
        sweeper.run(),
        periodic_log(),
        daily_summary(),
        opportunity_report(),
        force_flush_monitor(),
    ]

    # graceful shutdown
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler():
        logger.info("종료 신호 수신, 마지막 플러시 실행 중...")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    gathered = asyncio.gather(*tasks, return_exceptions=True)

    await asyncio.wait(
        [asyncio.create_task(shutdown_event.wait()), gathered],
        return_when=asyncio.FIRST_COMPLETED,
    )

    await venue_a.disconnect()
    await venue_b.disconnect()
    gathered.cancel()

    # 종료 시 남은 이벤트 처리 + 완료 버킷 요약 + 마지막 플러시
    logger.info("마지막 플러시 실행...")
    try:
        engine.drain()
        engine.flush_completed()
        flusher.flush_now()
    except Exception as e:
        logger.error(f"마지막 플러시 실패: {e}")

    logger.info("=== 시스템 종료 ===")


def cli() -> None:
    config_file = sys.argv[1] if len(sys.argv) > 1 else "config.yaml"
    asyncio.run(main(config_file))


if __name__ == "__main__":
    cli()
