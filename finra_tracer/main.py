"""
finra-tracer - Main Entry Point

Tor를 경유하여 FINRA 채권 체결 검색 엔드포인트를 주기적으로 조회한다.

주요 기능:
- worker별 Tor circuit 확인/기동 (SOCKS 포트 = 기본 포트 + worker 번호)
- 쿠키 기반 세션 로그인, 세션 만료 시 재로그인
- 대상 종목 라운드로빈 폴링, 체결 내역 stdout 출력
- --check-login: circuit + 로그인만 확인하고 종료
- SIGINT / SIGTERM 수신 시 Graceful shutdown
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from collections.abc import Sequence

from dotenv import load_dotenv

from finra_tracer.auth.session_auth import AuthError
from finra_tracer.crawler.sink import DedupSink, LogSink, TradeSink
from finra_tracer.crawler.targets import TargetRegistry
from finra_tracer.network.tor_circuit import CircuitError
from finra_tracer.orchestration.worker_pool import WorkerPool, build_worker
from finra_tracer.utils.config import Settings, get_settings
from finra_tracer.utils.logger import get_logger, setup_logging
from finra_tracer.utils.retry_policy import RetryPolicy

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# 모듈 레벨 상수
# ---------------------------------------------------------------------------

_EXIT_OK: int = 0
_EXIT_FAILURE: int = 1
_EXIT_USAGE: int = 2


def build_parser() -> argparse.ArgumentParser:
    """CLI 인자 파서를 생성한다."""
    parser = argparse.ArgumentParser(
        prog="finra-tracer",
        description="Tor 경유 FINRA 채권 체결 내역 크롤러",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="debug mode")
    parser.add_argument(
        "-c", "--connections", type=int, default=None,
        help="병렬 Tor 연결(worker) 수",
    )
    parser.add_argument(
        "-t", "--target", action="append", default=None, metavar="ID:START:END",
        help="검색 대상 (예: C765371:05/29/2018:05/29/2019). 여러 번 지정 가능",
    )
    parser.add_argument(
        "--max-login-attempts", type=int, default=None,
        help="세션당 최대 로그인 실패 허용 횟수",
    )
    parser.add_argument(
        "--interval", type=float, default=None,
        help="폴링 간격 (초)",
    )
    parser.add_argument(
        "--base-port", type=int, default=None,
        help="첫 번째 worker의 Tor SOCKS 포트",
    )
    parser.add_argument(
        "--dedup", action="store_true",
        help="재로그인 후 중복 체결 출력 억제",
    )
    parser.add_argument(
        "--check-login", action="store_true",
        help="circuit 확인과 로그인만 수행하고 종료",
    )
    return parser


def apply_args(settings: Settings, args: argparse.Namespace) -> Settings:
    """CLI 인자를 설정에 덮어쓴 새 Settings를 반환한다."""
    overrides: dict = {}
    if args.debug:
        overrides["debug"] = True
    if args.connections is not None:
        overrides["workers"] = args.connections
    if args.max_login_attempts is not None:
        overrides["max_login_attempts"] = args.max_login_attempts
    if args.interval is not None:
        overrides["poll_interval_seconds"] = args.interval
    if args.base_port is not None:
        overrides["tor_base_port"] = args.base_port
    if args.dedup:
        overrides["dedup_trades"] = True
    return settings.model_copy(update=overrides)


def build_registry(settings: Settings, target_specs: Sequence[str] | None) -> TargetRegistry:
    """CLI 대상이 있으면 그것으로, 없으면 설정의 targets로 레지스트리를 만든다.

    Raises:
        ValueError: 대상 형식/날짜가 잘못된 경우.
    """
    if target_specs:
        return TargetRegistry(TargetRegistry.parse(spec) for spec in target_specs)
    return TargetRegistry.from_config(settings.targets)


def build_sink(settings: Settings) -> TradeSink:
    sink: TradeSink = LogSink()
    if settings.dedup_trades:
        sink = DedupSink(sink)
    return sink


async def check_login(settings: Settings, registry: TargetRegistry) -> int:
    """worker 0 하나로 circuit과 로그인만 확인한다."""
    worker = build_worker(settings, 0, registry, LogSink())
    try:
        await worker.circuit.ensure_live(
            settings.circuit_timeout_seconds, settings.circuit_setup_delay_seconds
        )
        attempts = await worker.authenticator.login(RetryPolicy.for_login(settings))
    except (CircuitError, AuthError) as exc:
        logger.error("Login check failed: %s", exc)
        return _EXIT_FAILURE
    finally:
        await worker.aclose()

    logger.info("Login check passed after %d attempt(s)", attempts)
    return _EXIT_OK


async def run_crawler(pool: WorkerPool) -> int:
    """WorkerPool을 실행하고 종료 신호를 처리한다."""
    # 종료 신호 핸들러: SIGINT / SIGTERM 수신 시 모든 worker를 정지시킨다.
    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal %s, initiating graceful shutdown...", sig.name)
        pool.stop()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        report = await pool.run()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)

    logger.info(
        "Crawler finished: %d trade(s) emitted, %d worker(s) failed",
        report.trades_emitted, len(report.failed),
    )
    return _EXIT_OK if report.ok else _EXIT_FAILURE


async def main(argv: Sequence[str] | None = None) -> int:
    """메인 진입점. 프로세스 종료 코드를 반환한다."""
    # .env 값을 os.environ에 로드
    load_dotenv()

    args = build_parser().parse_args(argv)
    settings = apply_args(get_settings(), args)
    setup_logging(settings.effective_log_level, settings.log_dir or None)
    logger.debug("Parser launched in debug mode")

    try:
        registry = build_registry(settings, args.target)
        pool = WorkerPool(settings, registry, build_sink(settings))
    except ValueError as exc:
        # 설정 오류는 재시도하지 않고 즉시 종료한다
        logger.error("Invalid configuration: %s", exc)
        return _EXIT_USAGE

    if args.check_login:
        return await check_login(settings, registry)
    return await run_crawler(pool)


def cli() -> None:
    """콘솔 스크립트 진입점."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
