"""CLI 진입점 테스트."""

from __future__ import annotations

import httpx
import pytest

from finra_tracer import main as entry
from finra_tracer.crawler.models import Target
from finra_tracer.crawler.sink import DedupSink, LogSink, QueueSink
from finra_tracer.crawler.targets import TargetRegistry
from finra_tracer.orchestration.worker_pool import WorkerPool, build_worker
from tests.helpers import CHECK_URL, LOGIN_URL, login_response


def _patch_transport(monkeypatch, handler) -> None:
    def build_with_mock(settings, worker_id, registry, sink, transport=None):
        return build_worker(
            settings, worker_id, registry, sink, transport=httpx.MockTransport(handler)
        )

    monkeypatch.setattr(entry, "build_worker", build_with_mock)


def _handler(login_cookies=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == CHECK_URL:
            return httpx.Response(200, text="Congratulations.")
        if str(request.url) == LOGIN_URL:
            return login_response(login_cookies)
        return httpx.Response(404)

    return handler


class TestArguments:
    def test_defaults_leave_settings_untouched(self, settings):
        args = entry.build_parser().parse_args([])
        assert entry.apply_args(settings, args) == settings

    def test_overrides(self, settings):
        args = entry.build_parser().parse_args(
            ["-d", "-c", "3", "--max-login-attempts", "2", "--interval", "0.5",
             "--base-port", "9150", "--dedup"]
        )
        updated = entry.apply_args(settings, args)

        assert updated.debug
        assert updated.effective_log_level == "DEBUG"
        assert updated.workers == 3
        assert updated.max_login_attempts == 2
        assert updated.poll_interval_seconds == 0.5
        assert updated.tor_base_port == 9150
        assert updated.dedup_trades

    def test_cli_targets_replace_configured_ones(self, settings):
        args = entry.build_parser().parse_args(
            ["-t", "A1:01/01/2020:02/01/2020", "-t", "B2:03/01/2020:04/01/2020"]
        )
        registry = entry.build_registry(settings, args.target)
        assert [t.instrument_id for t in registry] == ["A1", "B2"]

    def test_configured_targets_by_default(self, settings):
        registry = entry.build_registry(settings, None)
        assert [t.instrument_id for t in registry] == ["C765371", "C577245"]

    def test_build_sink(self, settings):
        assert isinstance(entry.build_sink(settings), LogSink)
        dedup = settings.model_copy(update={"dedup_trades": True})
        assert isinstance(entry.build_sink(dedup), DedupSink)


@pytest.mark.asyncio
async def test_invalid_target_exits_with_usage_error():
    assert await entry.main(["-t", "C765371:2019-05-29:2019-06-01"]) == 2


@pytest.mark.asyncio
async def test_too_many_connections_exits_with_usage_error():
    assert await entry.main(["-c", "5", "-t", "C765371:05/29/2018:05/29/2019"]) == 2


@pytest.mark.asyncio
async def test_check_login_success(monkeypatch, settings):
    _patch_transport(monkeypatch, _handler())
    registry = TargetRegistry([Target("A", "01/01/2020", "02/01/2020")])
    assert await entry.check_login(settings, registry) == 0


@pytest.mark.asyncio
async def test_check_login_failure(monkeypatch, settings):
    _patch_transport(monkeypatch, _handler(login_cookies=["__cfduid"]))
    registry = TargetRegistry([Target("A", "01/01/2020", "02/01/2020")])
    limited = settings.model_copy(update={"max_login_attempts": 1})
    assert await entry.check_login(limited, registry) == 1


@pytest.mark.asyncio
async def test_run_crawler_returns_zero_after_clean_stop(settings):
    pool = WorkerPool(
        settings,
        TargetRegistry([Target("A", "01/01/2020", "02/01/2020")]),
        QueueSink(),
        transport_factory=lambda port: httpx.MockTransport(_handler()),
    )
    pool.stop()
    assert await entry.run_crawler(pool) == 0
