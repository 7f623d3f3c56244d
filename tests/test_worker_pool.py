"""WorkerPool 통합 테스트. 모든 HTTP는 MockTransport가 응답한다."""

from __future__ import annotations

import asyncio
import json
from urllib.parse import parse_qs, unquote_plus

import httpx
import pytest

from finra_tracer.crawler.models import Target
from finra_tracer.crawler.sink import QueueSink
from finra_tracer.crawler.targets import TargetRegistry
from finra_tracer.orchestration.supervisor import SupervisorState
from finra_tracer.orchestration.worker_pool import WorkerPool
from tests.helpers import (
    CHECK_URL,
    LOGIN_URL,
    SEARCH_URL,
    gzip_response,
    login_response,
    make_settings,
    trade_body,
    trade_column,
)

RUN_TIMEOUT = 5.0


def _registry(*ids: str) -> TargetRegistry:
    return TargetRegistry(Target(i, "01/01/2020", "12/31/2020") for i in ids)


def _searched_instrument(request: httpx.Request) -> str:
    form = parse_qs(request.content.decode())
    query = json.loads(unquote_plus(form["query"][0]))
    return query["Keywords"][0]["Value"]


def finra_handler(login_cookies=None):
    """circuit 확인 / 로그인 / 검색 세 엔드포인트를 흉내 내는 핸들러."""

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url == CHECK_URL:
            return httpx.Response(200, text="Congratulations. You are using Tor.")
        if url == LOGIN_URL:
            return login_response(login_cookies)
        if url == SEARCH_URL:
            return gzip_response(trade_body(trade_column(_searched_instrument(request))))
        return httpx.Response(404)

    return handler


async def _collect_ids(sink: QueueSink, wanted: set[str]) -> set[str]:
    seen: set[str] = set()
    while not wanted <= seen:
        record = await sink.queue.get()
        seen.add(record.instrument_id)
    return seen


@pytest.mark.asyncio
async def test_workers_split_targets_and_stop_cleanly():
    ports = []

    def transport_factory(port: int) -> httpx.AsyncBaseTransport:
        ports.append(port)
        return httpx.MockTransport(finra_handler())

    sink = QueueSink()
    pool = WorkerPool(
        make_settings(workers=2, tor_base_port=9150),
        _registry("A", "B", "C"),
        sink,
        transport_factory=transport_factory,
    )
    task = asyncio.create_task(pool.run())

    seen = await asyncio.wait_for(_collect_ids(sink, {"A", "B", "C"}), RUN_TIMEOUT)
    pool.stop()
    report = await asyncio.wait_for(task, RUN_TIMEOUT)

    assert seen == {"A", "B", "C"}
    assert ports == [9150, 9151]
    assert [[t.instrument_id for t in w.supervisor.registry] for w in pool.workers] == [
        ["A", "C"],
        ["B"],
    ]
    assert report.ok
    assert [r.worker_id for r in report.reports] == [0, 1]
    assert all(r.state is SupervisorState.TERMINATED for r in report.reports)
    assert report.trades_emitted >= 3


@pytest.mark.asyncio
async def test_fatal_worker_is_reported_while_others_keep_running():
    def transport_factory(port: int) -> httpx.AsyncBaseTransport:
        if port == 9051:
            return httpx.MockTransport(finra_handler(login_cookies=["__cfduid", "UsrID"]))
        return httpx.MockTransport(finra_handler())

    sink = QueueSink()
    pool = WorkerPool(
        make_settings(workers=2, max_login_attempts=1),
        _registry("A", "B"),
        sink,
        transport_factory=transport_factory,
    )
    task = asyncio.create_task(pool.run())

    async def failed_worker_terminated() -> None:
        while (
            len(pool.workers) < 2
            or pool.workers[1].supervisor.state is not SupervisorState.TERMINATED
        ):
            await asyncio.sleep(0.01)

    await asyncio.wait_for(failed_worker_terminated(), RUN_TIMEOUT)
    await asyncio.wait_for(_collect_ids(sink, {"A"}), RUN_TIMEOUT)
    pool.stop()
    report = await asyncio.wait_for(task, RUN_TIMEOUT)

    assert not report.ok
    assert [r.worker_id for r in report.failed] == [1]
    assert "MaxLoginAttempts" in report.failed[0].reason
    assert report.failed[0].login_attempts == 2
    assert report.reports[0].trades_emitted >= 1


@pytest.mark.asyncio
async def test_stop_before_run():
    requests = []

    def transport_factory(port: int) -> httpx.AsyncBaseTransport:
        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(str(request.url))
            return finra_handler()(request)

        return httpx.MockTransport(handler)

    pool = WorkerPool(
        make_settings(workers=1), _registry("A"), QueueSink(), transport_factory=transport_factory
    )
    pool.stop()
    report = await asyncio.wait_for(pool.run(), RUN_TIMEOUT)

    assert report.ok
    assert report.reports[0].login_attempts == 0
    assert LOGIN_URL not in requests


def test_more_workers_than_targets_is_rejected():
    with pytest.raises(ValueError):
        WorkerPool(make_settings(workers=3), _registry("A", "B"), QueueSink())
