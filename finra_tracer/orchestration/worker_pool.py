"""
Worker pool.

Runs several supervisors side by side, each behind its own Tor SOCKS port
(``tor_base_port + i``) with its own cookie jar, user agent and slice of the
targets. Nothing mutable is shared between workers except the sink.

The pool waits for every worker and reports all of their outcomes, so a
fatal failure in any worker is visible to the caller.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import AsyncExitStack
from dataclasses import dataclass, field

import httpx
from fake_useragent import UserAgent

from finra_tracer.auth.session_auth import SessionAuthenticator
from finra_tracer.crawler.fetch_pipeline import FetchPipeline
from finra_tracer.crawler.sink import TradeSink
from finra_tracer.crawler.targets import TargetRegistry
from finra_tracer.network.http_client import build_tor_client
from finra_tracer.network.tor_circuit import TorCircuit
from finra_tracer.orchestration.supervisor import CrawlerSupervisor, SupervisorReport
from finra_tracer.utils.config import Settings
from finra_tracer.utils.logger import get_logger

logger = get_logger(__name__)

# 테스트에서 포트별 transport를 주입하기 위한 팩토리 타입
TransportFactory = Callable[[int], httpx.AsyncBaseTransport]


def pick_user_agent(settings: Settings) -> str:
    """설정된 UA가 있으면 그것을, 없으면 무작위 브라우저 UA를 반환한다."""
    if settings.user_agent:
        return settings.user_agent
    return UserAgent().random


@dataclass
class Worker:
    """One supervisor and the resources it owns."""

    worker_id: int
    port: int
    client: httpx.AsyncClient
    circuit: TorCircuit
    authenticator: SessionAuthenticator
    pipeline: FetchPipeline
    supervisor: CrawlerSupervisor

    async def aclose(self) -> None:
        await self.circuit.close()
        await self.client.aclose()


def build_worker(
    settings: Settings,
    worker_id: int,
    registry: TargetRegistry,
    sink: TradeSink,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Worker:
    """Wire a client, circuit, authenticator and pipeline into a supervisor."""
    port = settings.tor_base_port + worker_id
    label = f"worker-{worker_id}"
    user_agent = pick_user_agent(settings)
    client = build_tor_client(settings, port, transport=transport)

    circuit = TorCircuit(
        client,
        port,
        check_url=settings.circuit_check_url,
        check_marker=settings.circuit_check_marker,
        tor_binary=settings.tor_binary,
        data_dir=settings.tor_data_dir,
        probe_interval=settings.circuit_probe_interval_seconds,
        label=label,
    )
    authenticator = SessionAuthenticator(
        client,
        login_url=settings.finra_login_url,
        host=settings.finra_host,
        user_agent=user_agent,
        label=label,
    )
    pipeline = FetchPipeline(client, settings, user_agent, label=label)
    supervisor = CrawlerSupervisor(
        worker_id, settings, registry, circuit, authenticator, pipeline, sink
    )
    logger.info("[%s] port=%d targets=%s", label, port, [str(t) for t in registry])
    return Worker(worker_id, port, client, circuit, authenticator, pipeline, supervisor)


@dataclass(frozen=True)
class PoolReport:
    reports: list[SupervisorReport] = field(default_factory=list)

    @property
    def failed(self) -> list[SupervisorReport]:
        return [r for r in self.reports if r.fatal]

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def trades_emitted(self) -> int:
        return sum(r.trades_emitted for r in self.reports)


class WorkerPool:
    """Runs ``settings.workers`` supervisors concurrently."""

    def __init__(
        self,
        settings: Settings,
        registry: TargetRegistry,
        sink: TradeSink,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        """
        Raises:
            ValueError: More workers than targets, or a non-positive worker count.
        """
        self._settings = settings
        self._sink = sink
        self._transport_factory = transport_factory
        self._slices = registry.partition(settings.workers)
        self.workers: list[Worker] = []
        self._stopping = False

    async def run(self) -> PoolReport:
        """Start every worker and wait for all of them to terminate."""
        async with AsyncExitStack() as stack:
            for worker_id, registry in enumerate(self._slices):
                transport = None
                if self._transport_factory is not None:
                    transport = self._transport_factory(self._settings.tor_base_port + worker_id)
                worker = build_worker(
                    self._settings, worker_id, registry, self._sink, transport=transport
                )
                stack.push_async_callback(worker.aclose)
                self.workers.append(worker)

            if self._stopping:
                for worker in self.workers:
                    worker.supervisor.stop()

            results = await asyncio.gather(
                *(w.supervisor.run() for w in self.workers), return_exceptions=True
            )

        reports: list[SupervisorReport] = []
        for worker, result in zip(self.workers, results):
            if isinstance(result, BaseException):
                logger.error(
                    "[worker-%d] Supervisor raised: %s", worker.worker_id, result,
                    exc_info=result,
                )
                reports.append(
                    SupervisorReport(
                        worker_id=worker.worker_id,
                        state=worker.supervisor.state,
                        fatal=True,
                        reason=f"supervisor raised: {result!r}",
                        trades_emitted=worker.supervisor.trades_emitted,
                        login_attempts=worker.supervisor.login_attempts,
                        fetches=worker.supervisor.fetches,
                    )
                )
            else:
                reports.append(result)

        pool_report = PoolReport(reports)
        if pool_report.failed:
            logger.error(
                "%d/%d worker(s) failed: %s",
                len(pool_report.failed), len(reports),
                [f"worker-{r.worker_id}: {r.reason}" for r in pool_report.failed],
            )
        else:
            logger.info("All %d worker(s) stopped cleanly", len(reports))
        return pool_report

    def stop(self) -> None:
        """Stop every worker. Safe to call before ``run`` has built them."""
        self._stopping = True
        for worker in self.workers:
            worker.supervisor.stop()

