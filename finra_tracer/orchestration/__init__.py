"""
오케스트레이션 패키지.

worker 하나의 상태 머신(CrawlerSupervisor)과 여러 worker를 묶어 실행하는 WorkerPool.
"""
from finra_tracer.orchestration.supervisor import (
    CrawlerSupervisor,
    SupervisorReport,
    SupervisorState,
)
from finra_tracer.orchestration.worker_pool import PoolReport, WorkerPool, build_worker

__all__ = [
    "CrawlerSupervisor",
    "SupervisorReport",
    "SupervisorState",
    "PoolReport",
    "WorkerPool",
    "build_worker",
]
