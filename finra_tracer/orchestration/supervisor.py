"""
Crawler supervisor state machine.

One supervisor owns one Tor circuit, one authenticated session and one
target rotation. Its event loop is the only code that reads or writes the
session state; login attempts, fetches and polling ticks run as separate
tasks and report back through a single ``asyncio.Queue``.

States::

    INIT -> CIRCUIT_PENDING -> AUTHENTICATING -> POLLING
                    |                ^    |        |
                    |                |    |        | (session expired)
                    |                +----|--------+
                    v                     v
                TERMINATED <--------------+  (circuit failure,
                                              login ceiling,
                                              fetch failure ceiling,
                                              session expiry ceiling,
                                              stop())

A terminated supervisor cannot be restarted; build a new one with a fresh
circuit and session instead.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Coroutine, Protocol

from finra_tracer.auth.session_auth import (
    AuthError,
    AuthFlag,
    LoginAttemptCounter,
    is_authenticated,
    missing_flags,
)
from finra_tracer.crawler.fetch_pipeline import FetchError
from finra_tracer.crawler.models import FetchOutcome, Target
from finra_tracer.crawler.sink import TradeSink
from finra_tracer.crawler.targets import TargetRegistry
from finra_tracer.network.tor_circuit import CircuitError
from finra_tracer.utils.config import Settings
from finra_tracer.utils.logger import get_logger
from finra_tracer.utils.retry_policy import RetryPolicy

logger = get_logger(__name__)


class SupervisorState(str, Enum):
    INIT = "init"
    CIRCUIT_PENDING = "circuit_pending"
    AUTHENTICATING = "authenticating"
    POLLING = "polling"
    TERMINATED = "terminated"


class Circuit(Protocol):
    async def ensure_live(self, timeout_seconds: float, setup_delay_seconds: float) -> None: ...


class Authenticator(Protocol):
    def clear_session(self) -> int: ...

    async def attempt(self) -> AuthFlag: ...


class Pipeline(Protocol):
    async def fetch(self, target: Target) -> FetchOutcome: ...


# ---------------------------------------------------------------------------
# Events delivered to the supervisor loop
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _LoginResult:
    state: AuthFlag
    error: AuthError | None = None


@dataclass(frozen=True)
class _FetchResult:
    target: Target
    outcome: FetchOutcome | None = None
    error: FetchError | None = None


@dataclass(frozen=True)
class _TaskCrashed:
    error: BaseException


class _Tick:
    pass


class _Stop:
    pass


_TICK = _Tick()
_STOP = _Stop()


@dataclass(frozen=True)
class SupervisorReport:
    """How a supervisor run ended.

    Attributes:
        worker_id: Pool index of the worker.
        state: Final state (always ``TERMINATED`` once ``run`` returns).
        fatal: True when the run ended on an error rather than ``stop()``.
        reason: Human readable cause.
        trades_emitted: Records forwarded to the sink.
        login_attempts: Login requests issued over the whole run.
        fetches: Search requests dispatched over the whole run.
    """

    worker_id: int
    state: SupervisorState
    fatal: bool
    reason: str
    trades_emitted: int
    login_attempts: int
    fetches: int


class CrawlerSupervisor:
    """Drives one worker from circuit setup to polling, and back to login
    whenever the search endpoint reports an expired session."""

    def __init__(
        self,
        worker_id: int,
        settings: Settings,
        registry: TargetRegistry,
        circuit: Circuit,
        authenticator: Authenticator,
        pipeline: Pipeline,
        sink: TradeSink,
    ) -> None:
        self.worker_id = worker_id
        self._label = f"worker-{worker_id}"
        self._settings = settings
        self._registry = registry
        self._circuit = circuit
        self._auth = authenticator
        self._pipeline = pipeline
        self._sink = sink

        self._policy = RetryPolicy.for_login(settings)
        self._login_counter = LoginAttemptCounter(max_attempts=self._policy.max_attempts)
        self._auth_state = AuthFlag.NONE
        self._index = 0
        self._fetch_failures = 0
        self._session_expiries = 0

        self._events: asyncio.Queue[Any] = asyncio.Queue()
        self._stop_event = asyncio.Event()
        self._tasks: set[asyncio.Task] = set()
        self._ticker: asyncio.Task | None = None
        self._login_in_flight = False

        self.state = SupervisorState.INIT
        self._fatal = False
        self._reason = ""
        self.login_attempts = 0
        self.fetches = 0
        self.trades_emitted = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def auth_state(self) -> AuthFlag:
        return self._auth_state

    @property
    def registry(self) -> TargetRegistry:
        return self._registry

    async def run(self) -> SupervisorReport:
        """Run until a fatal condition or ``stop()``.

        Raises:
            RuntimeError: The supervisor was already started.
            ValueError: The target registry is empty.
        """
        if self.state is not SupervisorState.INIT:
            raise RuntimeError(f"[{self._label}] supervisor already started ({self.state.value})")
        if not len(self._registry):
            raise ValueError(f"[{self._label}] no targets to poll")

        self._transition(SupervisorState.CIRCUIT_PENDING)
        if not await self._await_circuit():
            return self._report()

        self._transition(SupervisorState.AUTHENTICATING)
        self._start_login()
        try:
            while self.state is not SupervisorState.TERMINATED:
                event = await self._events.get()
                await self._handle(event)
        finally:
            await self._cancel_pending()
        return self._report()

    def stop(self) -> None:
        """Ask the supervisor to terminate (non-fatal)."""
        if self.state is SupervisorState.TERMINATED or self._stop_event.is_set():
            return
        logger.info("[%s] Stop requested", self._label)
        self._stop_event.set()
        self._events.put_nowait(_STOP)

    # ------------------------------------------------------------------
    # Circuit
    # ------------------------------------------------------------------

    async def _await_circuit(self) -> bool:
        circuit_task = asyncio.create_task(
            self._circuit.ensure_live(
                self._settings.circuit_timeout_seconds,
                self._settings.circuit_setup_delay_seconds,
            )
        )
        stop_task = asyncio.create_task(self._stop_event.wait())
        try:
            await asyncio.wait(
                {circuit_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            stop_task.cancel()
            if not circuit_task.done():
                circuit_task.cancel()
            await asyncio.gather(circuit_task, stop_task, return_exceptions=True)

        if circuit_task.cancelled():
            self._terminate(fatal=False, reason="stopped before circuit was live")
            return False

        exc = circuit_task.exception()
        if isinstance(exc, CircuitError):
            self._terminate(fatal=True, reason=f"circuit failure: {exc}")
            return False
        if exc is not None:
            raise exc

        logger.debug("[%s] Connected to tor", self._label)
        if self._stop_event.is_set():
            self._terminate(fatal=False, reason="stopped")
            return False
        return True

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    async def _handle(self, event: Any) -> None:
        if isinstance(event, _Tick):
            self._on_tick()
        elif isinstance(event, _FetchResult):
            await self._on_fetch_result(event)
        elif isinstance(event, _LoginResult):
            self._on_login_result(event)
        elif isinstance(event, _Stop):
            self._terminate(fatal=False, reason="stopped")
        elif isinstance(event, _TaskCrashed):
            logger.error("[%s] Worker task crashed", self._label, exc_info=event.error)
            self._terminate(fatal=True, reason=f"task crashed: {event.error!r}")

    def _on_login_result(self, event: _LoginResult) -> None:
        self._login_in_flight = False
        if self.state is not SupervisorState.AUTHENTICATING:
            return

        self._auth_state = event.state
        if event.error is None and is_authenticated(event.state):
            logger.info(
                "[%s] Login successful (attempt: %d)",
                self._label, self._login_counter.failures + 1,
            )
            self._login_counter.reset()
            self._transition(SupervisorState.POLLING)
            self._start_ticker()
            return

        failures = self._login_counter.record_failure()
        if self._login_counter.exceeded:
            self._terminate(
                fatal=True,
                reason=(
                    f"MaxLoginAttempts exceeded ({failures} failed attempts, "
                    f"max {self._policy.max_attempts})"
                ),
            )
            return

        if event.error is not None:
            logger.debug("[%s] Login request failed (attempt: %d): %s",
                         self._label, failures, event.error)
        else:
            logger.debug("[%s] Login fail (attempt: %d; missing: %s)",
                         self._label, failures, missing_flags(event.state))
        self._start_login(delay=self._policy.delay_for(failures))

    def _on_tick(self) -> None:
        if self.state is not SupervisorState.POLLING:
            logger.debug("[%s] Tick skipped while %s", self._label, self.state.value)
            return

        target = self._registry.select(self._index)
        self._index += 1
        self.fetches += 1
        logger.debug("[%s] Fetching %s", self._label, target)
        self._spawn(self._fetch_task(target))

    async def _on_fetch_result(self, event: _FetchResult) -> None:
        if self.state is SupervisorState.TERMINATED:
            return

        if event.error is not None:
            self._fetch_failures += 1
            logger.debug(
                "[%s] Fetch for %s failed (%d/%d): %s",
                self._label, event.target, self._fetch_failures,
                self._settings.max_fetch_failures, event.error,
            )
            if self._fetch_failures > self._settings.max_fetch_failures:
                self._terminate(
                    fatal=True,
                    reason=(
                        f"MaxFetchFailures exceeded ({self._fetch_failures} > "
                        f"{self._settings.max_fetch_failures})"
                    ),
                )
            return

        self._fetch_failures = 0
        outcome = event.outcome
        if outcome is None:
            return

        if outcome.session_expired:
            if self.state is SupervisorState.POLLING:
                self._on_session_expired()
            return

        self._session_expiries = 0
        for record in outcome.trades:
            await self._sink.emit(record)
            self.trades_emitted += 1

    def _on_session_expired(self) -> None:
        self._session_expiries += 1
        if self._session_expiries > self._settings.max_session_expiries:
            self._terminate(
                fatal=True,
                reason=(
                    f"MaxSessionExpiries exceeded ({self._session_expiries} > "
                    f"{self._settings.max_session_expiries})"
                ),
            )
            return

        logger.info(
            "[%s] Session expired (%d/%d), logging in again",
            self._label, self._session_expiries, self._settings.max_session_expiries,
        )
        # 새 로그인 응답의 쿠키만으로 인증 여부를 다시 판단한다
        self._auth.clear_session()
        self._auth_state = AuthFlag.NONE
        self._transition(SupervisorState.AUTHENTICATING)
        self._start_login()

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def _start_login(self, delay: float = 0.0) -> None:
        if self._login_in_flight:
            return
        self._login_in_flight = True
        self.login_attempts += 1
        self._spawn(self._login_task(delay))

    def _start_ticker(self) -> None:
        if self._ticker is None:
            self._ticker = self._spawn(self._tick_loop())

    async def _login_task(self, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        try:
            state = await self._auth.attempt()
        except AuthError as exc:
            self._events.put_nowait(_LoginResult(AuthFlag.NONE, error=exc))
            return
        self._events.put_nowait(_LoginResult(state))

    async def _fetch_task(self, target: Target) -> None:
        try:
            outcome = await self._pipeline.fetch(target)
        except FetchError as exc:
            self._events.put_nowait(_FetchResult(target, error=exc))
            return
        self._events.put_nowait(_FetchResult(target, outcome=outcome))

    async def _tick_loop(self) -> None:
        interval = self._settings.poll_interval_seconds
        while True:
            await asyncio.sleep(interval)
            self._events.put_nowait(_TICK)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._events.put_nowait(_TaskCrashed(exc))

    async def _cancel_pending(self) -> None:
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.debug("[%s] Cancelled %d in-flight task(s)", self._label, len(pending))
        self._ticker = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _transition(self, new_state: SupervisorState) -> None:
        if new_state is not self.state:
            logger.debug("[%s] %s -> %s", self._label, self.state.value, new_state.value)
            self.state = new_state

    def _terminate(self, fatal: bool, reason: str) -> None:
        if self.state is SupervisorState.TERMINATED:
            return
        self._fatal = fatal
        self._reason = reason
        self._transition(SupervisorState.TERMINATED)
        if fatal:
            logger.error("[%s] Terminated: %s", self._label, reason)
        else:
            logger.info("[%s] Terminated: %s", self._label, reason)

    def _report(self) -> SupervisorReport:
        return SupervisorReport(
            worker_id=self.worker_id,
            state=self.state,
            fatal=self._fatal,
            reason=self._reason,
            trades_emitted=self.trades_emitted,
            login_attempts=self.login_attempts,
            fetches=self.fetches,
        )
