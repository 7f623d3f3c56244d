"""
Tor circuit lifecycle.

Makes sure a working anonymizing circuit answers the check URL before any
login or search request is allowed out. If no circuit is up yet, a Tor process
is launched on the worker's SOCKS port and the check URL is polled until it
succeeds or the circuit timeout expires.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from pathlib import Path

import httpx

from finra_tracer.utils.logger import get_logger

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# 모듈 레벨 상수
# ---------------------------------------------------------------------------

_PROCESS_STOP_TIMEOUT: float = 5.0


class CircuitStatus(str, Enum):
    """Tor circuit 상태."""

    UNCHECKED = "unchecked"
    ESTABLISHING = "establishing"
    LIVE = "live"
    FAILED = "failed"


class CircuitError(Exception):
    """Tor circuit 관련 예외."""


class CircuitLaunchError(CircuitError):
    """Tor 프로세스를 띄우지 못한 경우. 재시도하지 않는다."""


class CircuitTimeoutError(CircuitError):
    """제한 시간 안에 circuit 확인 요청이 성공하지 못한 경우."""


class TorCircuit:
    """One Tor process/port pair and the health of its circuit.

    Attributes:
        port: Local SOCKS port the worker's HTTP client is bound to.
        status: Current ``CircuitStatus``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        port: int,
        check_url: str,
        check_marker: str = "",
        tor_binary: str = "tor",
        data_dir: str | Path = ".tor",
        probe_interval: float = 0.5,
        label: str = "",
    ) -> None:
        self._client = client
        self.port = port
        self._check_url = check_url
        self._check_marker = check_marker
        self._tor_binary = tor_binary
        self._data_dir = Path(data_dir) / f"tor-{port}"
        self._probe_interval = probe_interval
        self._label = label or f"tor-{port}"
        self._process: asyncio.subprocess.Process | None = None
        self.status = CircuitStatus.UNCHECKED

    @property
    def launched(self) -> bool:
        """Whether this instance started its own Tor process."""
        return self._process is not None

    async def probe(self) -> bool:
        """Hit the check URL once through the circuit.

        Returns True only for a 2xx answer whose body carries the check marker.
        """
        try:
            resp = await self._client.get(self._check_url)
        except httpx.HTTPError as exc:
            logger.debug("[%s] Circuit probe failed: %s", self._label, exc)
            return False

        if not resp.is_success:
            logger.debug("[%s] Circuit probe HTTP %d", self._label, resp.status_code)
            return False
        if self._check_marker and self._check_marker not in resp.text:
            logger.debug("[%s] Circuit probe answered without marker", self._label)
            return False
        return True

    async def ensure_live(
        self, timeout_seconds: float, setup_delay_seconds: float
    ) -> None:
        """Return once the circuit is usable.

        Args:
            timeout_seconds: How long to keep probing after the setup delay.
            setup_delay_seconds: Time given to Tor to negotiate a circuit
                before the first probe.

        Raises:
            CircuitLaunchError: The Tor binary could not be started.
            CircuitTimeoutError: No probe succeeded within ``timeout_seconds``.
        """
        self.status = CircuitStatus.ESTABLISHING
        logger.debug("[%s] Checking for tor network", self._label)

        if await self.probe():
            logger.info("[%s] Existing tor circuit found", self._label)
            self.status = CircuitStatus.LIVE
            return

        await self._launch()

        # Tor가 circuit을 구성할 시간을 준다
        await asyncio.sleep(setup_delay_seconds)

        try:
            await asyncio.wait_for(self._poll_until_live(), timeout=timeout_seconds)
        except asyncio.TimeoutError as exc:
            self.status = CircuitStatus.FAILED
            logger.error(
                "[%s] Tor circuit not live after %.1fs", self._label, timeout_seconds
            )
            raise CircuitTimeoutError(
                f"Tor circuit timeout expired ({timeout_seconds:.1f}s)"
            ) from exc

        self.status = CircuitStatus.LIVE
        logger.info("[%s] Tor network successfully launched", self._label)

    async def _poll_until_live(self) -> None:
        while not await self.probe():
            await asyncio.sleep(self._probe_interval)

    async def _launch(self) -> None:
        self._data_dir.mkdir(parents=True, exist_ok=True)
        cmd = (
            self._tor_binary,
            "--SocksPort", str(self.port),
            "--DataDirectory", str(self._data_dir),
        )
        logger.info("[%s] Launching %s", self._label, " ".join(cmd))
        try:
            self._process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            self.status = CircuitStatus.FAILED
            logger.error("[%s] Failed to launch tor: %s", self._label, exc)
            raise CircuitLaunchError(f"Unable to launch {self._tor_binary}: {exc}") from exc

    async def close(self) -> None:
        """Terminate the Tor process this instance launched, if any."""
        process, self._process = self._process, None
        if process is None or process.returncode is not None:
            return

        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=_PROCESS_STOP_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("[%s] Tor did not exit, killing", self._label)
            process.kill()
            await process.wait()
        logger.debug("[%s] Tor process stopped", self._label)
