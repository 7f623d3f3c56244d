"""Tor 네트워크 모듈 - circuit 수명 관리, SOCKS5 바인딩 HTTP 클라이언트"""

from finra_tracer.network.http_client import build_tor_client
from finra_tracer.network.tor_circuit import (
    CircuitError,
    CircuitLaunchError,
    CircuitStatus,
    CircuitTimeoutError,
    TorCircuit,
)

__all__ = [
    "build_tor_client",
    "CircuitError",
    "CircuitLaunchError",
    "CircuitStatus",
    "CircuitTimeoutError",
    "TorCircuit",
]
