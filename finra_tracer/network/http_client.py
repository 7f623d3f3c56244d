"""
Tor SOCKS5 프록시에 바인딩된 httpx 비동기 클라이언트 생성 헬퍼.

worker마다 별도의 클라이언트(=별도의 쿠키 저장소)를 만들어야 한다.
로그인 흐름과 검색 흐름은 같은 worker 안에서 이 클라이언트를 공유한다.
"""

from __future__ import annotations

import httpx
from httpx_socks import AsyncProxyTransport

from finra_tracer.utils.config import Settings
from finra_tracer.utils.logger import get_logger

logger = get_logger(__name__)


def build_tor_client(
    settings: Settings,
    port: int,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """SOCKS5 프록시를 경유하는 AsyncClient를 생성한다.

    Args:
        settings: 애플리케이션 설정.
        port: 로컬 Tor SOCKS 포트.
        transport: 지정하면 프록시 대신 이 transport를 사용한다 (테스트용).

    Returns:
        쿠키 저장소가 비어 있는 새 ``httpx.AsyncClient``.
    """
    if transport is None:
        proxy_url = settings.socks_proxy_url(port)
        logger.debug("Building transport for tor conn: %s", proxy_url)
        transport = AsyncProxyTransport.from_url(proxy_url)

    return httpx.AsyncClient(
        transport=transport,
        timeout=settings.http_timeout_seconds,
        follow_redirects=True,
    )
