"""테스트 헬퍼: 설정 팩토리와 가짜 응답 생성기."""

from __future__ import annotations

import gzip
import json

import httpx

from finra_tracer.auth.session_auth import REQUIRED_COOKIES
from finra_tracer.utils.config import Settings

LOGIN_URL = "http://finra-markets.morningstar.com/finralogin.jsp"
SEARCH_URL = "http://finra-markets.morningstar.com/bondSearch.jsp"
CHECK_URL = "https://check.torproject.org/"


def make_settings(**overrides) -> Settings:
    """.env를 읽지 않는 테스트용 Settings."""
    values = {
        "user_agent": "pytest-agent/1.0",
        "poll_interval_seconds": 0.001,
        "circuit_setup_delay_seconds": 0.0,
        "circuit_timeout_seconds": 0.2,
        "circuit_probe_interval_seconds": 0.01,
        "circuit_check_url": CHECK_URL,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def trade_body(*columns: dict, quoted: bool = False) -> bytes:
    """엔드포인트와 같은 모양(T 키가 따옴표 없이 오는)의 응답 본문을 만든다."""
    table = json.dumps({"Columns": list(columns), "Rows": len(columns)})
    key = '"T"' if quoted else "T"
    return f"{{{key}:{table}}}".encode()


def trade_column(security_id: str = "C765371", price: float = 101.25, **extra) -> dict:
    column = {
        "tradeQuantity": "1000000",
        "securityID": security_id,
        "price": price,
        "tradeDate": "05/29/2019",
        "timeOfExecution": "10:15:00",
    }
    column.update(extra)
    return column


def login_response(names=None, status_code: int = 200) -> httpx.Response:
    """지정한 쿠키(기본: 필수 쿠키 전부)를 내려주는 로그인 응답."""
    if names is None:
        names = list(REQUIRED_COOKIES)
    headers = [("set-cookie", f"{name}=value-{name}; Path=/") for name in names]
    return httpx.Response(status_code, headers=headers, text="<html>login</html>")


def gzip_response(body: bytes, status_code: int = 200) -> httpx.Response:
    """압축된 본문을 그대로 흘려보내는 스트리밍 응답."""
    return httpx.Response(
        status_code,
        headers={"content-encoding": "gzip"},
        stream=httpx.ByteStream(gzip.compress(body)),
    )
