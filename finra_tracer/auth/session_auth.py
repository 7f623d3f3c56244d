"""
FINRA 마켓 데이터 세션 인증 모듈

로그인 페이지를 GET 하면 서버가 일련의 쿠키를 내려준다.
아래 7개 쿠키가 대상 호스트의 쿠키 저장소에 모두 존재해야 검색 요청이 유효하다.
- __cfduid, __cfruid (엣지 프록시)
- qs_wsid, Instid, SessionID (세션/인스턴스)
- UsrID, UsrName (사용자)

성공 여부는 HTTP 상태 코드나 응답 본문이 아닌 쿠키만으로 판단한다.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass
from enum import IntFlag
from urllib.parse import urlsplit

import httpx

from finra_tracer.utils.logger import get_logger
from finra_tracer.utils.retry_policy import RetryPolicy

logger = get_logger(__name__)


class AuthFlag(IntFlag):
    """세션 확립 쿠키 비트마스크."""

    NONE = 0
    CFDUID = 1 << 0
    QS_WSID = 1 << 1
    INSTID = 1 << 2
    CFRUID = 1 << 3
    SESSIONID = 1 << 4
    USRID = 1 << 5
    USRNAME = 1 << 6
    LOGGED_IN = CFDUID | QS_WSID | INSTID | CFRUID | SESSIONID | USRID | USRNAME


# 쿠키 이름 → 플래그
REQUIRED_COOKIES: dict[str, AuthFlag] = {
    "__cfduid": AuthFlag.CFDUID,
    "qs_wsid": AuthFlag.QS_WSID,
    "Instid": AuthFlag.INSTID,
    "__cfruid": AuthFlag.CFRUID,
    "SessionID": AuthFlag.SESSIONID,
    "UsrID": AuthFlag.USRID,
    "UsrName": AuthFlag.USRNAME,
}


def compute_auth_state(cookie_names: Iterable[str]) -> AuthFlag:
    """쿠키 이름 집합에서 관측된 플래그를 계산한다.

    값과 순서는 무시하며, 같은 이름이 여러 번 나와도 결과는 같다.
    """
    state = AuthFlag.NONE
    for name in cookie_names:
        state |= REQUIRED_COOKIES.get(name, AuthFlag.NONE)
    return state


def missing_flags(state: AuthFlag) -> AuthFlag:
    """완전 인증 마스크 대비 아직 관측되지 않은 플래그를 반환한다."""
    return AuthFlag.LOGGED_IN & ~state


def is_authenticated(state: AuthFlag) -> bool:
    """7개 플래그가 모두 관측되었는지 확인한다."""
    return missing_flags(state) == AuthFlag.NONE


def _domain_matches(host: str, cookie_domain: str) -> bool:
    domain = cookie_domain.lstrip(".").lower()
    host = host.lower()
    return host == domain or host.endswith("." + domain)


class AuthError(Exception):
    """세션 인증 관련 예외."""


class AuthRequestError(AuthError):
    """로그인 요청 자체가 실패한 경우 (네트워크 오류 등)."""


class MaxLoginAttemptsExceeded(AuthError):
    """로그인 실패 횟수가 상한을 넘은 경우. 해당 세션에 치명적이다."""

    def __init__(self, attempts: int, max_attempts: int) -> None:
        super().__init__(f"MaxLoginAttempts exceeded ({attempts} > {max_attempts})")
        self.attempts = attempts
        self.max_attempts = max_attempts


@dataclass
class LoginAttemptCounter:
    """세션별 로그인 실패 카운터.

    성공하면 0으로 초기화되고, 실패할 때마다 1씩 증가한다.
    """

    max_attempts: int
    failures: int = 0

    def record_failure(self) -> int:
        """실패를 기록하고 현재 실패 횟수를 반환한다."""
        self.failures += 1
        return self.failures

    def reset(self) -> None:
        """성공 시 카운터를 초기화한다."""
        self.failures = 0

    @property
    def exceeded(self) -> bool:
        """실패 횟수가 상한을 넘었는지 여부."""
        return self.failures > self.max_attempts


class SessionAuthenticator:
    """FINRA 로그인 핸드셰이크를 수행하는 인증기.

    로그인 요청 헤더는 인스턴스 생성 시 한 번 고정되며,
    worker가 살아 있는 동안 같은 user-agent를 계속 사용한다.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        login_url: str,
        host: str,
        user_agent: str,
        label: str = "",
    ) -> None:
        """SessionAuthenticator를 초기화한다.

        Args:
            client: 쿠키 저장소가 붙은 worker 전용 HTTP 클라이언트.
            login_url: 로그인 페이지 URL.
            host: 쿠키를 확인할 대상 호스트.
            user_agent: 이번 실행에서 고정으로 사용할 user-agent 문자열.
            label: 로그 접두어 (예: "worker-0").
        """
        self._client = client
        self._login_url = login_url
        self._host = host or urlsplit(login_url).hostname or ""
        self._label = label or "auth"
        self.headers = self._build_login_headers(user_agent)
        self.state = AuthFlag.NONE

    def _build_login_headers(self, user_agent: str) -> dict[str, str]:
        return {
            "host": self._host,
            "user-agent": user_agent,
            "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "accept-language": "en-US,en;q=0.5",
            "accept-encoding": "gzip, deflate",
            "content-type": "application/x-www-form-urlencoded",
            "cache-control": "no-cache,no-cache",
            "referer": self._login_url,
            "connection": "keep-alive",
        }

    def cookie_names(self) -> list[str]:
        """대상 호스트에 해당하는 쿠키 이름 목록을 반환한다."""
        return [
            cookie.name
            for cookie in self._client.cookies.jar
            if _domain_matches(self._host, cookie.domain)
        ]

    def clear_session(self) -> int:
        """대상 호스트의 쿠키를 모두 지우고 지운 개수를 반환한다.

        만료된 세션의 쿠키가 남아 있으면 재로그인 응답과 무관하게
        LOGGED_IN으로 계산되므로, 재로그인 전에 반드시 호출한다.
        다른 호스트의 쿠키는 건드리지 않는다.
        """
        jar = self._client.cookies.jar
        stale = [cookie for cookie in jar if _domain_matches(self._host, cookie.domain)]
        for cookie in stale:
            jar.clear(cookie.domain, cookie.path, cookie.name)
        self.state = AuthFlag.NONE
        logger.debug("[%s] Cleared %d session cookie(s)", self._label, len(stale))
        return len(stale)

    async def attempt(self) -> AuthFlag:
        """로그인 요청을 한 번 보내고 쿠키로 계산한 AuthFlag를 반환한다.

        Raises:
            AuthRequestError: 요청이 네트워크 수준에서 실패한 경우.
        """
        try:
            await self._client.get(self._login_url, headers=self.headers)
        except httpx.HTTPError as exc:
            logger.debug("[%s] Login request error: %s", self._label, exc)
            raise AuthRequestError(f"Login request failed: {exc}") from exc

        self.state = compute_auth_state(self.cookie_names())
        return self.state

    async def login(
        self,
        policy: RetryPolicy,
        counter: LoginAttemptCounter | None = None,
    ) -> int:
        """인증될 때까지 순차적으로 로그인을 시도한다.

        Args:
            policy: 재시도 상한 및 백오프 정책.
            counter: 외부에서 관리하는 카운터. None이면 새로 만든다.

        Returns:
            성공까지 걸린 시도 횟수.

        Raises:
            MaxLoginAttemptsExceeded: 실패 횟수가 ``policy.max_attempts`` 를 넘은 경우.
        """
        if counter is None:
            counter = LoginAttemptCounter(max_attempts=policy.max_attempts)
        attempts = 0
        while True:
            attempts += 1
            try:
                state = await self.attempt()
            except AuthRequestError:
                state = AuthFlag.NONE

            if is_authenticated(state):
                logger.info("[%s] Login successful (attempt: %d)", self._label, attempts)
                counter.reset()
                return attempts

            failures = counter.record_failure()
            if counter.exceeded:
                logger.error(
                    "[%s] MaxLoginAttempts exceeded (%d > %d)",
                    self._label, failures, policy.max_attempts,
                )
                raise MaxLoginAttemptsExceeded(failures, policy.max_attempts)

            logger.debug(
                "[%s] Login fail (attempt: %d; missing: %s)",
                self._label, attempts, missing_flags(state),
            )
            await asyncio.sleep(policy.delay_for(failures))
