"""세션 인증 테스트."""

from __future__ import annotations

import itertools

import httpx
import pytest

from finra_tracer.auth.session_auth import (
    REQUIRED_COOKIES,
    AuthFlag,
    AuthRequestError,
    LoginAttemptCounter,
    MaxLoginAttemptsExceeded,
    SessionAuthenticator,
    compute_auth_state,
    is_authenticated,
    missing_flags,
)
from finra_tracer.utils.retry_policy import RetryPolicy
from tests.helpers import LOGIN_URL, login_response

HOST = "finra-markets.morningstar.com"


def _authenticator(handler) -> tuple[SessionAuthenticator, httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    auth = SessionAuthenticator(client, LOGIN_URL, HOST, "pytest-agent/1.0", label="test")
    return auth, client


class TestAuthState:
    def test_all_required_cookies_authenticate(self):
        state = compute_auth_state(REQUIRED_COOKIES)
        assert state == AuthFlag.LOGGED_IN
        assert is_authenticated(state)

    def test_every_proper_subset_is_unauthenticated(self):
        names = list(REQUIRED_COOKIES)
        for size in range(len(names)):
            for subset in itertools.combinations(names, size):
                assert not is_authenticated(compute_auth_state(subset)), subset

    def test_order_duplicates_and_unknown_names_are_ignored(self):
        names = list(reversed(REQUIRED_COOKIES)) + ["UsrID", "JSESSIONID", "tracking"]
        assert compute_auth_state(names) == AuthFlag.LOGGED_IN

    def test_missing_flags(self):
        state = compute_auth_state(["__cfduid", "qs_wsid", "Instid", "__cfruid", "SessionID"])
        assert missing_flags(state) == AuthFlag.USRID | AuthFlag.USRNAME
        assert missing_flags(AuthFlag.LOGGED_IN) == AuthFlag.NONE

    def test_cookie_names_are_case_sensitive(self):
        assert compute_auth_state(["sessionid", "usrid"]) == AuthFlag.NONE


class TestLoginAttemptCounter:
    def test_exceeded_only_above_max(self):
        counter = LoginAttemptCounter(max_attempts=2)
        counter.record_failure()
        counter.record_failure()
        assert not counter.exceeded
        counter.record_failure()
        assert counter.exceeded

    def test_reset(self):
        counter = LoginAttemptCounter(max_attempts=1)
        counter.record_failure()
        counter.record_failure()
        counter.reset()
        assert counter.failures == 0
        assert not counter.exceeded


class TestSessionAuthenticator:
    @pytest.mark.asyncio
    async def test_attempt_reads_cookie_jar(self):
        seen_headers = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen_headers.append(request.headers)
            return login_response()

        auth, client = _authenticator(handler)
        async with client:
            state = await auth.attempt()

        assert state == AuthFlag.LOGGED_IN
        assert auth.state == AuthFlag.LOGGED_IN
        assert seen_headers[0]["user-agent"] == "pytest-agent/1.0"
        assert seen_headers[0]["referer"] == LOGIN_URL

    @pytest.mark.asyncio
    async def test_status_code_does_not_matter(self):
        auth, client = _authenticator(lambda request: login_response(status_code=500))
        async with client:
            assert await auth.attempt() == AuthFlag.LOGGED_IN

    @pytest.mark.asyncio
    async def test_cookies_for_other_hosts_are_ignored(self):
        auth, client = _authenticator(lambda request: login_response(["__cfduid"]))
        for name in REQUIRED_COOKIES:
            client.cookies.set(name, "x", domain="example.com")
        async with client:
            state = await auth.attempt()
        assert state == AuthFlag.CFDUID

    @pytest.mark.asyncio
    async def test_network_error_raises_auth_request_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        auth, client = _authenticator(handler)
        async with client:
            with pytest.raises(AuthRequestError):
                await auth.attempt()

    @pytest.mark.asyncio
    async def test_login_retries_until_all_cookies_present(self):
        # 요청마다 쿠키가 하나씩 늘어난다
        names = list(REQUIRED_COOKIES)
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return login_response(names[: len(calls) + 3])

        auth, client = _authenticator(handler)
        async with client:
            attempts = await auth.login(RetryPolicy(max_attempts=5))

        assert attempts == 4
        assert len(calls) == 4

    @pytest.mark.asyncio
    async def test_login_ceiling(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return login_response(["__cfduid", "qs_wsid"])

        auth, client = _authenticator(handler)
        counter = LoginAttemptCounter(max_attempts=3)
        async with client:
            with pytest.raises(MaxLoginAttemptsExceeded) as excinfo:
                await auth.login(RetryPolicy(max_attempts=3), counter)

        assert len(calls) == 4
        assert excinfo.value.attempts == 4
        assert excinfo.value.max_attempts == 3
        assert counter.exceeded

    @pytest.mark.asyncio
    async def test_clear_session_forces_fresh_decision(self):
        responses = [login_response(), login_response(["__cfduid"])]
        auth, client = _authenticator(lambda request: responses.pop(0))
        client.cookies.set("UsrID", "other", domain="example.com")

        async with client:
            assert await auth.attempt() == AuthFlag.LOGGED_IN
            assert auth.clear_session() == len(REQUIRED_COOKIES)
            assert auth.state == AuthFlag.NONE
            assert await auth.attempt() == AuthFlag.CFDUID

        assert client.cookies.get("UsrID", domain="example.com") == "other"
