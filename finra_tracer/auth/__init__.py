"""세션 인증 모듈 - 로그인 핸드셰이크, 쿠키 기반 AuthFlag 계산"""

from finra_tracer.auth.session_auth import (
    AuthError,
    AuthFlag,
    AuthRequestError,
    LoginAttemptCounter,
    MaxLoginAttemptsExceeded,
    SessionAuthenticator,
    compute_auth_state,
    is_authenticated,
    missing_flags,
)

__all__ = [
    "AuthError",
    "AuthFlag",
    "AuthRequestError",
    "LoginAttemptCounter",
    "MaxLoginAttemptsExceeded",
    "SessionAuthenticator",
    "compute_auth_state",
    "is_authenticated",
    "missing_flags",
]
