"""
재시도 정책

로그인 재시도 횟수 상한과 (선택적) 지수 백오프 간격을 한 곳에서 정의한다.
backoff_base가 0이면 실패 직후 바로 다시 시도한다.
"""

from __future__ import annotations

from dataclasses import dataclass

from finra_tracer.utils.config import Settings


@dataclass(frozen=True)
class RetryPolicy:
    """재시도 정책.

    Attributes:
        max_attempts: 허용되는 실패 횟수. 이 값을 초과하면 치명적 실패로 본다.
        backoff_base: 첫 재시도 전 대기 시간(초). 이후 2배씩 증가한다.
        backoff_max: 대기 시간 상한(초).
    """

    max_attempts: int
    backoff_base: float = 0.0
    backoff_max: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError(f"max_attempts must be >= 0, got {self.max_attempts}")
        if self.backoff_base < 0 or self.backoff_max < 0:
            raise ValueError("backoff values must be >= 0")

    def delay_for(self, failures: int) -> float:
        """failures번째 실패 이후 다음 시도까지 기다릴 시간(초)을 반환한다."""
        if self.backoff_base <= 0 or failures <= 0:
            return 0.0
        return min(self.backoff_base * (2 ** (failures - 1)), self.backoff_max)

    @classmethod
    def for_login(cls, settings: Settings) -> "RetryPolicy":
        """설정값으로 로그인 재시도 정책을 만든다."""
        return cls(
            max_attempts=settings.max_login_attempts,
            backoff_base=settings.login_backoff_seconds,
            backoff_max=settings.login_backoff_max_seconds,
        )
