"""RetryPolicy 테스트."""

from __future__ import annotations

import pytest

from finra_tracer.utils.retry_policy import RetryPolicy


class TestRetryPolicy:
    def test_immediate_by_default(self):
        policy = RetryPolicy(max_attempts=5)
        assert [policy.delay_for(n) for n in range(1, 4)] == [0.0, 0.0, 0.0]

    def test_exponential_backoff_is_capped(self):
        policy = RetryPolicy(max_attempts=5, backoff_base=1.0, backoff_max=5.0)
        assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_rejects_negative_values(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=-1)
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=1, backoff_base=-0.5)

    def test_for_login(self, settings):
        policy = RetryPolicy.for_login(
            settings.model_copy(update={"max_login_attempts": 3, "login_backoff_seconds": 0.5})
        )
        assert policy == RetryPolicy(max_attempts=3, backoff_base=0.5, backoff_max=30.0)
