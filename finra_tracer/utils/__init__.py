"""유틸리티 모듈 패키지."""
from finra_tracer.utils.config import Settings, TargetConfig, get_settings
from finra_tracer.utils.logger import get_logger, setup_logging
from finra_tracer.utils.retry_policy import RetryPolicy

__all__ = [
    "Settings",
    "TargetConfig",
    "get_settings",
    "get_logger",
    "setup_logging",
    "RetryPolicy",
]
