"""공용 테스트 픽스처."""

from __future__ import annotations

import pytest

from finra_tracer.utils.config import Settings
from tests.helpers import make_settings


@pytest.fixture
def settings() -> Settings:
    return make_settings()
