"""Shared pytest fixtures for all test types."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from speech_services.baidu.rate_limiter import reset_rate_limiters
from speech_services.config import (
    AzureSettings,
    BaiduSettings,
    Settings,
    XFYunIATSettings,
    XFYunISESettings,
    XFYunOTSSettings,
    XFYunTTSSettings,
)
from tests.unit.mocks.mock_transport import MockConnector, MockTransport


@pytest.fixture
def settings() -> Settings:
    """Settings with every credential filled in."""
    creds = {"app_id": "app123", "api_key": "key456", "api_secret": "secret789"}
    return Settings(
        xfyun_iat=XFYunIATSettings(**creds),
        xfyun_ise=XFYunISESettings(**creds),
        xfyun_tts=XFYunTTSSettings(**creds),
        xfyun_ots=XFYunOTSSettings(**creds),
        baidu=BaiduSettings(app_id="cuid-1", key="bkey", secret="bsecret"),
        azure=AzureSettings(region="eastasia", subscription_key="azkey"),
    )


@pytest.fixture
def transport() -> MockTransport:
    return MockTransport()


@pytest.fixture
def connector(transport: MockTransport) -> MockConnector:
    return MockConnector(transport)


@pytest.fixture(autouse=True)
def _fresh_rate_limiters() -> Iterator[None]:
    """Rate limiters are process-wide; isolate them per test."""
    reset_rate_limiters()
    yield
    reset_rate_limiters()
