


import os
from typing import Iterator

import pytest

from pulse_bridge.config import AppConfig
from pulse_bridge.telemetry.tracer import Tracer


@pytest.fixture(autouse=True)
def aws_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Set a default region and dummy credentials for moto/boto3 clients."""
    monkeypatch.setenv("AWS_REGION", os.environ.get("AWS_REGION", "us-east-1"))
    monkeypatch.setenv("AWS_DEFAULT_REGION", os.environ.get("AWS_DEFAULT_REGION", "us-east-1"))
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.delenv("CONFIG_PATH", raising=False)
    yield


@pytest.fixture(autouse=True)
def clean_span_stack() -> Iterator[None]:
    """Start and end every test without a current span."""
    tracer = Tracer.get_instance()
    tracer.complete_request_span()
    yield
    tracer.complete_request_span()
    tracer.remove_all_span_lifecycle_listeners()


@pytest.fixture
def config() -> AppConfig:
    """Default config with instant redelivery."""
    return AppConfig(
        redelivery={"max_redelivery_count": 2, "redelivery_delay_ms": 0, "back_off_multiplier": 2},
        sqs={"initial_delay_ms": 0, "delay_ms": 0}
    )
