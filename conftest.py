"""
Shared pytest fixtures — deterministic clocks and reference payloads.
"""
import json

import pytest


class FakeClock:
    """Manually advanced clock; call it like time.time / time.monotonic."""

    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


VALID_WEBHOOK = {
    "status": "firing",
    "alerts": [
        {
            "fingerprint": "f1",
            "status": "firing",
            "startsAt": "2023-10-01T12:00:00Z",
            "labels": {"alertname": "x"},
        }
    ],
}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def valid_body() -> bytes:
    return json.dumps(VALID_WEBHOOK).encode()
