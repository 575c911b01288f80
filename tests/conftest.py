"""Shared fixtures for the autoheal tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from autoheal.models import Alert, HealingRule


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_alert(status="firing", labels=None, annotations=None, **kwargs) -> Alert:
    return Alert(status=status, labels=labels or {}, annotations=annotations or {}, **kwargs)


def make_rule(name="test-rule", **kwargs) -> HealingRule:
    return HealingRule(name=name, **kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def metrics():
    """Metrics sink that records the calls."""
    return MagicMock()


@pytest.fixture
def runner():
    """Action runner that succeeds."""
    mock = MagicMock()
    mock.run_action = AsyncMock(return_value=None)
    return mock
