"""Pytest configuration and fixtures for Yakuza engine tests."""

import asyncio
from typing import Any

import pytest

from yakuza.config import SchedulerSettings, YakuzaSettings
from yakuza.core import Yakuza


class ConcurrencyTracker:
    """Records how work functions overlap in time.

    ``work`` builds coroutine functions that bump a shared counter while they
    run, so tests can assert on peak concurrency and start/finish order.
    """

    def __init__(self):
        self.current: dict[str, int] = {}
        self.peak: dict[str, int] = {}
        self.started: list[str] = []
        self.finished: list[str] = []
        self.calls: dict[str, int] = {}
        self.received: dict[str, dict[str, Any]] = {}

    def work(
        self,
        name: str,
        result: Any = None,
        delay: float = 0.01,
        group: str = "default",
        error: BaseException | None = None,
    ):
        async def _work(params: dict[str, Any], deps: dict[str, Any]) -> Any:
            self.calls[name] = self.calls.get(name, 0) + 1
            self.received[name] = dict(deps)
            self.started.append(name)
            self.current[group] = self.current.get(group, 0) + 1
            self.peak[group] = max(self.peak.get(group, 0), self.current[group])
            try:
                await asyncio.sleep(delay)
            finally:
                self.current[group] -= 1
                self.finished.append(name)
            if error is not None:
                raise error
            return result

        return _work


@pytest.fixture
def settings():
    """Settings with engine defaults, independent of the environment."""
    return YakuzaSettings(scheduler=SchedulerSettings(), log_level="INFO")


@pytest.fixture
def yakuza(settings):
    """Fresh registry for each test."""
    registry = Yakuza(settings)
    yield registry
    registry.clear()


@pytest.fixture
def tracker():
    return ConcurrencyTracker()


@pytest.fixture
def constant():
    """Factory for work functions returning a fixed value."""

    def factory(value: Any):
        async def _work(params: dict[str, Any], deps: dict[str, Any]) -> Any:
            return value

        return _work

    return factory


@pytest.fixture
def failing():
    """Factory for work functions that always raise, counting their calls."""

    def factory(error: BaseException | None = None):
        calls = []

        async def _work(params: dict[str, Any], deps: dict[str, Any]) -> Any:
            calls.append(deps)
            raise error if error is not None else RuntimeError("boom")

        _work.calls = calls
        return _work

    return factory
