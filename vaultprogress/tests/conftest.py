"""Shared fixtures: in-memory store, change feed and controllable clocks."""

import logging
from datetime import datetime, timedelta

import pytest

from vaultprogress.core.store import ProgressStore
from vaultprogress.services.notification import ChangeFeed

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(message)s')


class FakeClock:
    """Monotonic seconds that only move when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class TickingNow:
    """Datetime source for the store; one second later on every call."""

    def __init__(self):
        self.current = datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def feed():
    return ChangeFeed(max_subscriptions=10)


@pytest.fixture
def store(feed):
    return ProgressStore.from_url("sqlite://", feed=feed, now=TickingNow())
