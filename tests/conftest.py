"""Shared fixtures: a controllable clock and a container wired to in-memory stores."""

from datetime import datetime, timedelta, timezone

import pytest

from supplymesh.container import build_container
from supplymesh.settings import Settings

T0 = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, current: datetime = T0) -> None:
        self.current = current

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(database_url=None)


@pytest.fixture
def container(settings, clock):
    return build_container(settings, clock=clock)
