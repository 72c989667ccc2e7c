from datetime import datetime, timedelta

import pytest


T0 = datetime(2024, 5, 1, 12, 0, 0)
DAY = timedelta(hours=24)


class FixedClock:
    """Store clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


@pytest.fixture
def clock():
    return FixedClock(T0)
