from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from rollout_verifier.verifier import Clock

START_TIME = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock(Clock):
    """Clock that only moves when slept on or advanced explicitly."""

    def __init__(self, start: datetime = START_TIME) -> None:
        self.current = start
        self.sleeps: List[timedelta] = []

    def now(self) -> datetime:
        return self.current

    def sleep(self, duration: timedelta) -> None:
        self.sleeps.append(duration)
        self.current += duration

    def advance(self, duration: timedelta) -> None:
        self.current += duration


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def no_project_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CLOUD_DEPLOY_PROJECT", raising=False)
