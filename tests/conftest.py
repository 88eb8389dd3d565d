"""
Shared fixtures: a temporary sqlite store, a controllable clock and a
notifier that records what would have been pushed.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent  # tests/.. -> project root
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from downto.config import Settings  # noqa: E402
from downto.db import Database  # noqa: E402
from downto.notifier import NotificationDispatcher  # noqa: E402
from downto.service import DowntoService  # noqa: E402
from downto.social import StaticSocialGraph  # noqa: E402

START = datetime(2026, 2, 27, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.sent = []
        self.fail = fail
        self.closed = False

    async def notify(self, user_id, kind, payload):
        if self.fail:
            raise RuntimeError("gateway down")
        self.sent.append((user_id, kind, payload))

    async def close(self):
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def graph():
    return StaticSocialGraph({"alice": ["bob", "carol"]})


@pytest.fixture
def settings(tmp_path):
    return Settings(
        api_key="test-key",
        database_path=tmp_path / "downto.db",
        cron_secret="cron-secret",
        sweep_interval_seconds=0,
    )


@pytest.fixture
def database(settings):
    return Database(settings.database_path)


@pytest.fixture
def service(settings, database, notifier, graph, clock):
    return DowntoService(
        settings,
        database,
        NotificationDispatcher(notifier),
        graph,
        clock=clock,
    )
