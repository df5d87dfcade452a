import threading
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from reminder_service.core.config import Settings
from reminder_service.db.base import Base
from reminder_service.db.session import build_engine, build_session_factory
from reminder_service.main import create_app
from reminder_service.reminders.background import BackgroundTaskQueue
from reminder_service.reminders import models  # noqa: F401


NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingPublisher:
    """Stands in for EventPublisher; remembers every event instead of talking to a broker"""

    def __init__(self, result: bool = True):
        self.result = result
        self.events = []
        self.declared = False
        self._lock = threading.Lock()

    def declare_topology(self) -> None:
        self.declared = True

    def publish_reminder_event(self, event_type, data) -> bool:
        with self._lock:
            self.events.append((event_type, data))
        return self.result

    def of_type(self, event_type):
        return [data for t, data in self.events if t == event_type]


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'reminders.db'}",
        METRICS_ENABLED=False,
        IDEMPOTENCY_WAIT_SECONDS=0.2,
        IDEMPOTENCY_POLL_INTERVAL_SECONDS=0.01,
        BACKGROUND_BACKOFF_SECONDS=0,
    )


@pytest.fixture
def engine(settings):
    engine = build_engine(settings)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def background():
    queue = BackgroundTaskQueue(maxsize=100, workers=1, max_attempts=2, backoff_seconds=0)
    yield queue
    queue.stop()


@pytest.fixture
def app(settings, session_factory, publisher, clock, background):
    return create_app(
        settings=settings,
        session_factory=session_factory,
        publisher=publisher,
        clock=clock,
        background=background,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def reminder_body(**overrides):
    body = {
        "userId": "user-1",
        "title": "Submit assignment",
        "dueAt": "2030-01-02T12:00:00Z",
        "advanceMinutes": 30,
        "metadata": {"course": "CS101"},
    }
    body.update(overrides)
    return body
