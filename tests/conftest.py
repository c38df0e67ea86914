from __future__ import annotations

import os
import time
from collections import deque
from types import SimpleNamespace

import pytest

# IMPORTANT:
# Set env BEFORE importing the package (settings are read at import time)
os.environ.setdefault("REMINDER_DATABASE_URL", "sqlite://")
os.environ.setdefault("REMINDER_QUEUE_URL", "memory://")
os.environ.setdefault("REMINDER_METRICS_ENABLED", "false")
os.environ.setdefault("REMINDER_REQUIRE_API_KEY", "false")

from reminder_service import models  # noqa: E402,F401
from reminder_service.db.base import Base  # noqa: E402
from reminder_service.db.session import build_engine, build_session_factory  # noqa: E402
from reminder_service.reminders import repository  # noqa: E402
from reminder_service.reminders.errors import (  # noqa: E402
    DeliveryError,
    SubscriptionGoneError,
    TransportError,
)
from reminder_service.reminders.schemas import (  # noqa: E402
    ReminderCreate,
    SubscriptionCreate,
    SubscriptionKeys,
    SubscriptionPayload,
)


class FakeTransport:
    """In-process stand-in for the queue: records what is sent, replays what is queued."""

    def __init__(self, fail_send: bool = False, fail_bind: bool = False):
        self.fail_send = fail_send
        self.fail_bind = fail_bind
        self.queue = SimpleNamespace(name="fake-dispatch")
        self.sent = []
        self.inbox = deque()
        self.bound = False
        self.bind_calls = 0
        self.unbind_calls = 0

    def bind(self):
        self.bind_calls += 1
        if self.fail_bind:
            raise TransportError("bind refused")
        self.bound = True

    def unbind(self):
        self.unbind_calls += 1
        self.bound = False

    def send(self, message):
        if self.fail_send:
            raise TransportError("broker unavailable")
        self.sent.append(message)

    def receive(self, timeout=None):
        if self.inbox:
            return self.inbox.popleft()
        time.sleep(min(timeout or 0, 0.01))
        return None


class FakeProvider:
    def __init__(self, failing=(), gone=(), crashing=()):
        self.failing = set(failing)
        self.gone = set(gone)
        self.crashing = set(crashing)
        self.calls = []

    def send(self, subscription, reminder):
        self.calls.append((subscription, reminder))
        if subscription.endpoint in self.gone:
            raise SubscriptionGoneError("Endpoint is gone (410)", endpoint=subscription.endpoint, status_code=410)
        if subscription.endpoint in self.failing:
            raise DeliveryError("push service rejected the message", endpoint=subscription.endpoint, status_code=400)
        if subscription.endpoint in self.crashing:
            raise RuntimeError("provider exploded")


@pytest.fixture()
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'reminders.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def family(db):
    """The Smith group with two members, Ana and Bob."""
    group = repository.create_group(db, "Smith")
    ana = repository.create_user(db, "Ana", "ana@example.com")
    bob = repository.create_user(db, "Bob", "bob@example.com")
    repository.add_user_to_group(db, group.id, ana.id)
    repository.add_user_to_group(db, group.id, bob.id)
    return SimpleNamespace(group_id=group.id, ana_id=ana.id, bob_id=bob.id)


@pytest.fixture()
def subscribe(db):
    counter = {"n": 0}

    def _subscribe(user_id: int, endpoint: str | None = None):
        counter["n"] += 1
        endpoint = endpoint or f"https://push.example.com/device/{counter['n']}"
        return repository.create_subscription(
            db,
            user_id,
            SubscriptionCreate(
                title=f"Device {counter['n']}",
                subscription=SubscriptionPayload(
                    endpoint=endpoint,
                    keys=SubscriptionKeys(p256dh=f"p256dh-{counter['n']}", auth=f"auth-{counter['n']}"),
                ),
            ),
        )

    return _subscribe


@pytest.fixture()
def make_reminder(db, family):
    def _make(recipients=None, due: int = 1000, action: str = "attend important meeting"):
        recipients = recipients or [family.ana_id]
        return repository.create_reminder(
            db,
            family.group_id,
            ReminderCreate(recipients=recipients, action=action, due=due),
        )

    return _make


@pytest.fixture()
def status_of(session_factory):
    def _status(reminder_id: int):
        session = session_factory()
        try:
            return repository.get_reminder_status(session, reminder_id)
        finally:
            session.close()

    return _status


@pytest.fixture()
def transport():
    return FakeTransport()


@pytest.fixture()
def provider():
    return FakeProvider()


@pytest.fixture()
def make_transport():
    return FakeTransport


@pytest.fixture()
def make_provider():
    return FakeProvider
