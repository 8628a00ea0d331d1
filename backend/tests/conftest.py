import logging
import os
import random
import sys
from collections import namedtuple

import pytest

# Ensure the backend root (containing the `quizcast` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from config import Config
from quizcast import create_app, db, socketio
from quizcast.services.games.coordinator import GameCoordinator
from quizcast.services.games.scheduler import TimerHandle


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    START_BACKGROUND_TASKS = False
    NONCRITICAL_MIN_INTERVAL_MS = 0
    SOCKETIO_NAMESPACE = '/'
    PUBLIC_BASE_URL = 'http://quiz.test'


def config_dict(config_class=TestConfig) -> dict:
    return {k: getattr(config_class, k) for k in dir(config_class) if k.isupper()}


class FakeClock:
    """Monotonic milliseconds that only move when told to."""

    def __init__(self, start: int = 1_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now


class ManualScheduler:
    """Deterministic stand-in for BackgroundScheduler.

    ``advance(ms)`` moves the clock forward, firing every due timer in
    due-time order with the clock set to that timer's due time.
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self._pending = []
        self._seq = 0

    def _add(self, due, handle, fn, args, interval):
        self._seq += 1
        self._pending.append((due, self._seq, handle, fn, args, interval))

    def call_later(self, delay_ms, fn, *args):
        handle = TimerHandle(delay_ms)
        self._add(self.clock.now + delay_ms, handle, fn, args, None)
        return handle

    def start_periodic(self, interval_ms, fn, name='task'):
        handle = TimerHandle(interval_ms)
        self._add(self.clock.now + interval_ms, handle, fn, (), interval_ms)
        return handle

    def pending(self):
        return [e for e in self._pending if not e[2].cancelled]

    def advance(self, ms: int) -> None:
        target = self.clock.now + ms
        while True:
            due = [e for e in self.pending() if e[0] <= target]
            if not due:
                break
            entry = min(due, key=lambda e: (e[0], e[1]))
            self._pending.remove(entry)
            when, _, handle, fn, args, interval = entry
            self.clock.now = when
            if interval:
                self._add(when + interval, handle, fn, args, interval)
            handle.fired = True
            fn(*args)
        self.clock.now = target
        self._pending = self.pending()

    def stop(self) -> None:
        for entry in self._pending:
            if entry[5]:
                entry[2].cancel()


Emitted = namedtuple('Emitted', 'event data to skip_sid')


class FakeSocketIO:
    """Records what the router emits."""

    def __init__(self):
        self.sent = []

    def emit(self, event, data=None, to=None, namespace=None, skip_sid=None):
        self.sent.append(Emitted(event, data, to, skip_sid))

    def to(self, sid, event=None):
        return [e for e in self.sent if e.to == sid and (event is None or e.event == event)]

    def last(self, sid, event):
        matches = self.to(sid, event)
        return matches[-1].data if matches else None

    def names(self, sid):
        return [e.event for e in self.sent if e.to == sid]

    def clear(self):
        self.sent = []


class RecordingResults:
    def __init__(self):
        self.saved = []

    def save(self, summary):
        self.saved.append(summary)
        return len(self.saved)


def choice_question(**overrides):
    question = {
        'question': 'Capital of France?',
        'type': 'single-choice',
        'options': ['Berlin', 'Paris', 'Rome', 'Madrid'],
        'correctIndex': 1,
        'timeLimitMs': 20000,
        'difficulty': 'medium',
    }
    question.update(overrides)
    return question


def make_quiz(*questions, title='Geography'):
    return {'title': title, 'questions': list(questions) or [choice_question()]}


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture()
def fake_sio():
    return FakeSocketIO()


@pytest.fixture()
def results():
    return RecordingResults()


@pytest.fixture()
def connected():
    """Connection ids the fake transport considers alive."""
    return set()


@pytest.fixture()
def coordinator(fake_sio, clock, scheduler, results, connected):
    return GameCoordinator(
        fake_sio, config_dict(), logging.getLogger('quizcast.tests'),
        results=results, scheduler=scheduler, clock=clock, rng=random.Random(1234),
        is_connected=lambda sid: sid in connected,
    )


@pytest.fixture()
def flask_app(clock, scheduler):
    application = create_app(TestConfig, scheduler=scheduler, clock=clock, rng=random.Random(99))
    with application.app_context():
        # Ensure models are imported so tables are created
        import quizcast.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_factory(flask_app):
    clients = []

    def _make():
        test_client = socketio.test_client(flask_app, flask_test_client=flask_app.test_client())
        test_client.get_received()
        clients.append(test_client)
        return test_client

    yield _make
    for test_client in clients:
        if test_client.is_connected():
            test_client.disconnect()
