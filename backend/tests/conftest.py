import os
import sys
from collections import defaultdict

import pytest

# Ensure the backend root (containing the `armada` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from armada import create_app, socketio
from armada.services.coordinator import SessionCoordinator
from armada.services.timers import TimerHandle


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    CORS_ALLOWED_ORIGINS = ['http://localhost:5173']
    SOCKETIO_NAMESPACE = '/ws'
    LOG_LEVEL = 'DEBUG'
    BOARD_SIZE = 10
    GRACE_PERIOD_SEC = 300
    ROOM_TTL_SEC = 600
    RATE_LIMIT_WINDOW_MS = 1000
    RATE_LIMIT_MAX_ACTIONS = 1
    RATE_LIMIT_SWEEP_SEC = 10
    HISTORY_LIMIT = 500
    EVENT_BUFFER_SIZE = 50
    SNAPSHOT_HISTORY = 50


class ManualClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now


class ManualScheduler:
    """Fires delayed callbacks only when the test advances the clock."""

    def __init__(self, clock):
        self.clock = clock
        self._pending = []

    def call_later(self, delay, callback, *args):
        handle = TimerHandle(self.clock() + delay)
        self._pending.append((handle, callback, args))
        return handle

    def advance(self, seconds):
        target = self.clock.now + seconds
        while True:
            due = [p for p in self._pending if p[0].active and p[0].deadline <= target]
            if not due:
                break
            entry = min(due, key=lambda p: p[0].deadline)
            self._pending.remove(entry)
            handle, callback, args = entry
            self.clock.now = max(self.clock.now, handle.deadline)
            handle.fired = True
            callback(*args)
        self.clock.now = target
        self._pending = [p for p in self._pending if p[0].active]

    def pending(self, name=None):
        return [
            handle for handle, callback, _ in self._pending
            if handle.active and (name is None or getattr(callback, '__name__', '') == name)
        ]


class RecordingTransport:
    """Keeps channel membership and what each connection would have received."""

    def __init__(self):
        self.sent = []
        self.channels = defaultdict(set)
        self.inbox = defaultdict(list)

    def send(self, event, payload, to):
        self.sent.append((event, payload, to))
        recipients = self.channels.get(to) if ':' in to else {to}
        for sid in recipients or ():
            self.inbox[sid].append((event, payload))

    def subscribe(self, sid, channel):
        self.channels[channel].add(sid)

    def unsubscribe(self, sid, channel):
        self.channels[channel].discard(sid)

    def events(self, sid, name=None):
        return [payload for event, payload in self.inbox[sid] if name is None or event == name]

    def names(self, sid):
        return [event for event, _ in self.inbox[sid]]

    def clear(self):
        self.sent.clear()
        self.inbox.clear()


@pytest.fixture()
def clock():
    return ManualClock()


@pytest.fixture()
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture()
def transport():
    return RecordingTransport()


@pytest.fixture()
def coordinator(transport, scheduler, clock):
    coord = SessionCoordinator(transport, scheduler, settings={}, clock=clock)
    coord.start()
    return coord


@pytest.fixture()
def flask_app(scheduler, clock):
    application = create_app(TestConfig, scheduler=scheduler, clock=clock)
    with application.app_context():
        yield application


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_factory(flask_app):
    clients = []

    def _make():
        test_client = socketio.test_client(flask_app, namespace='/ws')
        test_client.get_received('/ws')  # drop the greeting
        clients.append(test_client)
        return test_client

    yield _make
    for test_client in clients:
        try:
            if test_client.is_connected('/ws'):
                test_client.disconnect(namespace='/ws')
        except Exception:
            pass
