import os
import sys
import pytest
from flask import g

# Ensure the backend root (containing the `pyramid` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from pyramid import create_app, db, socketio


# One fixed variant per puzzle so tests know the right answers
TEST_VARIANTS = {
    'cartouche': [['reed', 'water', 'lion', 'vulture']],
    'nilometer': [{'cubits': 16, 'palms': 3}],
    'stars': [{'shaft': 'north', 'mirrorA': 2, 'mirrorB': 5}],
    'canopic': [{'imsety': 'liver', 'hapi': 'lungs', 'duamutef': 'stomach', 'qebehsenuef': 'intestines'}],
    'trade': [{'cedar': 'byblos', 'incense': 'punt', 'gold': 'nubia', 'turquoise': 'sinai'}],
    'sword_trial': [{'word': 'khopesh'}],
}

ANSWERS = {key: options[0] for key, options in TEST_VARIANTS.items()}


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = ['http://localhost:5173']
    AIR_INITIAL_SEC = 1200
    MAX_PLAYERS = 2
    ROOM_IDLE_TIMEOUT_SEC = 1800
    ROOM_SWEEP_INTERVAL_SEC = 300
    FINAL_RITUAL_POLL_ATTEMPTS = 3
    FINAL_RITUAL_POLL_INTERVAL_SEC = 0
    JANITOR_HEARTBEAT_SEC = 0
    ANSWER_CHECKER = None
    PROGRESSION_GRAPH = None
    PUZZLE_VARIANTS = TEST_VARIANTS


class FakeClock:
    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)

    # The fixture holds one app context open, so test-client requests share `g`;
    # drop Flask-Login's cached user so each request loads its own X-User-Id.
    @application.before_request
    def _reset_login_user():
        g.pop('_login_user', None)

    with application.app_context():
        # Ensure models are imported so tables are created
        import pyramid.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def services(flask_app):
    return flask_app.extensions['pyramid']


@pytest.fixture()
def clock(services):
    fake = FakeClock()
    services.store.clock = fake
    return fake


@pytest.fixture()
def gateway(services):
    gw = services.gateway
    gw.sleep = lambda seconds: None
    return gw


@pytest.fixture()
def room(gateway, clock):
    """A room with alice as P1 and bob as P2."""
    created = gateway.create_room('alice')
    gateway.join_room(created['room']['code'], 'bob')
    return created['room']['id']


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


def as_user(user_id):
    return {'X-User-Id': user_id}
