import pytest
import requests

from conftest import ANSWERS, FakeClock, as_user
from pyramid.client import ClientCache, HttpRoomApi, SignalListener
from pyramid.services.rooms.errors import Conflict, NotFound, RoomError


class FlakyFetch:
    def __init__(self, snapshots):
        self.snapshots = list(snapshots)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        item = self.snapshots.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _snap(doors=(), progress=()):
    return {
        'room': {'id': 'r1', 'status': 'active'},
        'players': [{'user_id': 'alice', 'role': 'P1', 'status': 'active'}],
        'doors': [{'key': k, 'state': 'open'} for k in doors],
        'artifacts': [{'key': 'shabti', 'qty': 1}],
        'progress': list(progress),
    }


def test_transient_failures_keep_last_snapshot():
    fetch = FlakyFetch([_snap(), requests.ConnectionError('down'), _snap(doors=['ankh_door'])])
    cache = ClientCache(fetch)
    assert cache.refresh() is True
    assert cache.refresh() is False
    assert cache.room == {'id': 'r1', 'status': 'active'}
    assert not cache.door_open('ankh_door')
    assert cache.refresh() is True
    assert cache.door_open('ankh_door')
    assert cache.version == 2


def test_expired_room():
    cache = ClientCache(FlakyFetch([_snap(), NotFound('gone')]))
    cache.refresh()
    assert cache.refresh() is False
    assert cache.expired is True
    # last snapshot stays readable
    assert cache.artifact_qty('shabti') == 1


def test_signal_triggers_refresh():
    fetch = FlakyFetch([_snap(), _snap(doors=['vent_grate'])])
    cache = ClientCache(fetch)
    cache.refresh()
    assert cache.on_signal('presence', {'role': 'P2'}) is False
    assert cache.on_signal('refresh', {'room_id': 'r1'}) is True
    assert cache.door_open('vent_grate')
    assert fetch.calls == 2


def test_tick_polls_on_schedule():
    clock = FakeClock(start=0.0)
    fetch = FlakyFetch([_snap(), _snap(), _snap()])
    airs = iter([1200, 1198])
    cache = ClientCache(fetch, lambda: next(airs), poll_interval=4.0, air_interval=2.0, clock=clock)
    cache.tick()
    assert (fetch.calls, cache.air) == (1, 1200)
    clock.advance(2)
    cache.tick()
    assert (fetch.calls, cache.air) == (1, 1198)
    clock.advance(2)
    cache.tick()
    assert fetch.calls == 2


def test_accessors():
    ending = {'puzzle_key': 'maat', 'solved': True, 'payload': {'ending': 'solo', 'used': 'bronze_khopesh'}}
    cache = ClientCache(FlakyFetch([_snap(progress=[ending])]))
    assert cache.players == []
    assert cache.ending is None
    cache.refresh()
    assert cache.puzzle_solved('maat')
    assert cache.ending == 'solo'
    assert cache.player_for('alice')['role'] == 'P1'
    assert cache.player_for('bob') is None


def test_cache_over_flask_client(client, gateway, room):
    def fetch():
        res = client.get(f'/api/rooms/{room}/state', headers=as_user('bob'))
        if res.status_code == 404:
            raise NotFound(res.get_json()['error'])
        return res.get_json()

    cache = ClientCache(fetch)
    cache.refresh()
    assert not cache.puzzle_solved('cartouche')

    gateway.solve_puzzle(room, 'alice', 'cartouche', ANSWERS['cartouche'])
    assert cache.on_signal('refresh') is True
    assert cache.puzzle_solved('cartouche')
    assert cache.door_open('ankh_door')
    assert cache.artifact_qty('ankh_key') == 1


class StubResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body
        self.text = str(body)

    def json(self):
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(self.status_code)


class StubSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, json=None, headers=None, timeout=None):
        self.requests.append((method, url, json, headers))
        return self.responses.pop(0)


def test_http_api_requests():
    session = StubSession([
        StubResponse(201, {'room': {'id': 'r1', 'code': 'ABC234'}, 'player': {'role': 'P1'}}),
        StubResponse(200, {'correct': False}),
        StubResponse(200, {'air_seconds': 1180}),
    ])
    api = HttpRoomApi('http://game.local/', 'alice', session=session)
    api.create_room()
    assert api.room_id == 'r1'
    assert api.solve_puzzle('stars', {'shaft': 'east'}) == {'correct': False}
    assert api.get_air_seconds() == 1180
    method, url, payload, headers = session.requests[1]
    assert (method, url) == ('POST', 'http://game.local/api/rooms/r1/puzzles/stars/solve')
    assert payload == {'answer': {'shaft': 'east'}}
    assert headers == {'X-User-Id': 'alice'}


def test_http_api_maps_errors():
    session = StubSession([
        StubResponse(409, {'error': 'room_full', 'code': 'conflict'}),
        StubResponse(404, {'error': 'room r1 not found', 'code': 'not_found'}),
        StubResponse(502, {}),
    ])
    api = HttpRoomApi('http://game.local', 'carol', room_id='r1', session=session)
    with pytest.raises(Conflict) as exc:
        api.join_room('ABC234')
    assert exc.value.message == 'room_full'
    with pytest.raises(NotFound):
        api.get_snapshot()
    with pytest.raises(RoomError):
        api.start_room()


def test_http_api_needs_room():
    api = HttpRoomApi('http://game.local', 'alice', session=StubSession([]))
    with pytest.raises(RoomError):
        api.get_snapshot()


class FakeSocket:
    def __init__(self):
        self.handlers = {}
        self.emitted = []
        self.connected_to = None

    def on(self, event, handler, namespace=None):
        self.handlers[(namespace, event)] = handler

    def emit(self, event, data=None, namespace=None):
        self.emitted.append((namespace, event, data))

    def connect(self, url, namespaces=None):
        self.connected_to = (url, namespaces)
        self.handlers[('/ws', 'connect')]()

    def disconnect(self):
        self.connected_to = None

    def fire(self, event, data=None):
        self.handlers[('/ws', event)](data)


def test_signal_listener_joins_and_announces():
    fetch = FlakyFetch([_snap()])
    socket = FakeSocket()
    listener = SignalListener(ClientCache(fetch), 'r1', 'alice', client=socket)
    listener.connect('http://game.local')

    assert socket.connected_to == ('http://game.local', ['/ws'])
    assert socket.emitted == [
        ('/ws', 'join_room', {'room_id': 'r1', 'user_id': 'alice'}),
        ('/ws', 'announce', {'room_id': 'r1'}),
    ]
    # Catch-up pull on (re)connect
    assert fetch.calls == 1


def test_signal_listener_refreshes_cache():
    fetch = FlakyFetch([_snap(), _snap(doors=['light_shaft']), NotFound('gone')])
    socket = FakeSocket()
    cache = ClientCache(fetch)
    cache.refresh()
    SignalListener(cache, 'r1', 'alice', client=socket)

    socket.fire('refresh', {'room_id': 'r1', 'doors': 'ignored'})
    assert cache.door_open('light_shaft')
    socket.fire('session_ended', {'room_id': 'r1'})
    assert cache.expired is True
    assert fetch.calls == 3
