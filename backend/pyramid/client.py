"""Client-side view of a room.

``ClientCache`` holds the last snapshot a client pulled. It never writes:
every change goes through the server's API, and the cache catches up when a
``refresh`` signal arrives or its periodic poll fires. Transient fetch
failures keep the last snapshot and are retried on the next tick.
"""
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import requests
import socketio as socketio_client

from pyramid.services.rooms.barrier import START_STEP, wait_for_barrier
from pyramid.services.rooms.errors import (
    Conflict, InvalidArgument, NotFound, RoomError, Unauthorized,
)

logger = logging.getLogger(__name__)

_ERRORS_BY_STATUS = {
    400: InvalidArgument,
    403: Unauthorized,
    404: NotFound,
    409: Conflict,
}


class ClientCache:
    def __init__(
        self,
        fetch_snapshot: Callable[[], Dict[str, Any]],
        fetch_air: Optional[Callable[[], int]] = None,
        poll_interval: float = 4.0,
        air_interval: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch_snapshot = fetch_snapshot
        self._fetch_air = fetch_air
        self.poll_interval = poll_interval
        self.air_interval = air_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot: Optional[Dict[str, Any]] = None
        self._air: Optional[int] = None
        self._next_poll = 0.0
        self._next_air = 0.0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.expired = False
        self.version = 0

    # ---- refreshing ----

    def refresh(self) -> bool:
        """Pull a full snapshot. False when the pull failed or the room is gone."""
        try:
            snapshot = self._fetch_snapshot()
        except NotFound:
            if not self.expired:
                logger.info("room expired; keeping last snapshot for display")
            self.expired = True
            return False
        except Exception as exc:
            logger.debug(f"[refresh-failed] {exc!r}")
            return False
        with self._lock:
            self._snapshot = snapshot
            self.version += 1
        self._next_poll = self._clock() + self.poll_interval
        return True

    def refresh_air(self) -> bool:
        if self._fetch_air is None:
            return False
        try:
            value = self._fetch_air()
        except NotFound:
            self.expired = True
            return False
        except Exception as exc:
            logger.debug(f"[air-failed] {exc!r}")
            return False
        with self._lock:
            self._air = int(value)
        self._next_air = self._clock() + self.air_interval
        return True

    def on_signal(self, event: str, payload: Any = None) -> bool:
        # Payloads are hints only; state always comes from a fresh pull
        if event != 'refresh':
            return False
        return self.refresh()

    def tick(self) -> None:
        """One poll step: pull whatever is due."""
        now = self._clock()
        if now >= self._next_poll:
            if not self.refresh():
                self._next_poll = now + self.poll_interval
        if self._fetch_air is not None and now >= self._next_air:
            if not self.refresh_air():
                self._next_air = now + self.air_interval

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name='room-cache-poll', daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 1.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        step = min(self.poll_interval, self.air_interval) if self._fetch_air else self.poll_interval
        while not self._stop.is_set():
            self.tick()
            if self.expired:
                break
            self._stop.wait(max(0.05, step))

    # ---- read accessors ----

    def _section(self, name) -> List[Dict[str, Any]]:
        with self._lock:
            if not self._snapshot:
                return []
            return list(self._snapshot.get(name) or [])

    @property
    def snapshot(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._snapshot

    @property
    def room(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            return (self._snapshot or {}).get('room')

    @property
    def players(self):
        return self._section('players')

    @property
    def doors(self):
        return self._section('doors')

    @property
    def artifacts(self):
        return self._section('artifacts')

    @property
    def progress(self):
        return self._section('progress')

    @property
    def air(self) -> Optional[int]:
        with self._lock:
            return self._air

    def door_open(self, key: str) -> bool:
        return any(d['key'] == key and d['state'] == 'open' for d in self.doors)

    def artifact_qty(self, key: str) -> int:
        return sum(a.get('qty') or 0 for a in self.artifacts if a['key'] == key)

    def puzzle_solved(self, key: str) -> bool:
        return any(p['puzzle_key'] == key and p['solved'] for p in self.progress)

    def player_for(self, user_id) -> Optional[Dict[str, Any]]:
        for p in self.players:
            if str(p['user_id']) == str(user_id):
                return p
        return None

    @property
    def ending(self) -> Optional[str]:
        for p in self.progress:
            if p['puzzle_key'] == 'maat' and p['solved']:
                return (p.get('payload') or {}).get('ending')
        return None


class HttpRoomApi:
    """Talks to the room API over HTTP on behalf of one user."""

    def __init__(self, base_url: str, user_id: str, room_id: Optional[str] = None,
                 session: Optional[requests.Session] = None, timeout: float = 5.0):
        self.base_url = base_url.rstrip('/')
        self.user_id = str(user_id)
        self.room_id = room_id
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method, path, payload=None):
        url = f"{self.base_url}/api/rooms{path}"
        resp = self.session.request(
            method, url, json=payload, headers={'X-User-Id': self.user_id}, timeout=self.timeout,
        )
        if resp.status_code in _ERRORS_BY_STATUS:
            try:
                message = resp.json().get('error')
            except ValueError:
                message = resp.text
            raise _ERRORS_BY_STATUS[resp.status_code](message)
        if resp.status_code >= 500:
            raise RoomError(f'server error {resp.status_code}')
        resp.raise_for_status()
        return resp.json()

    def _room_path(self, suffix=''):
        if not self.room_id:
            raise InvalidArgument('no room selected')
        return f"/{self.room_id}{suffix}"

    # lobby
    def create_room(self):
        data = self._request('POST', '/create')
        self.room_id = data['room']['id']
        return data

    def join_room(self, code):
        data = self._request('POST', '/join', {'code': code})
        self.room_id = data['room']['id']
        return data

    # reads
    def get_snapshot(self):
        return self._request('GET', self._room_path('/state'))

    def get_air_seconds(self) -> int:
        return int(self._request('GET', self._room_path('/air'))['air_seconds'])

    def get_barrier_status(self, step_key=START_STEP):
        return self._request('GET', self._room_path(f'/barriers/{step_key}'))

    # mutations
    def init_room_entities(self):
        return self._request('POST', self._room_path('/init'))

    def start_room(self):
        return self._request('POST', self._room_path('/start'))

    def mark_lesson_read(self, puzzle_key):
        return self._request('POST', self._room_path(f'/lessons/{puzzle_key}/read'))

    def solve_puzzle(self, puzzle_key, answer):
        return self._request('POST', self._room_path(f'/puzzles/{puzzle_key}/solve'), {'answer': answer})

    def grant_artifact(self, key, qty=1):
        return self._request('POST', self._room_path(f'/artifacts/{key}'), {'qty': qty})

    def open_door(self, key):
        return self._request('POST', self._room_path(f'/doors/{key}/open'))

    def increment_air(self, delta):
        return self._request('POST', self._room_path('/air'), {'delta': delta})

    def set_required_ready(self, count, step_key=START_STEP):
        return self._request('POST', self._room_path(f'/barriers/{step_key}/required'), {'count': count})

    def mark_ready(self, step_key):
        return self._request('POST', self._room_path(f'/barriers/{step_key}/ready'))

    def perform_final(self, mode, item=None):
        payload = {'mode': mode}
        if item:
            payload['item'] = item
        return self._request('POST', self._room_path('/final'), payload)

    def announce(self):
        return self._request('POST', self._room_path('/announce'))

    def wait_for_partner(self, step_key=START_STEP, attempts=12, interval=1.5):
        """Poll the barrier until everyone is ready or the budget runs out."""
        return wait_for_barrier(lambda: self.get_barrier_status(step_key), attempts=attempts, interval=interval)

    def cache(self, poll_interval=4.0, air_interval=2.0) -> ClientCache:
        return ClientCache(self.get_snapshot, self.get_air_seconds,
                           poll_interval=poll_interval, air_interval=air_interval)


class SignalListener:
    """Subscribes a ClientCache to the room's refresh signals."""

    def __init__(self, cache: ClientCache, room_id: str, user_id: str, client=None):
        self.cache = cache
        self.room_id = room_id
        self.user_id = str(user_id)
        self.client = client or socketio_client.Client(reconnection=True)
        self.client.on('refresh', self._on_refresh, namespace='/ws')
        self.client.on('session_ended', self._on_session_ended, namespace='/ws')
        self.client.on('connect', self._on_connect, namespace='/ws')

    def _on_connect(self):
        self.client.emit('join_room', {'room_id': self.room_id, 'user_id': self.user_id}, namespace='/ws')
        self.client.emit('announce', {'room_id': self.room_id}, namespace='/ws')
        # Anything missed while disconnected
        self.cache.refresh()

    def _on_refresh(self, data=None):
        self.cache.on_signal('refresh', data)

    def _on_session_ended(self, data=None):
        self.cache.refresh()

    def connect(self, base_url: str):
        self.client.connect(base_url, namespaces=['/ws'])

    def disconnect(self):
        self.client.disconnect()
