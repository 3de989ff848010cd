"""Authoritative per-room entity table.

All rows live in the SQLAlchemy session; the store adds per-room locks so
mutations against one room are applied one at a time while other rooms
proceed independently. Only the gateway calls the mutation primitives.
"""
import json
import threading
import time
import uuid
from contextlib import contextmanager
from typing import Callable, Dict, List, Optional

from pyramid import db
from pyramid.models import (
    Artifact, BarrierRecord, Door, LessonRead, Player, Progress, Room,
)
from .errors import Conflict, NotFound, Unauthorized


class SessionStore:
    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def now(self) -> float:
        return self.clock()

    def _lock_for(self, room_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(room_id)
        if lock is not None:
            return lock
        # Only rooms that exist get a lock; unknown and collected ids stay out of the registry
        if not room_id or db.session.query(Room.id).filter_by(id=room_id).first() is None:
            raise NotFound(f'room {room_id} not found')
        with self._locks_guard:
            return self._locks.setdefault(room_id, threading.RLock())

    def lock_count(self) -> int:
        with self._locks_guard:
            return len(self._locks)

    @contextmanager
    def room_lock(self, room_id: str):
        lock = self._lock_for(room_id)
        with lock:
            # Drop cached rows so this mutation sees what the previous one committed
            db.session.flush()
            db.session.expire_all()
            yield

    # ---- reads ----

    def get_room(self, room_id: str) -> Room:
        room = db.session.get(Room, room_id) if room_id else None
        if room is None:
            raise NotFound(f'room {room_id} not found')
        return room

    def get_room_by_code(self, code: str) -> Room:
        room = Room.query.filter_by(code=(code or '').strip().upper()).first()
        if room is None:
            raise NotFound('room_not_found')
        return room

    def players(self, room_id: str) -> List[Player]:
        return Player.query.filter_by(room_id=room_id).order_by(Player.role).all()

    def active_players(self, room_id: str) -> List[Player]:
        return [p for p in self.players(room_id) if p.status == 'active']

    def get_player(self, room_id: str, user_id) -> Optional[Player]:
        if user_id is None:
            return None
        return Player.query.filter_by(room_id=room_id, user_id=str(user_id)).first()

    def require_member(self, room: Room, user_id) -> Player:
        player = self.get_player(room.id, user_id)
        if player is None:
            raise Unauthorized('not a member of this room')
        return player

    def get_progress(self, room_id: str, puzzle_key: str) -> Optional[Progress]:
        return Progress.query.filter_by(room_id=room_id, puzzle_key=puzzle_key).first()

    def get_barrier(self, room_id: str, step_key: str) -> Optional[BarrierRecord]:
        return BarrierRecord.query.filter_by(room_id=room_id, step_key=step_key).first()

    def artifact_qty(self, room_id: str, key: str) -> int:
        row = Artifact.query.filter_by(room_id=room_id, key=key).first()
        return row.qty if row else 0

    def get(self, room_id: str) -> dict:
        """Full snapshot of a room, as every client renders it."""
        room = self.get_room(room_id)
        return {
            'room': room.to_dict(),
            'players': [p.to_dict() for p in self.players(room_id)],
            'doors': [d.to_dict() for d in Door.query.filter_by(room_id=room_id).order_by(Door.key).all()],
            'artifacts': [a.to_dict() for a in Artifact.query.filter_by(room_id=room_id).order_by(Artifact.key).all()],
            'progress': [p.to_dict() for p in Progress.query.filter_by(room_id=room_id).order_by(Progress.puzzle_key).all()],
        }

    # ---- lifecycle ----

    def create_room(self, user_id, air_initial: int) -> Room:
        now = self.now()
        room = Room(id=uuid.uuid4().hex, air_initial=air_initial, created_at=now, last_activity=now)
        db.session.add(room)
        db.session.flush()
        db.session.add(Player(room_id=room.id, user_id=str(user_id), role='P1', joined_at=now))
        db.session.flush()
        return room

    def seat_player(self, room: Room, user_id, max_players: int = 2) -> Player:
        """Seat ``user_id`` in ``room``; an already seated user keeps their seat."""
        existing = self.get_player(room.id, user_id)
        if existing is not None:
            return existing
        if room.status == 'ended':
            raise Conflict('room_closed')
        taken = {p.role for p in self.players(room.id)}
        free = [role for role in ('P1', 'P2')[:max_players] if role not in taken]
        if not free:
            raise Conflict('room_full')
        player = Player(room_id=room.id, user_id=str(user_id), role=free[0], joined_at=self.now())
        db.session.add(player)
        db.session.flush()
        return player

    def ensure_doors(self, room_id: str, keys) -> List[Door]:
        created = []
        for key in keys:
            if Door.query.filter_by(room_id=room_id, key=key).first() is None:
                door = Door(room_id=room_id, key=key, state='locked')
                db.session.add(door)
                created.append(door)
        db.session.flush()
        return created

    def touch(self, room: Room) -> None:
        room.last_activity = self.now()
        db.session.add(room)

    def idle_room_ids(self, cutoff: float) -> List[str]:
        return [r.id for r in Room.query.filter(Room.last_activity < cutoff).all()]

    def delete_room(self, room_id: str) -> bool:
        room = db.session.get(Room, room_id)
        if room is None:
            return False
        for model in (LessonRead, BarrierRecord, Progress, Artifact, Door, Player):
            model.query.filter_by(room_id=room_id).delete(synchronize_session=False)
        db.session.delete(room)
        db.session.flush()
        with self._locks_guard:
            self._locks.pop(room_id, None)
        return True

    # ---- mutation primitives (gateway only) ----

    def set_started(self, room: Room) -> bool:
        """First writer wins; later starts leave ``started_at`` alone."""
        if room.started_at is not None:
            return False
        room.started_at = self.now()
        if room.status == 'waiting':
            room.status = 'active'
        db.session.add(room)
        return True

    def set_phase(self, room: Room, phase: str) -> bool:
        order = ('intro', 'play', 'ended')
        if order.index(phase) <= order.index(room.phase):
            return False
        room.phase = phase
        db.session.add(room)
        return True

    def open_door(self, room_id: str, key: str) -> bool:
        """Upsert the door as open; True only on the locked -> open edge."""
        door = Door.query.filter_by(room_id=room_id, key=key).first()
        if door is None:
            db.session.add(Door(room_id=room_id, key=key, state='open'))
            db.session.flush()
            return True
        if door.state == 'open':
            return False
        door.state = 'open'
        db.session.add(door)
        return True

    def add_artifact(self, room_id: str, key: str, qty: int = 1) -> int:
        row = Artifact.query.filter_by(room_id=room_id, key=key).first()
        if row is None:
            row = Artifact(room_id=room_id, key=key, qty=0)
        row.qty = (row.qty or 0) + qty
        db.session.add(row)
        db.session.flush()
        return row.qty

    def add_air_bonus(self, room: Room, delta: int) -> int:
        room.air_bonus = (room.air_bonus or 0) + delta
        db.session.add(room)
        return room.air_bonus

    def mark_solved(self, room_id: str, puzzle_key: str, payload=None) -> Progress:
        """Flip a puzzle to solved. Conflict when it already is."""
        row = self.get_progress(room_id, puzzle_key)
        if row is not None and row.solved:
            raise Conflict(f'{puzzle_key} already solved')
        if row is None:
            row = Progress(room_id=room_id, puzzle_key=puzzle_key)
        row.solved = True
        row.solved_at = self.now()
        row.payload = json.dumps(payload) if payload is not None else None
        db.session.add(row)
        db.session.flush()
        return row

    def mark_lesson_read(self, room_id: str, puzzle_key: str, user_id) -> bool:
        if LessonRead.query.filter_by(room_id=room_id, puzzle_key=puzzle_key, user_id=str(user_id)).first():
            return False
        db.session.add(LessonRead(room_id=room_id, puzzle_key=puzzle_key, user_id=str(user_id), read_at=self.now()))
        db.session.flush()
        return True

    def set_player_status(self, player: Player, status: str) -> bool:
        # active -> down/escaped only; both are terminal
        if player.status != 'active' or status == 'active':
            return False
        player.status = status
        db.session.add(player)
        return True

    def ensure_barrier(self, room_id: str, step_key: str, required_count: int) -> BarrierRecord:
        row = self.get_barrier(room_id, step_key)
        if row is None:
            row = BarrierRecord(room_id=room_id, step_key=step_key, ready_count=0,
                                required_count=required_count, ready_roles=json.dumps([]))
            db.session.add(row)
            db.session.flush()
        return row

    def save(self, row) -> None:
        db.session.add(row)
