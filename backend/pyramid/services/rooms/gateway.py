"""Single entry point for every client-initiated change to a room.

Each operation validates its arguments, takes the room lock, re-reads the
room, applies its change, commits, and only then signals the room's clients
to re-fetch. Every operation can be retried: repeats either find the change
already applied (and report the current state) or, for the raw additive
primitives, are expected to be gated by the caller behind a puzzle's
``solved`` transition.
"""
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional

from flask import current_app, has_app_context

from pyramid import db
from .air import room_air_seconds, validate_air_delta
from .barrier import (
    RITUAL_STEP, START_STEP, BarrierCoordinator, validate_step_key, wait_for_barrier,
)
from .ending import EndingResolver, validate_mode
from .errors import InvalidArgument, Unauthorized


def _log(message):
    if has_app_context():
        current_app.logger.info(message)


def _require_key(value, name='key'):
    if not isinstance(value, str) or not value.strip() or len(value) > 64:
        raise InvalidArgument(f'{name} is required')
    return value.strip()


def _require_positive_int(value, name):
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidArgument(f'{name} must be a positive integer')
    return value


@dataclass
class Mutation:
    room: object
    player: object
    changed: bool = True


class MutationGateway:
    def __init__(self, store, graph, channel, config=None):
        config = config or {}
        self.store = store
        self.graph = graph
        self.channel = channel
        self.air_initial = int(config.get('AIR_INITIAL_SEC', 1200))
        self.max_players = int(config.get('MAX_PLAYERS', 2))
        self.barriers = BarrierCoordinator(store, self.max_players)
        self.endings = EndingResolver(store)
        self.ritual_attempts = int(config.get('FINAL_RITUAL_POLL_ATTEMPTS', 12))
        self.ritual_interval = float(config.get('FINAL_RITUAL_POLL_INTERVAL_SEC', 0.25))
        self.sleep = time.sleep

    @contextmanager
    def _mutation(self, room_id, user_id):
        if user_id is None:
            raise Unauthorized('missing user id')
        with self.store.room_lock(room_id):
            room = self.store.get_room(room_id)
            player = self.store.require_member(room, user_id)
            m = Mutation(room=room, player=player)
            try:
                yield m
                if m.changed:
                    self.store.touch(room)
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
        if m.changed:
            self.channel.notify(room_id)

    @contextmanager
    def _read(self, room_id, user_id):
        if user_id is None:
            raise Unauthorized('missing user id')
        with self.store.room_lock(room_id):
            room = self.store.get_room(room_id)
            self.store.require_member(room, user_id)
            yield room

    # ---- lobby ----

    def create_room(self, user_id):
        if user_id is None:
            raise Unauthorized('missing user id')
        try:
            room = self.store.create_room(user_id, self.air_initial)
            self.store.ensure_doors(room.id, self.graph.door_keys())
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        _log(f"[room-create] room={room.id} code={room.code} user={user_id}")
        player = self.store.get_player(room.id, user_id)
        return {'room': room.to_dict(), 'player': player.to_dict()}

    def join_room(self, code, user_id):
        if user_id is None:
            raise Unauthorized('missing user id')
        room_id = self.store.get_room_by_code(code).id
        with self.store.room_lock(room_id):
            room = self.store.get_room(room_id)
            try:
                player = self.store.seat_player(room, user_id, self.max_players)
                self.store.touch(room)
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
            result = {'room': room.to_dict(), 'player': player.to_dict()}
        _log(f"[room-join] room={room_id} user={user_id} role={result['player']['role']}")
        self.channel.notify(room_id)
        return result

    def ensure_doors(self, room_id, user_id):
        with self._mutation(room_id, user_id) as m:
            created = self.store.ensure_doors(room_id, self.graph.door_keys())
            m.changed = bool(created)
        return {'created': [d.key for d in created]}

    # ---- mutations ----

    def start_room(self, room_id, user_id):
        with self._mutation(room_id, user_id) as m:
            m.changed = self.store.set_started(m.room)
            if m.changed:
                _log(f"[room-start] room={room_id} user={user_id} started_at={m.room.started_at}")
            else:
                _log(f"[room-start-skip] room={room_id} already started")
            result = m.room.to_dict()
        return result

    def mark_lesson_read(self, room_id, user_id, puzzle_key):
        puzzle_key = _require_key(puzzle_key, 'puzzle_key')
        with self._mutation(room_id, user_id) as m:
            m.changed = self.store.mark_lesson_read(room_id, puzzle_key, user_id)
        return {'puzzle_key': puzzle_key, 'read': True}

    def _solve_result(self, puzzle_key, already_solved=False, applied=None):
        if applied is None:
            reward = self.graph.reward_for(puzzle_key)
            result = {
                'correct': True,
                'airAward': reward.air_bonus,
                'artifactsAwarded': [key for key, _ in reward.artifacts],
                'doorsOpened': list(reward.doors),
            }
        else:
            result = {
                'correct': True,
                'airAward': applied.air_award,
                'artifactsAwarded': applied.artifacts_awarded,
                'doorsOpened': applied.doors_opened,
            }
        result['alreadySolved'] = already_solved
        return result

    def solve_puzzle(self, room_id, user_id, puzzle_key, answer):
        puzzle_key = _require_key(puzzle_key, 'puzzle_key')
        self.graph.reward_for(puzzle_key)
        if answer is None:
            raise InvalidArgument('answer is required')
        with self._mutation(room_id, user_id) as m:
            prior = self.store.get_progress(room_id, puzzle_key)
            if prior is not None and prior.solved:
                # Retry or partner's duplicate: report, never re-grant
                m.changed = False
                _log(f"[solve-repeat] room={room_id} puzzle={puzzle_key} user={user_id}")
                return self._solve_result(puzzle_key, already_solved=True)
            if not self.graph.check_answer(m.room, puzzle_key, answer):
                m.changed = False
                _log(f"[solve-wrong] room={room_id} puzzle={puzzle_key} user={user_id}")
                return {'correct': False}
            self.store.mark_solved(room_id, puzzle_key, {'answer': answer, 'by': m.player.role})
            applied = self.graph.apply(self.store, m.room, puzzle_key)
            _log(
                f"[solve] room={room_id} puzzle={puzzle_key} user={user_id} air=+{applied.air_award} "
                f"artifacts={applied.artifacts_awarded} doors={applied.doors_opened}"
            )
        return self._solve_result(puzzle_key, applied=applied)

    def grant_artifact(self, room_id, user_id, key, qty=1):
        key = _require_key(key)
        qty = _require_positive_int(qty, 'qty')
        with self._mutation(room_id, user_id):
            total = self.store.add_artifact(room_id, key, qty)
        return {'key': key, 'qty': total}

    def open_door(self, room_id, user_id, key):
        key = _require_key(key)
        with self._mutation(room_id, user_id) as m:
            m.changed = self.store.open_door(room_id, key)
        return {'key': key, 'state': 'open'}

    def increment_air(self, room_id, user_id, delta):
        delta = validate_air_delta(delta)
        with self._mutation(room_id, user_id) as m:
            bonus = self.store.add_air_bonus(m.room, delta)
            remaining = room_air_seconds(m.room, self.store.now())
        return {'air_bonus': bonus, 'air_seconds': remaining}

    def _on_cross(self, room, step_key):
        _log(f"[barrier-cross] room={room.id} step={step_key}")
        if step_key == START_STEP:
            self.store.set_phase(room, 'play')
            self.store.set_started(room)
        elif step_key != RITUAL_STEP:
            room.current_step = (room.current_step or 0) + 1
            self.store.save(room)

    def set_required_ready(self, room_id, user_id, count, step_key=START_STEP):
        step_key = validate_step_key(step_key)
        with self._mutation(room_id, user_id) as m:
            result = self.barriers.set_required(room_id, step_key, count)
            if result.crossed_now:
                self._on_cross(m.room, step_key)
        return result.to_dict()

    def mark_ready(self, room_id, user_id, step_key):
        step_key = validate_step_key(step_key)
        with self._mutation(room_id, user_id) as m:
            result = self.barriers.mark_ready(room_id, step_key, m.player.role)
            if result.crossed_now:
                self._on_cross(m.room, step_key)
        return result.to_dict()

    def perform_final(self, room_id, user_id, mode, item: Optional[str] = None):
        mode = validate_mode(mode)
        with self._mutation(room_id, user_id) as m:
            if m.room.status == 'ended' or self.endings.recorded(room_id) is not None:
                m.changed = False
                return self.endings.current(room_id)
            if m.player.status != 'active':
                raise InvalidArgument('you are no longer in play')
            if mode == 'solo':
                used = self.endings.solo_item(room_id, item)
                result = self.endings.commit(m.room, m.player, 'solo', used)
                _log(f"[ending] room={room_id} ending=solo used={used} user={user_id}")
                return result
            self.endings.require_coop(room_id)
            active = len(self.store.active_players(room_id))
            self.barriers.set_required(room_id, RITUAL_STEP, max(1, min(2, active)))
            ritual = self.barriers.mark_ready(room_id, RITUAL_STEP, m.player.role)

        if not ritual.all_ready:
            # Wait for the partner outside the lock, then close with whoever is active
            seen = wait_for_barrier(
                lambda: self._ritual_status(room_id, user_id),
                attempts=self.ritual_attempts,
                interval=self.ritual_interval,
                sleep=self.sleep,
            )
            _log(f"[ritual-wait] room={room_id} user={user_id} last={seen}")

        with self._mutation(room_id, user_id) as m:
            if self.endings.recorded(room_id) is not None:
                m.changed = False
                return self.endings.current(room_id)
            result = self.endings.commit(m.room, m.player, 'cooperate')
            _log(f"[ending] room={room_id} ending=coop user={user_id}")
        return result

    def _ritual_status(self, room_id, user_id):
        with self._read(room_id, user_id) as room:
            if room.status == 'ended':
                return {'ready': 0, 'total': 0, 'allReady': True}
            return self.barriers.status(room_id, RITUAL_STEP).to_dict()

    # ---- reads ----

    def get_snapshot(self, room_id, user_id):
        with self._read(room_id, user_id):
            return self.store.get(room_id)

    def get_air_seconds(self, room_id, user_id):
        with self._read(room_id, user_id) as room:
            return room_air_seconds(room, self.store.now())

    def get_barrier_status(self, room_id, user_id, step_key):
        step_key = validate_step_key(step_key)
        with self._read(room_id, user_id):
            return self.barriers.status(room_id, step_key).to_dict()

    def get_player(self, room_id, user_id):
        with self._read(room_id, user_id):
            return self.store.get_player(room_id, user_id).to_dict()

    def announce(self, room_id, user_id):
        with self._read(room_id, user_id):
            player = self.store.get_player(room_id, user_id)
            role = player.role
        self.channel.announce(room_id, role=role, user_id=str(user_id))
        return {'room_id': room_id, 'role': role}
