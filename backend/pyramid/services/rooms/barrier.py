"""Readiness rendezvous between the players of a room.

A barrier is crossed the moment ``ready_count >= required_count``. Crossing
happens once; the gateway fires the step's transition only when ``mark_ready``
or ``set_required`` reports the crossing edge.
"""
import json
import time
from dataclasses import dataclass

from .errors import InvalidArgument

START_STEP = 'start_timer'
RITUAL_STEP = 'maat_ritual'


@dataclass
class BarrierResult:
    ready: int
    total: int
    all_ready: bool
    crossed_now: bool = False

    def to_dict(self):
        return {'ready': self.ready, 'total': self.total, 'allReady': self.all_ready}


def _result(row, crossed_now=False):
    return BarrierResult(
        ready=row.ready_count,
        total=row.required_count,
        all_ready=row.ready_count >= row.required_count,
        crossed_now=crossed_now,
    )


def validate_required(count) -> int:
    if isinstance(count, bool) or count not in (1, 2):
        raise InvalidArgument('required count must be 1 or 2')
    return int(count)


def validate_step_key(step_key) -> str:
    if not isinstance(step_key, str) or not step_key.strip() or len(step_key) > 64:
        raise InvalidArgument('step_key is required')
    return step_key.strip()


class BarrierCoordinator:
    def __init__(self, store, max_players=2):
        self.store = store
        self.max_players = max_players

    def _default_required(self):
        # A full room; going on alone is an explicit set_required(1)
        return max(1, min(2, self.max_players))

    def _cross_if_ready(self, row):
        if row.crossed or row.ready_count < row.required_count:
            return False
        row.crossed_at = self.store.now()
        return True

    def status(self, room_id, step_key) -> BarrierResult:
        row = self.store.get_barrier(room_id, step_key)
        if row is None:
            required = self._default_required()
            return BarrierResult(ready=0, total=required, all_ready=False)
        return _result(row)

    def set_required(self, room_id, step_key, count) -> BarrierResult:
        """Last writer wins until the barrier is crossed; ignored afterwards."""
        count = validate_required(count)
        row = self.store.ensure_barrier(room_id, step_key, count)
        if row.crossed:
            return _result(row)
        row.required_count = count
        crossed_now = self._cross_if_ready(row)
        self.store.save(row)
        return _result(row, crossed_now)

    def mark_ready(self, room_id, step_key, role, required_count=None) -> BarrierResult:
        """Count ``role`` once; re-marking by the same role changes nothing."""
        row = self.store.ensure_barrier(
            room_id, step_key,
            required_count if required_count is not None else self._default_required(),
        )
        roles = row.roles
        if role in roles:
            return _result(row)
        roles.append(role)
        row.ready_roles = json.dumps(roles)
        row.ready_count = len(roles)
        crossed_now = self._cross_if_ready(row)
        self.store.save(row)
        return _result(row, crossed_now)


def wait_for_barrier(status_fn, attempts=12, interval=0.25, sleep=time.sleep):
    """Poll ``status_fn`` until it reports all ready or the budget runs out.

    Returns the last status seen (or None if every poll failed); a caller
    waiting on a partner proceeds with that instead of hanging.
    """
    last = None
    for i in range(max(1, attempts)):
        try:
            last = status_fn()
        except Exception:
            # transient read failure; keep the last status and retry
            pass
        if last is not None and _all_ready(last):
            return last
        if i < attempts - 1 and interval:
            sleep(interval)
    return last


def _all_ready(status):
    if isinstance(status, BarrierResult):
        return status.all_ready
    return bool(status.get('allReady'))
