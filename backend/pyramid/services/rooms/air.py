"""Shared air supply.

Air is never stored as a running countdown. It is recomputed on every read
from the room's start time and accumulated bonus, so reconnecting clients
and clients with different clocks agree with the server's view.
"""
from typing import Optional

from .errors import InvalidArgument


def air_seconds(air_initial: int, air_bonus: int, started_at: Optional[float], now: float) -> int:
    """Remaining air at ``now``; ``air_initial`` until the clock starts."""
    if started_at is None:
        return max(0, int(air_initial))
    elapsed = max(0.0, now - started_at)
    return max(0, int(air_initial + air_bonus - elapsed))


def room_air_seconds(room, now: float) -> int:
    return air_seconds(room.air_initial, room.air_bonus, room.started_at, now)


def validate_air_delta(delta) -> int:
    """Air only ever goes up through bonuses; returns the delta as int."""
    if isinstance(delta, bool):
        raise InvalidArgument('delta must be a positive integer')
    try:
        value = int(delta)
    except (TypeError, ValueError):
        raise InvalidArgument('delta must be a positive integer')
    if value != delta or value <= 0:
        raise InvalidArgument('delta must be a positive integer')
    return value
