"""Final ritual: the cooperative and solo endings race to close a room.

Whichever path commits ``Progress['maat']`` first wins. The commit is a
compare-and-set on that row's ``solved`` flag, taken under the room lock
together with the player status changes and ``Room.status = 'ended'``.
"""
from typing import Optional

from .errors import Conflict, InvalidArgument
from .progression import ENDING_KEY

MODES = ('cooperate', 'solo')
COOP_ARTIFACT = 'shabti'
SOLO_ARTIFACTS = ('counterweight_stones', 'bronze_khopesh')


def validate_mode(mode) -> str:
    if mode not in MODES:
        raise InvalidArgument("mode must be 'cooperate' or 'solo'")
    return mode


class EndingResolver:
    def __init__(self, store):
        self.store = store

    def recorded(self, room_id) -> Optional[dict]:
        row = self.store.get_progress(room_id, ENDING_KEY)
        if row is None or not row.solved:
            return None
        return row.payload_data

    def solo_item(self, room_id, item=None) -> str:
        """The artifact the solo ending will spend, checked against the room's holdings."""
        if item is not None:
            if item not in SOLO_ARTIFACTS:
                raise InvalidArgument(f'{item!r} cannot force the scales')
            if self.store.artifact_qty(room_id, item) <= 0:
                raise InvalidArgument(f'missing artifact {item}')
            return item
        for candidate in SOLO_ARTIFACTS:
            if self.store.artifact_qty(room_id, candidate) > 0:
                return candidate
        raise InvalidArgument('solo ending needs counterweight_stones or bronze_khopesh')

    def require_coop(self, room_id) -> None:
        if self.store.artifact_qty(room_id, COOP_ARTIFACT) <= 0:
            raise InvalidArgument(f'missing artifact {COOP_ARTIFACT}')

    def _close(self, room):
        room.status = 'ended'
        self.store.set_phase(room, 'ended')
        self.store.save(room)

    def commit_coop(self, room) -> dict:
        """Every active player escapes. Raises Conflict if an ending exists."""
        self.store.mark_solved(room.id, ENDING_KEY, {'ending': 'coop'})
        escaped = 0
        for player in self.store.active_players(room.id):
            self.store.set_player_status(player, 'escaped')
            escaped += 1
        self._close(room)
        message = 'Balance achieved. Both of you walk free.' if escaped > 1 else 'You walk free.'
        return {'ending': 'coop', 'message': message}

    def commit_solo(self, room, caller, item) -> dict:
        """Caller escapes, everyone else still inside goes down."""
        self.store.mark_solved(room.id, ENDING_KEY, {'ending': 'solo', 'used': item})
        self.store.set_player_status(caller, 'escaped')
        for player in self.store.players(room.id):
            if player.id != caller.id and player.status != 'escaped':
                self.store.set_player_status(player, 'down')
        self._close(room)
        return {'ending': 'solo', 'message': f'You escape alone using {item}.'}

    def current(self, room_id) -> dict:
        recorded = self.recorded(room_id) or {}
        return {'ending': recorded.get('ending'), 'message': 'ending already recorded'}

    def commit(self, room, caller, mode, item=None) -> dict:
        try:
            if mode == 'cooperate':
                return self.commit_coop(room)
            return self.commit_solo(room, caller, item)
        except Conflict:
            return self.current(room.id)
