import time

NAMESPACE = '/ws'


def topic(room_id):
    return f"room:{room_id}"


class PropagationChannel:
    """Fire-and-forget "go re-fetch" signals to everyone in a room.

    Signals never carry state; clients always answer ``refresh`` by pulling
    a snapshot. A lost signal is healed by the clients' periodic poll.
    """

    def __init__(self, socketio, logger=None, namespace=NAMESPACE):
        self.socketio = socketio
        self.logger = logger
        self.namespace = namespace

    def _emit(self, event, payload, room_id):
        try:
            self.socketio.emit(event, payload, to=topic(room_id), namespace=self.namespace)
            return True
        except Exception as exc:
            if self.logger is not None:
                self.logger.warning(f"[emit-failed] event={event} room={room_id} error={exc}")
            return False

    def notify(self, room_id):
        return self._emit('refresh', {'room_id': room_id}, room_id)

    def announce(self, room_id, role=None, user_id=None):
        return self._emit('presence', {
            'room_id': room_id,
            'role': role,
            'user_id': user_id,
            'connected_at': time.time(),
        }, room_id)

    def session_ended(self, room_id):
        return self._emit('session_ended', {'room_id': room_id}, room_id)
