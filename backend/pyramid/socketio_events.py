from flask_socketio import join_room, leave_room, emit
from flask import request, current_app
from pyramid import socketio
from pyramid.services.rooms import get_gateway
from pyramid.services.rooms.errors import RoomError
from pyramid.services.rooms.propagation import topic
from typing import Dict, Any


_sid_to_ctx: Dict[str, Dict[str, Any]] = {}


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(*args):
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if ctx:
        current_app.logger.info(f"[ws-disconnect] room={ctx.get('room_id')} user={ctx.get('user_id')}")


def handle_join_room(data):
    data = data or {}
    room_id = data.get('room_id')
    user_id = data.get('user_id')
    if not room_id or not user_id:
        emit('error', {'message': 'room_id and user_id are required'})
        return
    # Only seated players may listen to a room
    try:
        player = get_gateway().get_player(room_id, user_id)
    except RoomError as err:
        emit('error', err.to_dict())
        return
    join_room(topic(room_id))
    _sid_to_ctx[_get_sid()] = {'room_id': room_id, 'user_id': player['user_id']}
    emit('joined', {'room': topic(room_id), 'role': player['role']})


def handle_leave_room(data):
    room_id = (data or {}).get('room_id')
    if not room_id:
        emit('error', {'message': 'room_id is required'})
        return
    leave_room(topic(room_id))
    _sid_to_ctx.pop(_get_sid(), None)
    emit('left', {'room': topic(room_id)})


def handle_announce(data):
    """Presence: tell the room who just (re)connected.

    The announcer is whoever joined on this socket, never a user named in the payload.
    """
    room_id = (data or {}).get('room_id')
    ctx = _sid_to_ctx.get(_get_sid())
    if not ctx or ctx.get('room_id') != room_id:
        emit('error', {'message': 'join the room first', 'code': 'unauthorized'})
        return
    try:
        get_gateway().announce(room_id, ctx['user_id'])
    except RoomError as err:
        emit('error', err.to_dict())


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    handlers = {
        'connect': handle_connect,
        'disconnect': handle_disconnect,
        'join_room': handle_join_room,
        'leave_room': handle_leave_room,
        'announce': handle_announce,
        'ping': handle_ping,
    }
    namespaces = ['/ws', '/'] if testing else ['/ws']
    for namespace in namespaces:
        for event, handler in handlers.items():
            socketio.on_event(event, handler, namespace=namespace)
