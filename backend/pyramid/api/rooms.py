from flask import Blueprint, jsonify, request, current_app
from flask_login import current_user
from pyramid.services.rooms import get_gateway
from pyramid.services.rooms.barrier import START_STEP
from pyramid.services.rooms.errors import RoomError


rooms = Blueprint('rooms', __name__)


@rooms.errorhandler(RoomError)
def handle_room_error(err):
    if err.status_code >= 500:
        current_app.logger.error(f"[room-error] {err.code}: {err.message}")
    else:
        current_app.logger.info(f"[room-error] path={request.path} code={err.code} message={err.message}")
    return jsonify(err.to_dict()), err.status_code


def _user_id():
    if current_user.is_authenticated:
        return current_user.get_id()
    return None


def _body():
    return request.get_json(silent=True) or {}


@rooms.route('/create', methods=['POST'])
def create_room():
    result = get_gateway().create_room(_user_id())
    return jsonify(result), 201


@rooms.route('/join', methods=['POST'])
def join_room():
    code = _body().get('code')
    if not code:
        return jsonify({'error': 'Room code is required', 'code': 'invalid_argument'}), 400
    return jsonify(get_gateway().join_room(code, _user_id()))


@rooms.route('/<string:room_id>/state', methods=['GET'])
def get_snapshot(room_id):
    return jsonify(get_gateway().get_snapshot(room_id, _user_id()))


@rooms.route('/<string:room_id>/air', methods=['GET'])
def get_air(room_id):
    return jsonify({'air_seconds': get_gateway().get_air_seconds(room_id, _user_id())})


@rooms.route('/<string:room_id>/air', methods=['POST'])
def increment_air(room_id):
    delta = _body().get('delta')
    return jsonify(get_gateway().increment_air(room_id, _user_id(), delta))


@rooms.route('/<string:room_id>/init', methods=['POST'])
def init_room_entities(room_id):
    return jsonify(get_gateway().ensure_doors(room_id, _user_id()))


@rooms.route('/<string:room_id>/start', methods=['POST'])
def start_room(room_id):
    return jsonify(get_gateway().start_room(room_id, _user_id()))


@rooms.route('/<string:room_id>/lessons/<string:puzzle_key>/read', methods=['POST'])
def mark_lesson_read(room_id, puzzle_key):
    return jsonify(get_gateway().mark_lesson_read(room_id, _user_id(), puzzle_key))


@rooms.route('/<string:room_id>/puzzles/<string:puzzle_key>/solve', methods=['POST'])
def solve_puzzle(room_id, puzzle_key):
    answer = _body().get('answer')
    return jsonify(get_gateway().solve_puzzle(room_id, _user_id(), puzzle_key, answer))


@rooms.route('/<string:room_id>/artifacts/<string:key>', methods=['POST'])
def grant_artifact(room_id, key):
    qty = _body().get('qty', 1)
    return jsonify(get_gateway().grant_artifact(room_id, _user_id(), key, qty))


@rooms.route('/<string:room_id>/doors/<string:key>/open', methods=['POST'])
def open_door(room_id, key):
    return jsonify(get_gateway().open_door(room_id, _user_id(), key))


@rooms.route('/<string:room_id>/barriers/<string:step_key>', methods=['GET'])
def get_barrier_status(room_id, step_key):
    return jsonify(get_gateway().get_barrier_status(room_id, _user_id(), step_key))


@rooms.route('/<string:room_id>/barriers/<string:step_key>/required', methods=['POST'])
def set_required_ready(room_id, step_key):
    count = _body().get('count')
    return jsonify(get_gateway().set_required_ready(room_id, _user_id(), count, step_key=step_key))


@rooms.route('/<string:room_id>/required', methods=['POST'])
def set_required_ready_start(room_id):
    # Shorthand for the game-start gate
    count = _body().get('count')
    return jsonify(get_gateway().set_required_ready(room_id, _user_id(), count, step_key=START_STEP))


@rooms.route('/<string:room_id>/barriers/<string:step_key>/ready', methods=['POST'])
def mark_ready(room_id, step_key):
    return jsonify(get_gateway().mark_ready(room_id, _user_id(), step_key))


@rooms.route('/<string:room_id>/final', methods=['POST'])
def perform_final(room_id):
    data = _body()
    return jsonify(get_gateway().perform_final(room_id, _user_id(), data.get('mode'), item=data.get('item')))


@rooms.route('/<string:room_id>/announce', methods=['POST'])
def announce(room_id):
    return jsonify(get_gateway().announce(room_id, _user_id()))
