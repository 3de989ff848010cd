from pyramid import db
from flask_login import UserMixin
import json
import random
import string

ROOM_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'

ROOM_STATUSES = ('waiting', 'active', 'ended')
ROOM_PHASES = ('intro', 'play', 'ended')
PLAYER_ROLES = ('P1', 'P2')
PLAYER_STATUSES = ('active', 'down', 'escaped')


class Requester(UserMixin):
    """Caller identity as issued by the external identity provider."""

    def __init__(self, user_id):
        self.id = str(user_id)


def _loads(raw, default=None):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return default


def generate_room_code(length=6):
    """Generate a unique, human-enterable room code."""
    while True:
        code = ''.join(random.choices(ROOM_CODE_ALPHABET, k=length))
        if not Room.query.filter_by(code=code).first():
            return code


def seed_for_code(code):
    return random.Random(code).randrange(10 ** 9)


class Room(db.Model):
    __tablename__ = 'room'
    id = db.Column(db.String(32), primary_key=True)
    code = db.Column(db.String(8), unique=True, index=True, nullable=False)
    seed = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default='waiting')  # waiting, active, ended
    phase = db.Column(db.String(16), nullable=False, default='intro')  # intro, play, ended
    air_initial = db.Column(db.Integer, nullable=False, default=1200)
    air_bonus = db.Column(db.Integer, nullable=False, default=0)
    started_at = db.Column(db.Float, nullable=True)
    current_step = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.Float, nullable=False)
    last_activity = db.Column(db.Float, nullable=False, index=True)

    players = db.relationship('Player', back_populates='room', cascade='all, delete-orphan',
                              order_by='Player.role')

    def __init__(self, **kwargs):
        super(Room, self).__init__(**kwargs)
        if not self.code:
            self.code = generate_room_code()
        if not self.seed:
            self.seed = seed_for_code(self.code)

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'status': self.status,
            'phase': self.phase,
            'air_initial': self.air_initial,
            'air_bonus': self.air_bonus,
            'started_at': self.started_at,
            'current_step': self.current_step,
            'last_activity': self.last_activity,
        }


class Player(db.Model):
    __tablename__ = 'player'
    __table_args__ = (
        db.UniqueConstraint('room_id', 'user_id', name='uq_player_room_user'),
        db.UniqueConstraint('room_id', 'role', name='uq_player_room_role'),
    )
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.String(32), db.ForeignKey('room.id'), nullable=False, index=True)
    user_id = db.Column(db.String(64), nullable=False)
    role = db.Column(db.String(2), nullable=False)  # P1, P2
    status = db.Column(db.String(16), nullable=False, default='active')  # active, down, escaped
    joined_at = db.Column(db.Float, nullable=True)
    room = db.relationship('Room', back_populates='players')

    def to_dict(self):
        return {
            'id': self.id,
            'room_id': self.room_id,
            'user_id': self.user_id,
            'role': self.role,
            'status': self.status,
        }


class Door(db.Model):
    __tablename__ = 'door'
    __table_args__ = (db.UniqueConstraint('room_id', 'key', name='uq_door_room_key'),)
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.String(32), db.ForeignKey('room.id'), nullable=False, index=True)
    key = db.Column(db.String(64), nullable=False)
    state = db.Column(db.String(16), nullable=False, default='locked')  # locked, open

    def to_dict(self):
        return {'id': self.id, 'room_id': self.room_id, 'key': self.key, 'state': self.state}


class Artifact(db.Model):
    __tablename__ = 'artifact'
    __table_args__ = (db.UniqueConstraint('room_id', 'key', name='uq_artifact_room_key'),)
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.String(32), db.ForeignKey('room.id'), nullable=False, index=True)
    key = db.Column(db.String(64), nullable=False)
    qty = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self):
        return {'id': self.id, 'room_id': self.room_id, 'key': self.key, 'qty': self.qty}


class Progress(db.Model):
    __tablename__ = 'progress'
    __table_args__ = (db.UniqueConstraint('room_id', 'puzzle_key', name='uq_progress_room_puzzle'),)
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.String(32), db.ForeignKey('room.id'), nullable=False, index=True)
    puzzle_key = db.Column(db.String(64), nullable=False)
    solved = db.Column(db.Boolean, nullable=False, default=False)
    payload = db.Column(db.Text, nullable=True)  # JSON-encoded, opaque to the engine
    solved_at = db.Column(db.Float, nullable=True)

    @property
    def payload_data(self):
        return _loads(self.payload, {})

    def to_dict(self):
        return {
            'id': self.id,
            'room_id': self.room_id,
            'puzzle_key': self.puzzle_key,
            'solved': self.solved,
            'payload': self.payload_data,
            'solved_at': self.solved_at,
        }


class BarrierRecord(db.Model):
    __tablename__ = 'barrier'
    __table_args__ = (db.UniqueConstraint('room_id', 'step_key', name='uq_barrier_room_step'),)
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.String(32), db.ForeignKey('room.id'), nullable=False, index=True)
    step_key = db.Column(db.String(64), nullable=False)
    ready_count = db.Column(db.Integer, nullable=False, default=0)
    required_count = db.Column(db.Integer, nullable=False, default=2)
    ready_roles = db.Column(db.Text, nullable=True)  # JSON-encoded list of roles
    crossed_at = db.Column(db.Float, nullable=True)

    @property
    def roles(self):
        return _loads(self.ready_roles, [])

    @property
    def crossed(self):
        return self.crossed_at is not None

    def to_dict(self):
        return {
            'ready': self.ready_count,
            'total': self.required_count,
            'allReady': self.ready_count >= self.required_count,
        }


class LessonRead(db.Model):
    __tablename__ = 'lesson_read'
    __table_args__ = (
        db.UniqueConstraint('room_id', 'puzzle_key', 'user_id', name='uq_lesson_read'),
    )
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.String(32), db.ForeignKey('room.id'), nullable=False, index=True)
    puzzle_key = db.Column(db.String(64), nullable=False)
    user_id = db.Column(db.String(64), nullable=False)
    read_at = db.Column(db.Float, nullable=True)
