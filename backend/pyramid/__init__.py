from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_cors import CORS
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
login_manager = LoginManager()
socketio = SocketIO(async_mode=None)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []

    db.init_app(flask_app)
    login_manager.init_app(flask_app)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from pyramid.services.rooms import init_room_services
    init_room_services(flask_app, socketio)

    # Import and register blueprints here
    from pyramid.main import main
    flask_app.register_blueprint(main)

    from pyramid.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api/rooms')

    # Register Socket.IO event handlers
    from pyramid.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    # Identity is issued upstream; requests carry it in X-User-Id
    from pyramid.models import Requester

    @login_manager.request_loader
    def load_requester(request):
        user_id = (request.headers.get('X-User-Id') or '').strip()
        return Requester(user_id) if user_id else None

    with flask_app.app_context():
        import pyramid.models  # noqa: F401
        db.create_all()

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates all room tables."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            print('Database has been reset!')

    @click.command('sweep-rooms')
    def sweep_rooms_command():
        """Deletes rooms idle for longer than ROOM_IDLE_TIMEOUT_SEC."""
        from pyramid.services.rooms.janitor import sweep_idle_rooms
        deleted = sweep_idle_rooms(flask_app)
        print(f'Removed {len(deleted)} idle room(s).')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(sweep_rooms_command)

    return flask_app
