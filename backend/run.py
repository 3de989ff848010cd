import logging
import os

from pyramid import create_app, socketio
from pyramid.services.rooms.janitor import start_janitor

logging.basicConfig(level=os.environ.get('LOG_LEVEL', 'INFO'))

app = create_app()

if __name__ == '__main__':
    start_janitor(app)
    # Use SocketIO server to enable websockets in dev
    socketio.run(app, debug=True)
