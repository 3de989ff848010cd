import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    # Room state only has to live as long as the session; in-memory SQLite by default
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = [o for o in os.environ.get(
        'CORS_ORIGINS',
        'http://localhost:5173,http://127.0.0.1:5173,http://localhost:5174,http://127.0.0.1:5174',
    ).split(',') if o]
    # Shared air supply (seconds)
    AIR_INITIAL_SEC = int(os.environ.get('AIR_INITIAL_SEC', '1200'))
    MAX_PLAYERS = int(os.environ.get('MAX_PLAYERS', '2'))
    # Idle room collection
    ROOM_IDLE_TIMEOUT_SEC = int(os.environ.get('ROOM_IDLE_TIMEOUT_SEC', '1800'))
    ROOM_SWEEP_INTERVAL_SEC = int(os.environ.get('ROOM_SWEEP_INTERVAL_SEC', '300'))
    # Final ritual: how long a cooperating player waits for the partner
    FINAL_RITUAL_POLL_ATTEMPTS = int(os.environ.get('FINAL_RITUAL_POLL_ATTEMPTS', '12'))
    FINAL_RITUAL_POLL_INTERVAL_SEC = float(os.environ.get('FINAL_RITUAL_POLL_INTERVAL_SEC', '0.25'))
    # Optional: heartbeat interval for janitor logs (sec). 0 disables.
    JANITOR_HEARTBEAT_SEC = int(os.environ.get('JANITOR_HEARTBEAT_SEC', '0'))
    # Optional overrides: dotted path or callable
    ANSWER_CHECKER = None
    PROGRESSION_GRAPH = None
    PUZZLE_VARIANTS = None
