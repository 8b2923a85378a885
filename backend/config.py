import os


def _origins(raw):
    return [o.strip() for o in raw.split(',') if o.strip()]


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    CORS_ALLOWED_ORIGINS = _origins(os.environ.get(
        'CORS_ALLOWED_ORIGINS',
        'http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000',
    ))
    SOCKETIO_NAMESPACE = os.environ.get('SOCKETIO_NAMESPACE', '/ws')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    # Board extent (shots must land in [0, BOARD_SIZE) on both axes)
    BOARD_SIZE = int(os.environ.get('BOARD_SIZE', '10'))
    # Seat held open after a transport drop (seconds)
    GRACE_PERIOD_SEC = int(os.environ.get('GRACE_PERIOD_SEC', '300'))
    # Idle room eviction (seconds)
    ROOM_TTL_SEC = int(os.environ.get('ROOM_TTL_SEC', '600'))
    # Shot throttle: at most MAX_ACTIONS per WINDOW_MS per player
    RATE_LIMIT_WINDOW_MS = int(os.environ.get('RATE_LIMIT_WINDOW_MS', '1000'))
    RATE_LIMIT_MAX_ACTIONS = int(os.environ.get('RATE_LIMIT_MAX_ACTIONS', '1'))
    RATE_LIMIT_SWEEP_SEC = int(os.environ.get('RATE_LIMIT_SWEEP_SEC', '10'))
    # Ring sizes for resync
    HISTORY_LIMIT = int(os.environ.get('HISTORY_LIMIT', '500'))
    EVENT_BUFFER_SIZE = int(os.environ.get('EVENT_BUFFER_SIZE', '50'))
    SNAPSHOT_HISTORY = int(os.environ.get('SNAPSHOT_HISTORY', '50'))
