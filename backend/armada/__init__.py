import logging
import time

import click
from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO

from config import Config

socketio = SocketIO(async_mode=None)


def create_app(config_class=Config, scheduler=None, clock=None):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    level = getattr(logging, str(flask_app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    flask_app.logger.setLevel(level)

    allowed_origins = flask_app.config.get('CORS_ALLOWED_ORIGINS') or []
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # One coordinator per app so test apps never share room state
    from armada.services.coordinator import SessionCoordinator
    from armada.services.timers import BackgroundScheduler
    from armada.socketio_events import SocketIOTransport, register_socketio_handlers

    namespace = flask_app.config.get('SOCKETIO_NAMESPACE', '/ws')
    coordinator = SessionCoordinator(
        SocketIOTransport(socketio, namespace),
        scheduler or BackgroundScheduler(socketio),
        settings=flask_app.config,
        clock=clock or time.time,
    )
    coordinator.start()
    flask_app.extensions['armada'] = coordinator

    register_socketio_handlers(namespace)

    from armada.main import main
    flask_app.register_blueprint(main)

    from armada.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api/rooms')

    @click.command('rooms-list')
    def rooms_list_command():
        """Lists active rooms with their phase and players."""
        store = flask_app.extensions['armada'].store
        codes = store.codes()
        if not codes:
            click.echo('No active rooms.')
            return
        for code in codes:
            room = store.get(code)
            if room is None:
                continue
            summary = room.summary()
            players = ', '.join(summary['players']) or '-'
            click.echo(f"{code}\t{summary['phase']}\t{players}")

    @click.command('rooms-evict')
    @click.argument('code')
    def rooms_evict_command(code):
        """Force-deletes a room and drops its session tokens."""
        from armada.errors import InvalidRoomCode
        try:
            removed = flask_app.extensions['armada'].evict(code)
        except InvalidRoomCode:
            raise click.BadParameter(f'invalid room code: {code}')
        click.echo(f'Room {code.strip().upper()} evicted.' if removed else f'No room {code.strip().upper()}.')

    flask_app.cli.add_command(rooms_list_command)
    flask_app.cli.add_command(rooms_evict_command)

    return flask_app
