from flask import current_app, request
from flask_socketio import emit

from armada import socketio


class SocketIOTransport:
    """Delivers coordinator notifications through Flask-SocketIO rooms."""

    def __init__(self, sio, namespace: str = '/ws'):
        self._sio = sio
        self.namespace = namespace

    def send(self, event: str, payload, to: str) -> None:
        self._sio.emit(event, payload, to=to, namespace=self.namespace)

    def subscribe(self, sid: str, channel: str) -> None:
        self._sio.server.enter_room(sid, channel, namespace=self.namespace)

    def unsubscribe(self, sid: str, channel: str) -> None:
        self._sio.server.leave_room(sid, channel, namespace=self.namespace)


def _coordinator():
    return current_app.extensions['armada']


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def handle_connect(auth=None):
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(reason=None):
    _coordinator().disconnect(_get_sid())


def handle_join_room(data=None):
    return _coordinator().join_room(_get_sid(), data)


def handle_submit_board(data=None):
    return _coordinator().submit_board(_get_sid(), data)


def handle_submit_shot(data=None):
    return _coordinator().submit_shot(_get_sid(), data)


def handle_submit_result(data=None):
    return _coordinator().submit_result(_get_sid(), data)


def handle_request_restart(data=None):
    return _coordinator().request_restart(_get_sid(), data)


def handle_cancel_restart(data=None):
    return _coordinator().cancel_restart(_get_sid(), data)


def handle_leave_room(data=None):
    return _coordinator().leave_room(_get_sid(), data)


def handle_ping(data=None):
    return _coordinator().ping(_get_sid(), data)


def register_socketio_handlers(namespace: str = '/ws') -> None:
    """Register Socket.IO event handlers on ``namespace``."""
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    socketio.on_event('joinRoom', handle_join_room, namespace=namespace)
    socketio.on_event('submitBoard', handle_submit_board, namespace=namespace)
    socketio.on_event('submitShot', handle_submit_shot, namespace=namespace)
    socketio.on_event('submitResult', handle_submit_result, namespace=namespace)
    socketio.on_event('requestRestart', handle_request_restart, namespace=namespace)
    socketio.on_event('cancelRestart', handle_cancel_restart, namespace=namespace)
    socketio.on_event('leaveRoom', handle_leave_room, namespace=namespace)
    socketio.on_event('ping', handle_ping, namespace=namespace)
    # Older clients call it pingServer
    socketio.on_event('pingServer', handle_ping, namespace=namespace)
