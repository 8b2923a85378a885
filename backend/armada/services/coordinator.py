"""Session coordinator: the façade every Socket.IO handler talks to.

Each public command takes the caller's connection id plus the raw event
payload and returns the acknowledgment dict. Room state is mutated under the
room's lock; notifications are collected while the lock is held and sent
once it has been released.
"""
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from armada.errors import (
    AlreadyInRoom,
    CoordinatorError,
    InternalError,
    InvalidState,
    NotInRoom,
    RoomNotFound,
)
from armada.services.game_session import ROOM, GameSession, Notice
from armada.services.rate_limiter import RateLimiter
from armada.services.rooms import RoomStore, normalize_room_code
from armada.services.sessions import SessionRegistry


logger = logging.getLogger(__name__)

DEFAULTS = {
    'BOARD_SIZE': 10,
    'GRACE_PERIOD_SEC': 300,
    'ROOM_TTL_SEC': 600,
    'RATE_LIMIT_WINDOW_MS': 1000,
    'RATE_LIMIT_MAX_ACTIONS': 1,
    'RATE_LIMIT_SWEEP_SEC': 10,
    'HISTORY_LIMIT': 500,
    'EVENT_BUFFER_SIZE': 50,
    'SNAPSHOT_HISTORY': 50,
}


@dataclass
class Connection:
    room_code: str
    identity: str
    token: str


def room_channel(room_code: str) -> str:
    return f"room:{room_code}"


def player_channel(room_code: str, identity: str) -> str:
    return f"player:{room_code}:{identity}"


def _payload(data) -> Dict[str, Any]:
    if isinstance(data, dict):
        return data
    if isinstance(data, str):
        return {'roomCode': data}
    return {}


def _room_code_from(data: Dict[str, Any]):
    # 'gameId' is what older clients send
    return data.get('roomCode') or data.get('gameId')


class SessionCoordinator:
    def __init__(self, transport, scheduler, settings: Optional[Dict[str, Any]] = None, clock=time.time,
                 store: Optional[RoomStore] = None, registry: Optional[SessionRegistry] = None,
                 limiter: Optional[RateLimiter] = None):
        cfg = dict(DEFAULTS)
        for key in DEFAULTS:
            if settings and settings.get(key) is not None:
                cfg[key] = settings[key]
        self.settings = cfg
        self.transport = transport
        self.scheduler = scheduler
        self._clock = clock
        self.registry = registry or SessionRegistry(clock=clock)
        self.limiter = limiter or RateLimiter(
            window_ms=cfg['RATE_LIMIT_WINDOW_MS'],
            max_actions=cfg['RATE_LIMIT_MAX_ACTIONS'],
            clock=clock,
        )
        self.store = store or RoomStore(
            scheduler,
            ttl_seconds=cfg['ROOM_TTL_SEC'],
            clock=clock,
            on_evict=self._forget_room,
            session_options={
                'board_size': cfg['BOARD_SIZE'],
                'history_limit': cfg['HISTORY_LIMIT'],
                'event_buffer_size': cfg['EVENT_BUFFER_SIZE'],
            },
        )
        self._connections: Dict[str, Connection] = {}
        self._conn_lock = threading.Lock()

    def start(self) -> None:
        self.limiter.start_sweeper(self.scheduler, self.settings['RATE_LIMIT_SWEEP_SEC'])

    # ---- plumbing ----

    def _dispatch(self, command: str, connection_id: str, handler, data) -> Dict[str, Any]:
        outbox: List[Tuple[str, Dict[str, Any], str]] = []
        try:
            ack = handler(connection_id, _payload(data), outbox)
        except CoordinatorError as exc:
            logger.info(f"[reject] command={command} sid={connection_id} code={exc.code} message={exc.message}")
            return exc.to_ack()
        except Exception:
            logger.exception(f"[error] command={command} sid={connection_id}")
            return InternalError().to_ack()
        self._flush(outbox)
        return ack

    def _route(self, room_code: str, notices: List[Notice], outbox) -> None:
        for notice in notices:
            channel = room_channel(room_code) if notice.to == ROOM else player_channel(room_code, notice.to)
            outbox.append((notice.event, notice.payload, channel))

    def _flush(self, outbox) -> None:
        for event, payload, to in outbox:
            try:
                self.transport.send(event, payload, to)
            except Exception:
                logger.exception(f"[emit-error] event={event} to={to}")

    def _connection(self, connection_id: str) -> Optional[Connection]:
        with self._conn_lock:
            return self._connections.get(connection_id)

    def _bind(self, connection_id: str, room_code: str, identity: str, token: str) -> None:
        with self._conn_lock:
            self._connections[connection_id] = Connection(room_code, identity, token)
        self.registry.attach(token, connection_id)
        self.transport.subscribe(connection_id, room_channel(room_code))
        self.transport.subscribe(connection_id, player_channel(room_code, identity))

    def _unbind_identity(self, room_code: str, identity: str, token: Optional[str]) -> None:
        with self._conn_lock:
            sids = [sid for sid, c in self._connections.items()
                    if c.room_code == room_code and c.identity == identity]
            for sid in sids:
                del self._connections[sid]
        for sid in sids:
            self.transport.unsubscribe(sid, room_channel(room_code))
            self.transport.unsubscribe(sid, player_channel(room_code, identity))
        if token:
            self.registry.drop(token)

    def _forget_room(self, room_code: str) -> None:
        """Eviction hook: tell bound connections the room is gone and release them."""
        dropped = self.registry.drop_room(room_code)
        with self._conn_lock:
            bound = [(s, c) for s, c in self._connections.items() if c.room_code == room_code]
            for sid, _ in bound:
                del self._connections[sid]
        if bound:
            self._flush([('roomClosed', {'roomCode': room_code}, room_channel(room_code))])
        for sid, conn in bound:
            self.transport.unsubscribe(sid, room_channel(room_code))
            self.transport.unsubscribe(sid, player_channel(room_code, conn.identity))
        logger.info(f"[room-forget] room={room_code} tokens_dropped={len(dropped)} connections={len(bound)}")

    def _resolve(self, connection_id: str, data: Dict[str, Any]) -> Tuple[Connection, GameSession]:
        """Find the caller's seat; an omitted room code means the sole joined room."""
        conn = self._connection(connection_id)
        raw = _room_code_from(data)
        if raw:
            room_code = normalize_room_code(raw)
        elif conn is not None:
            room_code = conn.room_code
        else:
            raise NotInRoom()
        room = self.store.get(room_code)
        if room is None:
            raise RoomNotFound()
        if conn is None or conn.room_code != room_code:
            raise NotInRoom()
        return conn, room

    # ---- commands ----

    def join_room(self, connection_id: str, data) -> Dict[str, Any]:
        return self._dispatch('joinRoom', connection_id, self._join_room, data)

    def _join_room(self, connection_id, data, outbox):
        room_code = normalize_room_code(_room_code_from(data))
        token = data.get('sessionToken')
        current = self._connection(connection_id)
        if current is not None and (current.room_code != room_code or token != current.token):
            raise AlreadyInRoom()

        seat = self.registry.resume(token, room_code)
        if seat is not None:
            room = self.store.get(room_code)
            if room is not None:
                return self._resume(connection_id, room, seat[1], token, outbox)
            self.registry.drop(token)

        identity = uuid.uuid4().hex
        room = self._lock_live_room(room_code)
        try:
            notices = room.join(identity)
            self.store.schedule_eviction_if_idle(room_code)
            token = self.registry.create(room_code, identity)
            self._bind(connection_id, room_code, identity, token)
            player_count = len(room.players)
        finally:
            room.lock.release()

        self._route(room_code, notices, outbox)
        logger.info(f"[join] room={room_code} identity={identity} players={player_count}")
        return {
            'success': True,
            'roomCode': room_code,
            'playerIdentity': identity,
            'sessionToken': token,
            'resumed': False,
        }

    def _lock_live_room(self, room_code: str) -> GameSession:
        """Return the room for ``room_code`` with its lock held.

        An eviction may delete the room between lookup and locking; retry
        against the fresh room in that case.
        """
        while True:
            room = self.store.get_or_create(room_code)
            room.lock.acquire()
            if self.store.get(room_code) is room:
                return room
            room.lock.release()

    def _resume(self, connection_id, room: GameSession, identity: str, token: str, outbox):
        with room.lock:
            if self.store.get(room.room_code) is not room:
                raise RoomNotFound()
            notices, reconnected = room.resume(identity)
            snapshot = room.snapshot(identity, self.settings['SNAPSHOT_HISTORY'])
            self.store.schedule_eviction_if_idle(room.room_code)
            # Attach under the lock so a racing disconnect sees this connection
            self._bind(connection_id, room.room_code, identity, token)

        self._route(room.room_code, notices, outbox)
        outbox.append(('stateSnapshot', snapshot, connection_id))
        logger.info(f"[resume] room={room.room_code} identity={identity} reconnected={reconnected}")
        return {
            'success': True,
            'roomCode': room.room_code,
            'playerIdentity': identity,
            'sessionToken': token,
            'resumed': True,
        }

    def submit_board(self, connection_id: str, data) -> Dict[str, Any]:
        return self._dispatch('submitBoard', connection_id, self._submit_board, data)

    def _submit_board(self, connection_id, data, outbox):
        conn, room = self._resolve(connection_id, data)
        board = data.get('board')
        if board is None:
            raise InvalidState('board is required')
        with room.lock:
            notices = room.submit_board(conn.identity, board)
            started = room.turn if notices else None
        self._route(room.room_code, notices, outbox)
        if started:
            logger.info(f"[start] room={room.room_code} first={started}")
        return {'success': True}

    def submit_shot(self, connection_id: str, data) -> Dict[str, Any]:
        return self._dispatch('submitShot', connection_id, self._submit_shot, data)

    def _submit_shot(self, connection_id, data, outbox):
        conn, room = self._resolve(connection_id, data)
        with room.lock:
            notices = room.submit_shot(conn.identity, data.get('row'), data.get('col'), throttle=self.limiter.allow)
        self._route(room.room_code, notices, outbox)
        return {'success': True}

    def submit_result(self, connection_id: str, data) -> Dict[str, Any]:
        return self._dispatch('submitResult', connection_id, self._submit_result, data)

    def _submit_result(self, connection_id, data, outbox):
        conn, room = self._resolve(connection_id, data)
        outcome = data.get('outcome', data.get('result'))
        attacker = data.get('attackerIdentity') or data.get('from')
        with room.lock:
            notices = room.submit_result(
                conn.identity, outcome, data.get('row'), data.get('col'),
                attacker=attacker, all_sunk=data.get('allSunk', False),
            )
            winner = room.winner
        self._route(room.room_code, notices, outbox)
        if winner:
            logger.info(f"[game-over] room={room.room_code} winner={winner}")
        return {'success': True}

    def request_restart(self, connection_id: str, data) -> Dict[str, Any]:
        return self._dispatch('requestRestart', connection_id, self._request_restart, data)

    def _request_restart(self, connection_id, data, outbox):
        conn, room = self._resolve(connection_id, data)
        with room.lock:
            notices, restarted = room.request_restart(conn.identity)
        self._route(room.room_code, notices, outbox)
        if restarted:
            logger.info(f"[restart] room={room.room_code}")
            return {'success': True, 'restarted': True}
        return {'success': True, 'waiting': True}

    def cancel_restart(self, connection_id: str, data) -> Dict[str, Any]:
        return self._dispatch('cancelRestart', connection_id, self._cancel_restart, data)

    def _cancel_restart(self, connection_id, data, outbox):
        conn, room = self._resolve(connection_id, data)
        with room.lock:
            notices = room.cancel_restart(conn.identity)
        self._route(room.room_code, notices, outbox)
        return {'success': True}

    def leave_room(self, connection_id: str, data) -> Dict[str, Any]:
        return self._dispatch('leaveRoom', connection_id, self._leave_room, data)

    def _leave_room(self, connection_id, data, outbox):
        conn, room = self._resolve(connection_id, data)
        with room.lock:
            notices = room.leave(conn.identity)
            self._unbind_identity(room.room_code, conn.identity, conn.token)
            self.store.schedule_eviction_if_idle(room.room_code)
        self._route(room.room_code, notices, outbox)
        logger.info(f"[leave] room={room.room_code} identity={conn.identity}")
        return {'success': True}

    def ping(self, connection_id: str = None, data=None) -> Dict[str, Any]:
        return {'pong': True, 'serverTime': int(self._clock() * 1000)}

    # ---- transport lifecycle ----

    def disconnect(self, connection_id: str) -> None:
        """Transport drop: hold the seat open for the grace period."""
        with self._conn_lock:
            conn = self._connections.pop(connection_id, None)
        if conn is None:
            return
        room = self.store.get(conn.room_code)
        if room is None:
            self.registry.detach(conn.token, connection_id)
            return

        grace = self.settings['GRACE_PERIOD_SEC']
        outbox = []
        try:
            with room.lock:
                # Detach and the remaining-connection check share the lock with resume's attach
                if self.registry.detach(conn.token, connection_id) > 0:
                    logger.info(f"[disconnect] room={conn.room_code} identity={conn.identity} "
                                f"other connections remain")
                    return
                if conn.identity not in room.players:
                    return
                notices = room.mark_disconnected(conn.identity, grace)
                entry = room.disconnected[conn.identity]
                entry.timer = self.scheduler.call_later(
                    grace, self._expire_grace, conn.room_code, conn.identity, entry.since)
                self.store.schedule_eviction_if_idle(conn.room_code)
        except Exception:
            logger.exception(f"[error] command=disconnect sid={connection_id}")
            return
        self._route(conn.room_code, notices, outbox)
        self._flush(outbox)
        logger.info(f"[disconnect] room={conn.room_code} identity={conn.identity} grace={grace}s")

    def _expire_grace(self, room_code: str, identity: str, since: float) -> None:
        room = self.store.get(room_code)
        if room is None:
            logger.info(f"[timer-abort] grace room={room_code} identity={identity} room gone")
            return
        outbox = []
        with room.lock:
            if self.store.get(room_code) is not room:
                logger.info(f"[timer-abort] grace room={room_code} identity={identity} room replaced")
                return
            notices = room.expire_grace(identity, since)
            if notices is None:
                logger.info(f"[timer-abort] grace room={room_code} identity={identity} resumed or gone")
                return
            self._unbind_identity(room_code, identity, self.registry.token_for(room_code, identity))
            self.store.schedule_eviction_if_idle(room_code)
        self._route(room_code, notices, outbox)
        self._flush(outbox)
        logger.info(f"[grace-expire] room={room_code} identity={identity}")

    # ---- views ----

    def room_summary(self, raw_code) -> Dict[str, Any]:
        room_code = normalize_room_code(raw_code)
        room = self.store.get(room_code)
        if room is None:
            raise RoomNotFound()
        with room.lock:
            return room.summary()

    def evict(self, raw_code) -> bool:
        room_code = normalize_room_code(raw_code)
        room = self.store.get(room_code)
        if room is None:
            return False
        with room.lock:
            return self.store.delete(room_code)
