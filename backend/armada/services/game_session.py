"""Per-room state machine.

A ``GameSession`` never talks to the transport. Each command validates
first, mutates second and returns the notifications it produced as
``Notice`` objects; the coordinator fans them out once the room lock is
released. Hit/miss is never evaluated here: shots are relayed blind and the
defender reports the outcome.
"""
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from armada.errors import (
    AlreadyInRoom,
    InvalidCoordinates,
    InvalidState,
    NoOpponent,
    NotInRoom,
    NotYourTurn,
    RateLimited,
    RoomFull,
    UnknownAttacker,
)
from armada.models import BufferedEvent, DisconnectEntry, MoveEvent, Phase

ROOM = '*'
MAX_PLAYERS = 2


@dataclass
class Notice:
    event: str
    payload: Dict[str, Any]
    to: str = ROOM  # ROOM or a player identity


def _is_coordinate(value, size: int) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value < size


class GameSession:
    def __init__(self, room_code: str, clock=time.time, board_size: int = 10,
                 history_limit: int = 500, event_buffer_size: int = 50):
        self.room_code = room_code
        self.board_size = board_size
        self._clock = clock
        self.players: List[str] = []
        self.boards: Dict[str, Any] = {}
        self.ready = set()
        self.turn: Optional[str] = None
        self.created_at = clock()
        self.updated_at = self.created_at
        self.history = deque(maxlen=history_limit)
        self.event_buffer = deque(maxlen=event_buffer_size)
        self.disconnected: Dict[str, DisconnectEntry] = {}
        self.game_over = False
        self.winner: Optional[str] = None
        self.restart_requests = set()
        # Relayed shot still waiting for the defender's report
        self.pending_shot: Optional[Dict[str, Any]] = None
        # Room-exclusive access for commands and timer callbacks
        self.lock = threading.RLock()
        self.eviction_timer = None
        self._seq = 0

    # ---- queries ----

    @property
    def phase(self) -> Phase:
        if self.game_over:
            return Phase.GAME_OVER
        if len(self.players) < MAX_PLAYERS:
            return Phase.WAITING_FOR_PLAYERS
        if all(p in self.ready for p in self.players):
            return Phase.IN_PROGRESS
        return Phase.BOARDS_PENDING

    @property
    def is_full(self) -> bool:
        return len(self.players) >= MAX_PLAYERS

    def is_idle(self) -> bool:
        """No seated players and nobody inside a grace period."""
        return not self.players and not self.disconnected

    def opponent_of(self, identity: str) -> Optional[str]:
        return next((p for p in self.players if p != identity), None)

    def _require_player(self, identity: str) -> None:
        if identity not in self.players:
            raise NotInRoom()

    # ---- bookkeeping ----

    def _touch(self) -> None:
        self.updated_at = self._clock()

    def _notice(self, event: str, payload: Optional[Dict[str, Any]] = None, to: str = ROOM) -> Notice:
        body = {'roomCode': self.room_code}
        body.update(payload or {})
        self._seq += 1
        self.event_buffer.append(BufferedEvent(seq=self._seq, event=event, payload=body, ts=self._clock(), to=to))
        return Notice(event, body, to)

    def _players_updated(self) -> Notice:
        return self._notice('playersUpdated', {'players': list(self.players)})

    # ---- transitions ----

    def join(self, identity: str) -> List[Notice]:
        if identity in self.players:
            raise AlreadyInRoom()
        if self.is_full:
            raise RoomFull()
        if self.game_over:
            raise InvalidState('Game is over')

        self.players.append(identity)
        if self.turn is None:
            self.turn = self.players[0]
        self._touch()

        notices = [self._players_updated()]
        if self.is_full:
            notices.append(self._notice('roomReady', {'players': list(self.players)}))
        return notices

    def resume(self, identity: str):
        """Re-seat ``identity``; returns (notices, was_disconnected).

        Resuming an identity that is already seated and connected is a no-op
        apart from the snapshot the coordinator sends back.
        """
        was_disconnected = identity in self.disconnected
        if identity not in self.players:
            if self.is_full:
                raise RoomFull()
            self.players.append(identity)
            if self.turn is None and not self.game_over:
                self.turn = self.players[0]
        entry = self.disconnected.pop(identity, None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()

        notices = []
        if was_disconnected:
            self._touch()
            opponent = self.opponent_of(identity)
            if opponent:
                notices.append(self._notice('opponentReconnected', {'player': identity}, to=opponent))
            notices.append(self._players_updated())
        return notices, was_disconnected

    def submit_board(self, identity: str, board: Any) -> List[Notice]:
        self._require_player(identity)
        if self.game_over:
            raise InvalidState('Game is over')
        if self.phase == Phase.IN_PROGRESS:
            raise InvalidState('Boards are locked while the game is in progress')

        self.boards[identity] = board
        self.ready.add(identity)
        self._touch()

        notices = []
        if self.phase == Phase.IN_PROGRESS:
            if self.turn not in self.players:
                self.turn = self.players[0]
            notices.append(self._notice('gameStarted', {'startedBy': self.turn}))
            notices.append(self._notice('turnBegan', {'currentPlayer': self.turn}))
        return notices

    def submit_shot(self, identity: str, row, col, throttle=None) -> List[Notice]:
        self._require_player(identity)
        if self.game_over:
            raise InvalidState('Game is over')
        if self.turn != identity:
            raise NotYourTurn()
        opponent = self.opponent_of(identity)
        if opponent is None:
            raise NoOpponent()
        if self.phase != Phase.IN_PROGRESS:
            raise InvalidState('Game has not started')
        if not (_is_coordinate(row, self.board_size) and _is_coordinate(col, self.board_size)):
            raise InvalidCoordinates()
        if throttle is not None and not throttle(identity):
            raise RateLimited()
        if self.pending_shot is not None:
            raise InvalidState('Waiting for the result of your last shot')

        self.pending_shot = {'attacker': identity, 'row': row, 'col': col}
        self.history.append(MoveEvent(kind='shot', player=identity, row=row, col=col, ts=self._clock()))
        self._touch()
        return [self._notice('shotIncoming', {'row': row, 'col': col, 'from': identity}, to=opponent)]

    def submit_result(self, identity: str, outcome, row, col, attacker: Optional[str] = None,
                      all_sunk: bool = False) -> List[Notice]:
        self._require_player(identity)
        if self.phase != Phase.IN_PROGRESS:
            raise InvalidState('Game has not started')
        attacker = attacker or self.opponent_of(identity)
        if attacker is None or attacker == identity or attacker not in self.players:
            raise UnknownAttacker()
        if self.turn != attacker:
            raise NotYourTurn('No shot from that attacker is pending')
        if not (_is_coordinate(row, self.board_size) and _is_coordinate(col, self.board_size)):
            raise InvalidCoordinates()
        if not isinstance(all_sunk, bool):
            raise InvalidState('allSunk must be true or false')
        if self.pending_shot != {'attacker': attacker, 'row': row, 'col': col}:
            raise InvalidState('No pending shot at those coordinates')

        self.pending_shot = None
        self.history.append(MoveEvent(
            kind='result', player=identity, row=row, col=col, ts=self._clock(),
            attacker=attacker, defender=identity, outcome=outcome, all_sunk=all_sunk,
        ))
        self._touch()

        feedback = {'result': outcome, 'row': row, 'col': col, 'allSunk': all_sunk}
        if all_sunk:
            self.game_over = True
            self.winner = attacker
            self.turn = None
            feedback['nextPlayer'] = None
            return [
                self._notice('shotFeedback', feedback, to=attacker),
                self._notice('gameEnded', {'winner': attacker, 'loser': identity}),
            ]

        # The side that was just shot at acts next
        self.turn = identity
        feedback['nextPlayer'] = identity
        return [
            self._notice('shotFeedback', feedback, to=attacker),
            self._notice('turnBegan', {'currentPlayer': identity}, to=identity),
        ]

    def request_restart(self, identity: str):
        """Returns (notices, restarted)."""
        self._require_player(identity)
        if not self.game_over:
            raise InvalidState('Game is not over')

        self.restart_requests.add(identity)
        self._touch()
        if self.is_full and all(p in self.restart_requests for p in self.players):
            self._reset_for_rematch()
            return [self._notice('gameRestarted', {'turn': self.turn})], True

        opponent = self.opponent_of(identity)
        notices = []
        if opponent:
            notices.append(self._notice('opponentRequestsRestart', {'player': identity}, to=opponent))
        return notices, False

    def _reset_for_rematch(self) -> None:
        self.boards.clear()
        self.ready.clear()
        self.history.clear()
        self.event_buffer.clear()
        self.restart_requests.clear()
        self.pending_shot = None
        self.turn = self.players[0] if self.players else None
        self.game_over = False
        self.winner = None

    def cancel_restart(self, identity: str) -> List[Notice]:
        self._require_player(identity)
        self.restart_requests.clear()
        self._touch()
        opponent = self.opponent_of(identity)
        if opponent is None:
            return []
        return [self._notice('opponentCancelledRestart', {'player': identity}, to=opponent)]

    def leave(self, identity: str) -> List[Notice]:
        self._require_player(identity)
        opponent = self.opponent_of(identity)

        self.players.remove(identity)
        self.boards.pop(identity, None)
        self.ready.discard(identity)
        self.restart_requests.clear()
        entry = self.disconnected.pop(identity, None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()
        self.pending_shot = None
        if self.game_over:
            # A finished game cannot be rematched without two seats; reopen it
            self._reset_for_rematch()
        elif self.turn == identity:
            self.turn = self.players[0] if self.players else None
        self._touch()

        notices = []
        if opponent:
            notices.append(self._notice('opponentLeft', {'player': identity}, to=opponent))
        notices.append(self._players_updated())
        return notices

    def mark_disconnected(self, identity: str, grace_seconds: int) -> List[Notice]:
        self._require_player(identity)
        previous = self.disconnected.get(identity)
        if previous is not None and previous.timer is not None:
            previous.timer.cancel()
        self.disconnected[identity] = DisconnectEntry(since=self._clock())
        self._touch()
        opponent = self.opponent_of(identity)
        if opponent is None:
            return []
        return [self._notice('opponentDisconnected', {'player': identity, 'graceSeconds': grace_seconds}, to=opponent)]

    def expire_grace(self, identity: str, since: float) -> Optional[List[Notice]]:
        """Drop a seat whose grace period ran out.

        Returns None when the disconnect this timer belonged to is no longer
        current (the player resumed, left, or disconnected again since).
        """
        entry = self.disconnected.get(identity)
        if entry is None or entry.since != since or identity not in self.players:
            return None
        entry.timer = None
        return self.leave(identity)

    # ---- views ----

    def snapshot(self, identity: str, history_count: int = 50) -> Dict[str, Any]:
        recent = list(self.history)[-history_count:] if history_count > 0 else []
        return {
            'roomCode': self.room_code,
            'phase': self.phase.value,
            'players': list(self.players),
            'boards': {identity: self.boards[identity]} if identity in self.boards else {},
            'ready': [p for p in self.players if p in self.ready],
            'turn': self.turn,
            'gameOver': self.game_over,
            'winner': self.winner,
            'restartRequests': sorted(self.restart_requests),
            'pendingShot': dict(self.pending_shot) if self.pending_shot else None,
            'recentHistory': [m.to_dict() for m in recent],
            'eventBuffer': [e.to_dict() for e in self.event_buffer if e.to in (ROOM, identity)],
        }

    def summary(self) -> Dict[str, Any]:
        return {
            'roomCode': self.room_code,
            'phase': self.phase.value,
            'players': list(self.players),
            'turn': self.turn,
            'gameOver': self.game_over,
            'winner': self.winner,
            'disconnected': sorted(self.disconnected),
            'historyLength': len(self.history),
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
        }
