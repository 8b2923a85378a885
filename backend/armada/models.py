from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Set


class Phase(str, Enum):
    WAITING_FOR_PLAYERS = 'waiting_for_players'
    BOARDS_PENDING = 'boards_pending'
    IN_PROGRESS = 'in_progress'
    GAME_OVER = 'game_over'


@dataclass
class MoveEvent:
    """A relayed shot or the defender's report about it."""
    kind: str  # 'shot' or 'result'
    player: str
    row: int
    col: int
    ts: float
    attacker: Optional[str] = None
    defender: Optional[str] = None
    outcome: Optional[str] = None
    all_sunk: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'type': self.kind,
            'player': self.player,
            'row': self.row,
            'col': self.col,
            'ts': self.ts,
        }
        if self.kind == 'result':
            data.update({
                'attacker': self.attacker,
                'defender': self.defender,
                'result': self.outcome,
                'allSunk': self.all_sunk,
            })
        return data


@dataclass
class BufferedEvent:
    seq: int
    event: str
    payload: Dict[str, Any]
    ts: float
    to: str = '*'

    def to_dict(self) -> Dict[str, Any]:
        return {'seq': self.seq, 'event': self.event, 'payload': self.payload, 'ts': self.ts}


@dataclass
class DisconnectEntry:
    since: float
    timer: Any = None


@dataclass
class SessionEntry:
    room_code: str
    identity: str
    created_at: float
    connections: Set[str] = field(default_factory=set)
