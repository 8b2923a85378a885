import secrets
import threading
import time
from typing import Dict, List, Optional, Tuple

from armada.models import SessionEntry


class SessionRegistry:
    """Maps durable session tokens to a seat (room code + player identity).

    A token outlives the transport connection that created it; every live
    connection presenting it is tracked so the identity only counts as gone
    once the last one drops.
    """

    def __init__(self, clock=time.time):
        self._clock = clock
        self._entries: Dict[str, SessionEntry] = {}
        self._by_seat: Dict[Tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def create(self, room_code: str, identity: str) -> str:
        with self._lock:
            token = secrets.token_urlsafe(24)
            while token in self._entries:
                token = secrets.token_urlsafe(24)
            self._entries[token] = SessionEntry(room_code=room_code, identity=identity, created_at=self._clock())
            self._by_seat[(room_code, identity)] = token
            return token

    def resume(self, token: Optional[str], room_code: Optional[str] = None) -> Optional[Tuple[str, str]]:
        if not token or not isinstance(token, str):
            return None
        with self._lock:
            entry = self._entries.get(token)
        if entry is None:
            return None
        if room_code is not None and entry.room_code != room_code:
            return None
        return entry.room_code, entry.identity

    def drop(self, token: str) -> None:
        with self._lock:
            entry = self._entries.pop(token, None)
            if entry is not None:
                self._by_seat.pop((entry.room_code, entry.identity), None)

    def drop_room(self, room_code: str) -> List[str]:
        with self._lock:
            tokens = [t for t, e in self._entries.items() if e.room_code == room_code]
            for token in tokens:
                entry = self._entries.pop(token)
                self._by_seat.pop((entry.room_code, entry.identity), None)
            return tokens

    def token_for(self, room_code: str, identity: str) -> Optional[str]:
        with self._lock:
            return self._by_seat.get((room_code, identity))

    def attach(self, token: str, connection_id: str) -> None:
        with self._lock:
            entry = self._entries.get(token)
            if entry is not None:
                entry.connections.add(connection_id)

    def detach(self, token: str, connection_id: str) -> int:
        """Forget one connection; returns how many remain for the token."""
        with self._lock:
            entry = self._entries.get(token)
            if entry is None:
                return 0
            entry.connections.discard(connection_id)
            return len(entry.connections)

    def connections(self, token: str) -> List[str]:
        with self._lock:
            entry = self._entries.get(token)
            return sorted(entry.connections) if entry else []

    def __len__(self) -> int:
        return len(self._entries)
