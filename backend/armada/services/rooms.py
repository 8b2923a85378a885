import logging
import re
import threading
import time
from typing import Dict, List, Optional

from armada.errors import InvalidRoomCode
from armada.services.game_session import GameSession


logger = logging.getLogger(__name__)

ROOM_CODE_RE = re.compile(r'^[A-Z0-9_-]{1,32}$')


def normalize_room_code(raw) -> str:
    if not isinstance(raw, str):
        raise InvalidRoomCode()
    code = raw.strip().upper()
    if not ROOM_CODE_RE.match(code):
        raise InvalidRoomCode()
    return code


class RoomStore:
    """Active rooms keyed by normalized code, with idle eviction.

    Several stores can live side by side; nothing here is process-global.
    ``on_evict`` is called with the room code after a room is deleted.
    """

    def __init__(self, scheduler, ttl_seconds: float = 600, clock=time.time,
                 on_evict=None, session_options: Optional[dict] = None):
        self._scheduler = scheduler
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._on_evict = on_evict
        self._session_options = session_options or {}
        self._rooms: Dict[str, GameSession] = {}
        self._lock = threading.Lock()

    def get(self, room_code: str) -> Optional[GameSession]:
        with self._lock:
            return self._rooms.get(room_code)

    def get_or_create(self, room_code: str) -> GameSession:
        with self._lock:
            room = self._rooms.get(room_code)
            if room is None:
                room = GameSession(room_code, clock=self._clock, **self._session_options)
                self._rooms[room_code] = room
                logger.info(f"[room-create] room={room_code}")
            return room

    def codes(self) -> List[str]:
        with self._lock:
            return sorted(self._rooms)

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)

    def __contains__(self, room_code) -> bool:
        with self._lock:
            return room_code in self._rooms

    def schedule_eviction_if_idle(self, room_code: str) -> None:
        """Arm the TTL timer for an idle room, or disarm it for a busy one.

        Callers hold the room lock.
        """
        room = self.get(room_code)
        if room is None:
            return
        if not room.is_idle():
            if room.eviction_timer is not None:
                room.eviction_timer.cancel()
                room.eviction_timer = None
                logger.debug(f"[evict-cancel] room={room_code}")
            return
        if room.eviction_timer is not None and room.eviction_timer.active:
            return
        room.eviction_timer = self._scheduler.call_later(self.ttl_seconds, self._evict_if_still_idle, room_code, room)
        logger.info(f"[evict-set] room={room_code} ttl={self.ttl_seconds}s")

    def _evict_if_still_idle(self, room_code: str, room: GameSession) -> None:
        with room.lock:
            if self.get(room_code) is not room:
                logger.info(f"[timer-abort] room={room_code} already replaced or deleted")
                return
            if not room.is_idle():
                logger.info(f"[timer-abort] room={room_code} no longer idle")
                return
            room.eviction_timer = None
            self.delete(room_code)
            logger.info(f"[evict] room={room_code} removed after {self.ttl_seconds}s idle")

    def delete(self, room_code: str) -> bool:
        with self._lock:
            room = self._rooms.pop(room_code, None)
        if room is None:
            return False
        if room.eviction_timer is not None:
            room.eviction_timer.cancel()
            room.eviction_timer = None
        for entry in room.disconnected.values():
            if entry.timer is not None:
                entry.timer.cancel()
        if self._on_evict is not None:
            self._on_evict(room_code)
        return True
