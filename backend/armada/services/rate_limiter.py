import logging
import threading
import time
from typing import Dict, List


logger = logging.getLogger(__name__)


class RateLimiter:
    """Per-identity sliding-window throttle.

    ``allow`` records the action when it is accepted. ``sweep`` forgets
    identities that have been quiet for ten windows so the table stays small.
    """

    def __init__(self, window_ms: int = 1000, max_actions: int = 1, clock=time.monotonic):
        self.window = window_ms / 1000.0
        self.max_actions = max_actions
        self._clock = clock
        self._actions: Dict[str, List[float]] = {}
        self._lock = threading.Lock()
        self._sweep_handle = None

    def allow(self, identity: str) -> bool:
        now = self._clock()
        with self._lock:
            recent = [t for t in self._actions.get(identity, []) if t > now - self.window]
            if len(recent) >= self.max_actions:
                self._actions[identity] = recent
                return False
            recent.append(now)
            self._actions[identity] = recent
            return True

    def sweep(self) -> int:
        now = self._clock()
        horizon = now - self.window * 10
        dropped = 0
        with self._lock:
            for identity in list(self._actions):
                kept = [t for t in self._actions[identity] if t > horizon]
                if kept:
                    self._actions[identity] = kept
                else:
                    del self._actions[identity]
                    dropped += 1
        if dropped:
            logger.debug(f"[ratelimit-sweep] dropped={dropped} tracked={len(self._actions)}")
        return dropped

    def start_sweeper(self, scheduler, interval: float) -> None:
        def _tick():
            self.sweep()
            self._sweep_handle = scheduler.call_later(interval, _tick)

        self._sweep_handle = scheduler.call_later(interval, _tick)

    def stop_sweeper(self) -> None:
        if self._sweep_handle is not None:
            self._sweep_handle.cancel()
            self._sweep_handle = None

    def tracked(self) -> int:
        with self._lock:
            return len(self._actions)
