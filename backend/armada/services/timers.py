import logging
import time


logger = logging.getLogger(__name__)


class TimerHandle:
    """A pending delayed call. ``cancel()`` keeps it from running."""

    def __init__(self, deadline: float):
        self.deadline = deadline
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.fired)


class BackgroundScheduler:
    """Runs delayed callbacks as Socket.IO background tasks.

    Works with whichever async mode Flask-SocketIO picked (threading,
    eventlet or gevent) because both the task and its sleep go through the
    SocketIO object.
    """

    def __init__(self, socketio, clock=time.monotonic):
        self._socketio = socketio
        self._clock = clock

    def call_later(self, delay: float, callback, *args) -> TimerHandle:
        handle = TimerHandle(self._clock() + delay)

        def _runner():
            sleep_for = max(0.0, handle.deadline - self._clock())
            if sleep_for:
                self._socketio.sleep(sleep_for)
            if handle.cancelled:
                return
            handle.fired = True
            try:
                callback(*args)
            except Exception:
                logger.exception(f"[timer-error] callback={getattr(callback, '__name__', callback)}")

        self._socketio.start_background_task(_runner)
        return handle
