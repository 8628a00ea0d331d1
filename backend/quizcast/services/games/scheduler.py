import threading
from typing import Callable, List


class TimerHandle:
    """Cancellable reference to a scheduled callback. Cancel is idempotent."""

    def __init__(self, delay_ms: int):
        self.delay_ms = delay_ms
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class BackgroundScheduler:
    """One-shot and periodic timers run as Socket.IO background tasks.

    Works with whichever async driver Flask-SocketIO picked (threading,
    eventlet or gevent): workers are started with
    ``socketio.start_background_task`` and sleep with ``socketio.sleep``.
    A cancelled handle is checked after waking, so a late cancel simply
    turns the fire into a no-op.
    """

    def __init__(self, socketio, logger=None):
        self.socketio = socketio
        self.logger = logger
        self._periodic: List[TimerHandle] = []
        self._lock = threading.Lock()

    def call_later(self, delay_ms: int, fn: Callable, *args) -> TimerHandle:
        handle = TimerHandle(delay_ms)
        self.socketio.start_background_task(self._worker, handle, fn, args)
        return handle

    def _worker(self, handle: TimerHandle, fn: Callable, args) -> None:
        self.socketio.sleep(max(0, handle.delay_ms) / 1000.0)
        if handle.cancelled:
            return
        handle.fired = True
        self._run(fn, args)

    def start_periodic(self, interval_ms: int, fn: Callable, name: str = 'task') -> TimerHandle:
        handle = TimerHandle(interval_ms)
        with self._lock:
            self._periodic.append(handle)
        if self.logger:
            self.logger.info(f"[periodic-start] task={name} interval={interval_ms}ms")
        self.socketio.start_background_task(self._periodic_worker, handle, fn)
        return handle

    def _periodic_worker(self, handle: TimerHandle, fn: Callable) -> None:
        while True:
            self.socketio.sleep(handle.delay_ms / 1000.0)
            if handle.cancelled:
                return
            self._run(fn, ())

    def _run(self, fn: Callable, args) -> None:
        try:
            fn(*args)
        except Exception:
            # keep periodic workers alive
            if self.logger:
                self.logger.exception(f"[timer-error] callback={getattr(fn, '__name__', fn)}")

    def stop(self) -> None:
        with self._lock:
            handles, self._periodic = self._periodic, []
        for handle in handles:
            handle.cancel()
