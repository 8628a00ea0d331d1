import threading
from typing import Callable, Dict, Optional, Tuple


class EventRouter:
    """Publishes game events to the right audience of a session.

    Every emit targets a single connection id, so Flask-SocketIO keeps
    per-connection ordering. Unknown PINs or players are dropped silently,
    as are sends to connections that have already gone away.
    """

    def __init__(self, socketio, registry, namespace: str = '/',
                 clock: Optional[Callable[[], int]] = None,
                 noncritical_min_interval_ms: int = 0, logger=None):
        self.socketio = socketio
        self.registry = registry
        self.namespace = namespace
        self.clock = clock
        self.noncritical_min_interval_ms = noncritical_min_interval_ms
        self.logger = logger
        self._last_sent: Dict[Tuple[str, str], int] = {}
        self._lock = threading.Lock()

    def to_conn(self, conn_id: Optional[str], event: str, payload=None) -> None:
        if not conn_id:
            return
        self.socketio.emit(event, payload if payload is not None else {},
                           to=conn_id, namespace=self.namespace)

    def to_host(self, pin: str, event: str, payload=None) -> None:
        session = self.registry.get(pin)
        if session is not None:
            self.to_conn(session.host_conn, event, payload)

    def to_players(self, pin: str, event: str, payload=None) -> None:
        session = self.registry.get(pin)
        if session is None:
            return
        for player in list(session.players.values()):
            self.to_conn(player.conn_id, event, payload)

    def to_all(self, pin: str, event: str, payload=None) -> None:
        self.to_host(pin, event, payload)
        self.to_players(pin, event, payload)

    def to_player(self, pin: str, player_id: str, event: str, payload=None) -> None:
        session = self.registry.get(pin)
        player = session.players.get(player_id) if session is not None else None
        if player is not None:
            self.to_conn(player.conn_id, event, payload)

    def to_host_noncritical(self, pin: str, event: str, payload: dict, final: bool = False) -> bool:
        """Coalesced send: skipped when the previous one to the same
        connection went out too recently, unless ``final`` is set."""
        session = self.registry.get(pin)
        if session is None:
            return False
        key = (session.host_conn, event)
        interval = self.noncritical_min_interval_ms
        if interval and self.clock is not None:
            now = self.clock()
            with self._lock:
                last = self._last_sent.get(key)
                if not final and last is not None and now - last < interval:
                    return False
                self._last_sent[key] = now
        self.to_conn(session.host_conn, event, payload)
        return True

    def broadcast_availability(self, event: str, payload, skip_conn: Optional[str] = None) -> None:
        self.socketio.emit(event, payload, namespace=self.namespace, skip_sid=skip_conn)

    def forget(self, conn_id: str) -> None:
        with self._lock:
            for key in [k for k in self._last_sent if k[0] == conn_id]:
                del self._last_sent[key]
