import random
import threading
import uuid
from typing import Callable, Dict, List, Optional

from quizcast.errors import CapacityError, NoFreePin

from .questions import Quiz
from .session import GameSettings, Session, SessionState


class SessionRegistry:
    """Live sessions by PIN, plus a host-connection index.

    The registry lock only guards the two maps. It is never held while a
    session lock is being acquired.
    """

    def __init__(self, rng: Optional[random.Random] = None,
                 clock: Optional[Callable[[], int]] = None,
                 pin_length: int = 6, max_attempts: int = 100,
                 max_sessions: int = 100, logger=None):
        self.rng = rng or random.Random()
        self.clock = clock or (lambda: 0)
        self.pin_length = pin_length
        self.max_attempts = max_attempts
        self.max_sessions = max_sessions
        self.logger = logger
        self._sessions: Dict[str, Session] = {}
        self._by_host: Dict[str, str] = {}
        self._lock = threading.Lock()

    def _draw_pin(self) -> str:
        low = 10 ** (self.pin_length - 1)
        return str(self.rng.randint(low, 10 ** self.pin_length - 1))

    def create(self, host_conn: str, quiz: Quiz, settings: GameSettings) -> Session:
        with self._lock:
            if len(self._sessions) >= self.max_sessions:
                raise CapacityError('Server is at capacity, try again later', code='server-full')
            for attempt in range(self.max_attempts):
                pin = self._draw_pin()
                if pin not in self._sessions:
                    break
                if self.logger:
                    self.logger.debug(f"[pin-collision] pin={pin} attempt={attempt + 1}")
            else:
                raise NoFreePin('Could not allocate a game PIN')
            session = Session(pin, host_conn, quiz, settings,
                              game_id=str(uuid.uuid4()), created_mono=self.clock())
            self._sessions[pin] = session
            self._by_host[host_conn] = pin
        if self.logger:
            self.logger.info(f"[game-created] pin={pin} game={session.id} host={host_conn}")
        return session

    def get(self, pin) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(str(pin)) if pin is not None else None

    def find_by_host(self, conn_id: str) -> Optional[Session]:
        with self._lock:
            pin = self._by_host.get(conn_id)
            return self._sessions.get(pin) if pin else None

    def delete(self, pin: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.pop(pin, None)
            if session is not None and self._by_host.get(session.host_conn) == pin:
                del self._by_host[session.host_conn]
        if session is not None:
            session.cancel_timers()
            if self.logger:
                self.logger.info(f"[game-deleted] pin={pin}")
        return session

    def list_joinable(self) -> List[dict]:
        return [s.summary_row() for s in self.all() if s.state == SessionState.LOBBY]

    def all(self) -> List[Session]:
        with self._lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
