"""Wires the game services together and exposes one method per inbound
realtime event."""

import random
import time
from typing import Callable, Optional

from quizcast.errors import GameError, InvalidPin, ProtocolError

from .directory import ParticipantDirectory
from .engine import EngineContext
from .lifecycle import LifecycleManager
from .rate_limiter import RateLimiter
from .registry import SessionRegistry
from .router import EventRouter
from .scheduler import BackgroundScheduler
from .session import GameRules, Session


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


def _payload(data) -> dict:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ProtocolError('Payload must be an object')
    return data


class GameCoordinator:
    def __init__(self, socketio, config, logger, results=None, scheduler=None,
                 clock: Optional[Callable[[], int]] = None, rng: Optional[random.Random] = None,
                 is_connected: Optional[Callable[[str], bool]] = None):
        self.socketio = socketio
        self.config = config
        self.logger = logger
        self.namespace = config.get('SOCKETIO_NAMESPACE', '/')
        self.clock = clock or monotonic_ms
        self.rng = rng or random.Random()
        self.rules = GameRules.from_config(config)
        self.scheduler = scheduler or BackgroundScheduler(socketio, logger)

        self.registry = SessionRegistry(
            rng=self.rng,
            clock=self.clock,
            pin_length=int(config.get('PIN_LENGTH', 6)),
            max_attempts=int(config.get('PIN_MAX_ATTEMPTS', 100)),
            max_sessions=int(config.get('MAX_CONCURRENT_GAMES', 100)),
            logger=logger,
        )
        self.directory = ParticipantDirectory(
            self.registry,
            max_name_len=self.rules.max_player_name_len,
            max_players=self.rules.max_players_per_game,
            logger=logger,
        )
        self.router = EventRouter(
            socketio, self.registry,
            namespace=self.namespace,
            clock=self.clock,
            noncritical_min_interval_ms=int(config.get('NONCRITICAL_MIN_INTERVAL_MS', 0)),
            logger=logger,
        )
        self.rate_limiter = RateLimiter(
            config.get('RATE_LIMITS') or {},
            window_ms=int(config.get('RATE_LIMIT_WINDOW_MS', 1000)),
            clock=self.clock,
        )
        self.ctx = EngineContext(
            router=self.router,
            scheduler=self.scheduler,
            clock=self.clock,
            rules=self.rules,
            rng=self.rng,
            results=results,
            logger=logger,
            on_fatal=self._on_fatal,
        )
        self.lifecycle = LifecycleManager(
            self.registry, self.directory, self.router, self.rate_limiter, self.ctx,
            is_connected=is_connected or self._transport_has,
            max_session_age_ms=int(config.get('MAX_SESSION_AGE_MS', 2 * 60 * 60 * 1000)),
        )
        self._periodic = []

    def _transport_has(self, conn_id: str) -> bool:
        return self.socketio.server.manager.is_connected(conn_id, self.namespace)

    # ---- fault isolation ----

    def _on_fatal(self, session: Session) -> None:
        try:
            self.lifecycle.terminate(session.pin, 'internal')
        except Exception:
            self.logger.exception(f"[fatal] pin={session.pin} teardown failed")
            self.registry.delete(session.pin)

    def _guarded(self, session: Optional[Session], fn, *args):
        """Run a session operation; an unexpected error ends only that session."""
        try:
            return fn(*args)
        except GameError:
            raise
        except Exception:
            if session is None:
                raise
            self.logger.exception(f"[fatal] pin={session.pin} op={getattr(fn, '__name__', fn)}")
            self._on_fatal(session)
            return None

    def _player_session(self, conn_id: str):
        membership = self.directory.lookup(conn_id)
        if membership is None or membership.is_host:
            return None, None
        session = self.registry.get(membership.pin)
        if session is None:
            return None, None
        return session, membership.player_id

    # ---- inbound events ----

    def check_rate(self, conn_id: str, event: str) -> int:
        return self.rate_limiter.check(conn_id, event)

    def host_join(self, conn_id: str, data) -> Session:
        data = _payload(data)
        if 'quiz' not in data:
            raise ProtocolError('"quiz" is required')
        return self.lifecycle.create_session(conn_id, data['quiz'], data.get('settings'))

    def player_join(self, conn_id: str, data):
        data = _payload(data)
        pin = data.get('pin')
        if pin is None or (isinstance(pin, str) and not pin.strip()):
            raise ProtocolError('"pin" is required')
        pin = str(pin).strip()
        if not pin.isdigit() or len(pin) != self.registry.pin_length:
            raise InvalidPin(f"PIN must be {self.registry.pin_length} digits")
        player = self.directory.join(pin, conn_id, data.get('name'))
        session = self.registry.get(pin)
        if session is None:
            return player
        with session.lock:
            players = session.player_list()
            self.router.to_conn(conn_id, 'player-joined', {
                'playerName': player.display_name,
                'playerId': player.player_id,
                'gamePin': pin,
                'players': players,
                'powerUpsEnabled': session.settings.power_ups_enabled,
            })
            self.router.to_all(pin, 'player-list-update', {'players': players})
        return player

    def change_name(self, conn_id: str, data):
        data = _payload(data)
        player = self.directory.rename(conn_id, data.get('newName'))
        if player is None:
            return None
        session, _ = self._player_session(conn_id)
        self.router.to_conn(conn_id, 'name-changed', {'success': True, 'newName': player.display_name})
        if session is not None:
            with session.lock:
                self.router.to_all(session.pin, 'player-list-update', {'players': session.player_list()})
        return player

    def start_game(self, conn_id: str) -> None:
        session = self.lifecycle.hosted_by(conn_id)
        self._guarded(session, self.lifecycle.start_game, conn_id)

    def submit_answer(self, conn_id: str, data):
        data = _payload(data)
        session, player_id = self._player_session(conn_id)
        if session is None:
            return None
        if 'answer' not in data:
            raise ProtocolError('"answer" is required')
        return self._guarded(session, session.engine.submit_answer,
                             player_id, data['answer'], data.get('type'))

    def next_question(self, conn_id: str) -> None:
        session = self.lifecycle.hosted_by(conn_id)
        self._guarded(session, self.lifecycle.next_question, conn_id)

    def power_up(self, conn_id: str, data):
        data = _payload(data)
        session, player_id = self._player_session(conn_id)
        if session is None:
            return None
        kind = data.get('kind') or data.get('type')
        return self._guarded(session, session.engine.use_power_up, player_id, kind)

    def propose_answer(self, conn_id: str, data):
        data = _payload(data)
        session, player_id = self._player_session(conn_id)
        if session is None:
            return None
        if 'answer' not in data:
            raise ProtocolError('"answer" is required')
        return self._guarded(session, session.engine.propose_answer, player_id, data['answer'])

    def quick_response(self, conn_id: str, data):
        data = _payload(data)
        session, player_id = self._player_session(conn_id)
        if session is None:
            return None
        return self._guarded(session, session.engine.quick_response,
                             player_id, data.get('type'), data.get('targetPlayer'))

    def chat_message(self, conn_id: str, data):
        data = _payload(data)
        session, player_id = self._player_session(conn_id)
        if session is None:
            return None
        return self._guarded(session, session.engine.chat_message, player_id, data.get('text'))

    def lock_consensus(self, conn_id: str):
        session = self.lifecycle.hosted_by(conn_id)
        if session is None:
            return None
        return self._guarded(session, session.engine.lock_consensus)

    def rematch(self, conn_id: str) -> None:
        session = self.lifecycle.hosted_by(conn_id)
        self._guarded(session, self.lifecycle.rematch, conn_id)

    def end_game(self, conn_id: str) -> None:
        self.lifecycle.end_game(conn_id)

    def leave_game(self, conn_id: str) -> None:
        session, _ = self._player_session(conn_id)
        self._guarded(session, self.lifecycle.leave, conn_id)

    def disconnect(self, conn_id: str) -> None:
        session, _ = self._player_session(conn_id)
        self._guarded(session, self.lifecycle.disconnect, conn_id)

    # ---- housekeeping ----

    def start_background_tasks(self) -> None:
        self._periodic = [
            self.scheduler.start_periodic(
                int(self.config.get('RATE_LIMIT_SWEEP_INTERVAL_MS', 10000)),
                self.rate_limiter.prune, name='rate-limit-prune'),
            self.scheduler.start_periodic(
                max(60000, int(self.config.get('ORPHAN_SWEEP_INTERVAL_MS', 60000))),
                self.lifecycle.sweep, name='session-sweep'),
        ]

    def shutdown(self) -> int:
        for handle in self._periodic:
            handle.cancel()
        self._periodic = []
        count = self.lifecycle.shutdown()
        self.scheduler.stop()
        return count

    def active_games(self):
        return self.registry.list_joinable()
