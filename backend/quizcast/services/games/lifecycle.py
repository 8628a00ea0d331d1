import threading
from typing import Callable, List, Optional, Tuple

from quizcast.errors import StateError

from .engine import EngineContext, QuestionFlowEngine
from .questions import parse_quiz
from .session import GameSettings, Session

REASON_MESSAGES = {
    'host-left': 'The host left the game',
    'host-ended': 'The host ended the game',
    'host-started-new-game': 'The host started a new game',
    'server-shutdown': 'The server is shutting down',
    'orphaned': 'The host is no longer connected',
    'expired': 'The game was open too long and has been closed',
    'internal': 'The game was stopped by a server error',
}

# The host either caused these or is gone, so only players are told
_HOST_EXCLUDED_REASONS = {'host-left', 'host-started-new-game'}


class LifecycleManager:
    """Creation, host controls and teardown of sessions."""

    def __init__(self, registry, directory, router, rate_limiter, ctx: EngineContext,
                 is_connected: Optional[Callable[[str], bool]] = None,
                 max_session_age_ms: int = 2 * 60 * 60 * 1000):
        self.registry = registry
        self.directory = directory
        self.router = router
        self.rate_limiter = rate_limiter
        self.ctx = ctx
        self.is_connected = is_connected
        self.max_session_age_ms = max_session_age_ms
        # serialises host-join so one connection never ends up hosting twice
        self._create_lock = threading.Lock()

    @property
    def logger(self):
        return self.ctx.logger

    def create_session(self, host_conn: str, quiz_payload, settings_payload=None) -> Session:
        with self._create_lock:
            return self._create_session(host_conn, quiz_payload, settings_payload)

    def _create_session(self, host_conn: str, quiz_payload, settings_payload=None) -> Session:
        membership = self.directory.lookup(host_conn)
        if membership is not None and not membership.is_host:
            raise StateError('Connection is already playing in a game', code='already-in-game')
        # Older clients put the settings flags on the quiz object itself
        if settings_payload is None and isinstance(quiz_payload, dict):
            settings_payload = quiz_payload
        settings = GameSettings.from_payload(settings_payload)
        rules = self.ctx.rules
        quiz = parse_quiz(
            quiz_payload,
            default_time_ms=rules.question_default_time_ms,
            global_time_limit_ms=settings.global_time_limit_ms,
            default_tolerance=rules.default_numeric_tolerance,
        )

        existing = self.registry.find_by_host(host_conn)
        if existing is not None:
            self.terminate(existing.pin, 'host-started-new-game')

        session = self.registry.create(host_conn, quiz, settings)
        try:
            self.directory.register_host(host_conn, session.pin)
        except StateError:
            self.registry.delete(session.pin)
            raise
        QuestionFlowEngine(session, self.ctx)
        self.router.to_conn(host_conn, 'game-created', {
            'pin': session.pin,
            'gameId': session.id,
            'title': session.title,
            'questionCount': session.question_count,
            'settings': settings.to_dict(),
        })
        self.router.broadcast_availability('game-available', {
            'pin': session.pin,
            'title': session.title,
            'questionCount': session.question_count,
            'createdAt': session.created_at,
        }, skip_conn=host_conn)
        return session

    def hosted_by(self, conn_id: str) -> Optional[Session]:
        return self.registry.find_by_host(conn_id)

    def start_game(self, conn_id: str) -> None:
        session = self.hosted_by(conn_id)
        if session is not None:
            session.engine.start()

    def next_question(self, conn_id: str) -> None:
        session = self.hosted_by(conn_id)
        if session is not None:
            session.engine.advance()

    def rematch(self, conn_id: str) -> None:
        session = self.hosted_by(conn_id)
        if session is not None:
            session.engine.reset()

    def end_game(self, conn_id: str) -> None:
        session = self.hosted_by(conn_id)
        if session is not None:
            self.terminate(session.pin, 'host-ended')

    def terminate(self, pin: str, reason: str, message: Optional[str] = None) -> bool:
        session = self.registry.get(pin)
        if session is None:
            return False
        payload = {'reason': reason, 'message': message or REASON_MESSAGES.get(reason, reason)}
        with session.lock:
            if session.terminated:
                return False
            session.terminated = True
            if session.engine is not None:
                session.engine.halt()
            if reason in _HOST_EXCLUDED_REASONS:
                self.router.to_players(pin, 'game-ended', payload)
            else:
                self.router.to_all(pin, 'game-ended', payload)
        try:
            if session.engine is not None:
                session.engine.save_results(reason)
        finally:
            for conn_id in self.directory.drop_session(pin):
                self.router.forget(conn_id)
            self.registry.delete(pin)
        self.logger.info(f"[game-ended] pin={pin} reason={reason}")
        return True

    def disconnect(self, conn_id: str) -> None:
        """Transport lost the connection."""
        self.rate_limiter.forget(conn_id)
        self.router.forget(conn_id)
        self._depart(conn_id)

    def leave(self, conn_id: str) -> None:
        self._depart(conn_id)

    def _depart(self, conn_id: str) -> None:
        membership = self.directory.leave(conn_id)
        if membership is None:
            hosted = self.registry.find_by_host(conn_id)
            if hosted is not None:
                self.terminate(hosted.pin, 'host-left')
            return
        if membership.is_host:
            self.terminate(membership.pin, 'host-left')
            return
        session = self.registry.get(membership.pin)
        if session is not None and session.engine is not None:
            session.engine.player_left(membership.player_id)

    def sweep(self) -> List[Tuple[str, str]]:
        """Terminate sessions whose host is gone or that are too old."""
        now = self.ctx.clock()
        ended = []
        for session in self.registry.all():
            reason = None
            if self.is_connected is not None and not self.is_connected(session.host_conn):
                reason = 'orphaned'
            elif now - session.created_mono >= self.max_session_age_ms:
                reason = 'expired'
            if reason and self.terminate(session.pin, reason):
                ended.append((session.pin, reason))
        if ended:
            self.logger.info(f"[sweep] terminated={len(ended)} remaining={len(self.registry)}")
        return ended

    def shutdown(self) -> int:
        count = 0
        for session in self.registry.all():
            if self.terminate(session.pin, 'server-shutdown'):
                count += 1
        self.logger.info(f"[shutdown] sessions={count}")
        return count
