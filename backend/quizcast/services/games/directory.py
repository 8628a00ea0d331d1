"""Connection-id to (PIN, role, player) membership.

Lock order: a session lock may be held while the directory lock is taken,
never the other way round.
"""

import threading
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional

from quizcast.errors import (
    LookupFailure, NameTaken, PlayerLimitReached, ProtocolError, StateError,
)

from .session import Player, Session, SessionState

ROLE_HOST = 'host'
ROLE_PLAYER = 'player'


@dataclass(frozen=True)
class Membership:
    pin: str
    role: str
    player_id: Optional[str] = None

    @property
    def is_host(self) -> bool:
        return self.role == ROLE_HOST


class ParticipantDirectory:
    def __init__(self, registry, max_name_len: int = 20, max_players: int = 200,
                 logger=None):
        self.registry = registry
        self.max_name_len = max_name_len
        self.max_players = max_players
        self.logger = logger
        self._members: Dict[str, Membership] = {}
        self._lock = threading.Lock()

    def clean_name(self, raw) -> str:
        if not isinstance(raw, str):
            raise ProtocolError('Name is required', code='invalid-name')
        name = raw.strip()
        if not name or len(name) > self.max_name_len:
            raise ProtocolError(f'Name must be 1 to {self.max_name_len} characters',
                                code='invalid-name')
        return name

    @staticmethod
    def _name_taken(session: Session, name: str, exclude: Optional[str] = None) -> bool:
        folded = name.casefold()
        return any(p.display_name.casefold() == folded
                   for p in session.players.values() if p.player_id != exclude)

    def register_host(self, conn_id: str, pin: str) -> None:
        with self._lock:
            current = self._members.get(conn_id)
            if current is not None and not current.is_host:
                raise StateError('Connection is already playing in a game', code='already-in-game')
            self._members[conn_id] = Membership(pin, ROLE_HOST)

    def join(self, pin, conn_id: str, requested_name) -> Player:
        session = self.registry.get(pin)
        if session is None:
            raise LookupFailure('Game not found')
        if self.lookup(conn_id) is not None:
            raise StateError('Connection is already in a game', code='already-in-game')
        name = self.clean_name(requested_name)
        with session.lock:
            if session.terminated:
                raise LookupFailure('Game not found')
            if session.state != SessionState.LOBBY:
                raise StateError('Game has already started', state=session.state.value,
                                 code='game-already-started')
            if len(session.players) >= self.max_players:
                raise PlayerLimitReached(f'Game is full ({self.max_players} players)')
            if self._name_taken(session, name):
                raise NameTaken('That name is already taken')
            player = Player(
                player_id=uuid.uuid4().hex,
                conn_id=conn_id,
                display_name=name,
                join_seq=session.next_join_seq,
            )
            player.reset(session.settings.power_ups_enabled)
            # check and claim the connection in one step
            with self._lock:
                if conn_id in self._members:
                    raise StateError('Connection is already in a game', code='already-in-game')
                self._members[conn_id] = Membership(session.pin, ROLE_PLAYER, player.player_id)
            session.next_join_seq += 1
            session.players[player.player_id] = player
        if self.logger:
            self.logger.info(f"[player-joined] pin={session.pin} player={player.player_id} name={name!r}")
        return player

    def rename(self, conn_id: str, new_name) -> Optional[Player]:
        membership = self.lookup(conn_id)
        if membership is None or membership.is_host:
            return None
        session = self.registry.get(membership.pin)
        if session is None:
            raise LookupFailure('Game not found')
        name = self.clean_name(new_name)
        with session.lock:
            player = session.players.get(membership.player_id)
            if player is None:
                return None
            if session.state != SessionState.LOBBY:
                raise StateError('Names can only be changed in the lobby',
                                 state=session.state.value, code='game-already-started')
            if self._name_taken(session, name, exclude=player.player_id):
                raise NameTaken('That name is already taken')
            player.display_name = name
        return player

    def leave(self, conn_id: str) -> Optional[Membership]:
        with self._lock:
            return self._members.pop(conn_id, None)

    def lookup(self, conn_id: str) -> Optional[Membership]:
        with self._lock:
            return self._members.get(conn_id)

    def drop_session(self, pin: str) -> List[str]:
        with self._lock:
            conns = [c for c, m in self._members.items() if m.pin == pin]
            for conn_id in conns:
                del self._members[conn_id]
        return conns
