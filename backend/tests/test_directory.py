import random

import pytest

from conftest import make_quiz
from quizcast.errors import LookupFailure, NameTaken, PlayerLimitReached, ProtocolError, StateError
from quizcast.services.games.directory import ParticipantDirectory
from quizcast.services.games.questions import parse_quiz
from quizcast.services.games.registry import SessionRegistry
from quizcast.services.games.session import GameSettings, SessionState


@pytest.fixture()
def setup():
    registry = SessionRegistry(rng=random.Random(9))
    directory = ParticipantDirectory(registry, max_name_len=20, max_players=3)
    session = registry.create('host', parse_quiz(make_quiz(), default_time_ms=20000), GameSettings())
    directory.register_host('host', session.pin)
    return registry, directory, session


def test_join_assigns_server_ids_in_order(setup):
    _, directory, session = setup
    alice = directory.join(session.pin, 'c1', '  Alice ')
    bob = directory.join(session.pin, 'c2', 'Bob')
    assert alice.display_name == 'Alice'
    assert alice.player_id != bob.player_id
    assert [p.display_name for p in session.players.values()] == ['Alice', 'Bob']
    membership = directory.lookup('c1')
    assert membership.pin == session.pin and membership.player_id == alice.player_id
    assert directory.lookup('host').is_host


def test_name_uniqueness_is_case_insensitive(setup):
    _, directory, session = setup
    directory.join(session.pin, 'c1', 'Alice')
    with pytest.raises(NameTaken):
        directory.join(session.pin, 'c2', ' ALICE ')


def test_name_length_bounds(setup):
    _, directory, session = setup
    assert directory.join(session.pin, 'c1', 'x' * 20).display_name == 'x' * 20
    with pytest.raises(ProtocolError) as exc:
        directory.join(session.pin, 'c2', 'y' * 21)
    assert exc.value.code == 'invalid-name'
    with pytest.raises(ProtocolError):
        directory.join(session.pin, 'c3', '   ')


def test_join_rejections(setup):
    _, directory, session = setup
    with pytest.raises(LookupFailure):
        directory.join('000000', 'c1', 'Alice')
    with pytest.raises(StateError) as exc:
        directory.join(session.pin, 'host', 'Sneaky')
    assert exc.value.code == 'already-in-game'
    session.state = SessionState.ASKING
    with pytest.raises(StateError) as exc:
        directory.join(session.pin, 'c1', 'Alice')
    assert exc.value.code == 'game-already-started'


def test_player_cap(setup):
    _, directory, session = setup
    for i in range(3):
        directory.join(session.pin, f'c{i}', f'P{i}')
    with pytest.raises(PlayerLimitReached):
        directory.join(session.pin, 'c9', 'Late')


def test_rename_lobby_only(setup):
    _, directory, session = setup
    directory.join(session.pin, 'c1', 'Alice')
    directory.join(session.pin, 'c2', 'Bob')
    assert directory.rename('c1', 'alice2').display_name == 'alice2'
    # Renaming to your own name in different case is fine
    assert directory.rename('c1', 'ALICE2').display_name == 'ALICE2'
    with pytest.raises(NameTaken):
        directory.rename('c1', 'bob')
    assert directory.rename('stranger', 'Whoever') is None
    session.state = SessionState.REVEAL
    with pytest.raises(StateError):
        directory.rename('c1', 'Carol')


def test_leave_is_idempotent_and_drop_session(setup):
    _, directory, session = setup
    directory.join(session.pin, 'c1', 'Alice')
    assert directory.leave('c1').role == 'player'
    assert directory.leave('c1') is None
    assert directory.lookup('c1') is None
    directory.join(session.pin, 'c2', 'Bob')
    assert sorted(directory.drop_session(session.pin)) == ['c2', 'host']
    assert directory.lookup('host') is None


def test_connection_claimed_once_even_if_early_check_passes(setup, monkeypatch):
    _, directory, session = setup
    directory.join(session.pin, 'c1', 'Alice')
    # two joins from one connection racing past the early membership check
    monkeypatch.setattr(directory, 'lookup', lambda conn_id: None)
    with pytest.raises(StateError) as exc:
        directory.join(session.pin, 'c1', 'Alicia')
    assert exc.value.code == 'already-in-game'
    assert [p.display_name for p in session.players.values()] == ['Alice']
    assert session.next_join_seq == 1


def test_player_connection_cannot_register_as_host(setup):
    _, directory, session = setup
    directory.join(session.pin, 'c1', 'Alice')
    with pytest.raises(StateError):
        directory.register_host('c1', session.pin)
    assert not directory.lookup('c1').is_host
