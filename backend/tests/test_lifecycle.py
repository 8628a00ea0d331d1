import pytest

from conftest import make_quiz
from quizcast.errors import InvalidPin, InvalidQuiz, LookupFailure, StateError
from quizcast.services.games.session import SessionState


def host_game(coordinator, host='host', **settings):
    return coordinator.host_join(host, {'quiz': make_quiz(), 'settings': settings})


def join(coordinator, session, conn, name):
    return coordinator.player_join(conn, {'pin': session.pin, 'name': name})


def test_host_join_announces_game(coordinator, fake_sio):
    session = host_game(coordinator)
    created = fake_sio.last('host', 'game-created')
    assert created['pin'] == session.pin
    assert created['gameId'] == session.id
    assert created['title'] == 'Geography'
    available = [e for e in fake_sio.sent if e.event == 'game-available']
    assert len(available) == 1
    assert available[0].to is None and available[0].skip_sid == 'host'
    assert available[0].data['questionCount'] == 1
    assert coordinator.directory.lookup('host').is_host


def test_settings_may_ride_on_the_quiz(coordinator):
    quiz = dict(make_quiz(), manualAdvance=True, powerUpsEnabled=True)
    session = coordinator.host_join('host', {'quiz': quiz})
    assert session.settings.manual_advance is True
    assert session.settings.power_ups_enabled is True


def test_invalid_quiz_rejected(coordinator):
    with pytest.raises(InvalidQuiz):
        coordinator.host_join('host', {'quiz': {'title': 'Empty', 'questions': []}})
    assert len(coordinator.registry) == 0


def test_player_cannot_become_host(coordinator):
    session = host_game(coordinator)
    join(coordinator, session, 'p1', 'Alice')
    with pytest.raises(StateError) as exc:
        coordinator.host_join('p1', {'quiz': make_quiz()})
    assert exc.value.code == 'already-in-game'


def test_player_join_messages(coordinator, fake_sio):
    session = host_game(coordinator)
    alice = join(coordinator, session, 'p1', 'Alice')
    joined = fake_sio.last('p1', 'player-joined')
    assert joined['playerName'] == 'Alice'
    assert joined['playerId'] == alice.player_id
    assert joined['gamePin'] == session.pin
    assert joined['players'] == [{'playerId': alice.player_id, 'name': 'Alice', 'score': 0}]
    assert fake_sio.last('host', 'player-list-update')['players'][0]['name'] == 'Alice'

    coordinator.change_name('p1', {'newName': 'Alicia'})
    assert fake_sio.last('p1', 'name-changed') == {'success': True, 'newName': 'Alicia'}
    assert fake_sio.last('host', 'player-list-update')['players'][0]['name'] == 'Alicia'


def test_player_join_pin_checks(coordinator):
    with pytest.raises(InvalidPin):
        coordinator.player_join('p1', {'pin': '12ab', 'name': 'Alice'})
    with pytest.raises(LookupFailure):
        coordinator.player_join('p1', {'pin': '999999', 'name': 'Alice'})


def test_host_starting_new_game_ends_old_one(coordinator, fake_sio):
    old = host_game(coordinator)
    join(coordinator, old, 'p1', 'Alice')
    new = host_game(coordinator)
    assert fake_sio.last('p1', 'game-ended')['reason'] == 'host-started-new-game'
    assert fake_sio.last('host', 'game-ended') is None
    assert coordinator.registry.find_by_host('host') is new
    assert old.terminated
    assert coordinator.directory.lookup('p1') is None
    assert coordinator.directory.lookup('host').pin == new.pin


def test_end_game_by_host(coordinator, scheduler, fake_sio, results):
    session = host_game(coordinator)
    join(coordinator, session, 'p1', 'Alice')
    coordinator.start_game('host')
    scheduler.advance(3000)
    coordinator.end_game('host')
    assert fake_sio.last('host', 'game-ended')['reason'] == 'host-ended'
    assert fake_sio.last('p1', 'game-ended')['reason'] == 'host-ended'
    assert results.saved[0]['reason'] == 'host-ended'
    assert coordinator.registry.get(session.pin) is None
    # players of a finished session can no longer find it
    assert coordinator.end_game('p1') is None


def test_unstarted_game_saves_no_results(coordinator, results):
    session = host_game(coordinator)
    join(coordinator, session, 'p1', 'Alice')
    coordinator.disconnect('host')
    assert results.saved == []


def test_terminate_is_idempotent(coordinator, fake_sio):
    session = host_game(coordinator)
    join(coordinator, session, 'p1', 'Alice')
    assert coordinator.lifecycle.terminate(session.pin, 'host-ended') is True
    assert coordinator.lifecycle.terminate(session.pin, 'host-ended') is False
    assert len(fake_sio.to('p1', 'game-ended')) == 1


def test_orphan_sweep(coordinator, connected, fake_sio):
    orphan = host_game(coordinator, host='gone')
    join(coordinator, orphan, 'p1', 'Alice')
    live = host_game(coordinator, host='here')
    connected.add('here')
    ended = coordinator.lifecycle.sweep()
    assert ended == [(orphan.pin, 'orphaned')]
    assert fake_sio.last('p1', 'game-ended')['reason'] == 'orphaned'
    assert coordinator.registry.get(live.pin) is live


def test_expired_sessions_swept(coordinator, connected, clock):
    session = host_game(coordinator)
    connected.add('host')
    clock.now += 2 * 60 * 60 * 1000 - 1
    assert coordinator.lifecycle.sweep() == []
    clock.now += 1
    assert coordinator.lifecycle.sweep() == [(session.pin, 'expired')]


def test_background_tasks_run_sweep_and_prune(coordinator, scheduler, connected):
    host_game(coordinator)
    coordinator.check_rate('c1', 'host-join')
    coordinator.start_background_tasks()
    scheduler.advance(10000)
    assert len(coordinator.rate_limiter) == 0
    assert len(coordinator.registry) == 1
    scheduler.advance(50000)
    assert len(coordinator.registry) == 0


def test_graceful_shutdown(coordinator, scheduler, fake_sio):
    first = host_game(coordinator, host='h1')
    join(coordinator, first, 'p1', 'Alice')
    coordinator.start_game('h1')
    host_game(coordinator, host='h2')
    coordinator.start_background_tasks()

    assert coordinator.shutdown() == 2
    for conn in ('h1', 'h2', 'p1'):
        assert fake_sio.last(conn, 'game-ended')['reason'] == 'server-shutdown'
    assert len(coordinator.registry) == 0
    assert first.state == SessionState.ENDED
    assert scheduler.pending() == []


def test_host_join_racing_a_player_join_leaves_no_session(coordinator, monkeypatch):
    session = host_game(coordinator)
    join(coordinator, session, 'p1', 'Alice')
    monkeypatch.setattr(coordinator.directory, 'lookup', lambda conn_id: None)
    with pytest.raises(StateError) as exc:
        coordinator.host_join('p1', {'quiz': make_quiz()})
    assert exc.value.code == 'already-in-game'
    assert [s.pin for s in coordinator.registry.all()] == [session.pin]
    assert coordinator.registry.find_by_host('p1') is None
