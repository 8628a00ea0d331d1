from conftest import FakeClock
from quizcast.services.games.rate_limiter import RateLimiter


def test_threshold_accepted_then_rejected():
    clock = FakeClock()
    limiter = RateLimiter({'submit-answer': 3}, window_ms=1000, clock=clock)
    assert [limiter.check('c1', 'submit-answer') for _ in range(3)] == [0, 0, 0]
    retry = limiter.check('c1', 'submit-answer')
    assert 0 < retry <= 1000


def test_window_slides():
    clock = FakeClock()
    limiter = RateLimiter({'start-game': 3}, window_ms=1000, clock=clock)
    for _ in range(3):
        limiter.check('c1', 'start-game')
        clock.now += 300
    # first hit was 900ms ago, still inside the window
    assert limiter.check('c1', 'start-game') == 100
    clock.now += 100
    assert limiter.check('c1', 'start-game') == 0


def test_keys_are_per_connection_and_event():
    clock = FakeClock()
    limiter = RateLimiter({'player-join': 1, 'host-join': 1}, clock=clock)
    assert limiter.check('c1', 'player-join') == 0
    assert limiter.check('c2', 'player-join') == 0
    assert limiter.check('c1', 'host-join') == 0
    assert limiter.check('c1', 'player-join') > 0


def test_unlimited_events_pass():
    limiter = RateLimiter({}, clock=FakeClock())
    assert all(limiter.check('c1', 'leave-game') == 0 for _ in range(100))
    assert len(limiter) == 0


def test_prune_and_forget():
    clock = FakeClock()
    limiter = RateLimiter({'a': 5, 'b': 5}, window_ms=1000, clock=clock)
    limiter.check('c1', 'a')
    limiter.check('c2', 'b')
    clock.now += 500
    limiter.check('c2', 'a')
    clock.now += 600
    assert limiter.prune() == 2
    assert len(limiter) == 1
    limiter.forget('c2')
    assert len(limiter) == 0
