import math
from typing import Dict, Iterable, List, Optional

DEFAULT_MULTIPLIERS = {'easy': 1, 'medium': 2, 'hard': 3}


def compute_award(fraction: float, elapsed_ms: int, time_limit_ms: int, difficulty: str,
                  double_points: bool = False, *, base: int = 100,
                  bonus_window_ms: int = 10000,
                  multipliers: Optional[Dict[str, int]] = None) -> int:
    """Points for one answer.

    ``fraction`` is the correctness in [0, 1] (1 for fully correct, partial
    for multiple-correct, ordering and matching). The speed bonus decays
    linearly across ``min(time_limit_ms, bonus_window_ms)`` and is zero from
    the end of that window on. Rounds half up so ties are not lost to
    banker's rounding.
    """
    if fraction <= 0:
        return 0
    multiplier = (multipliers or DEFAULT_MULTIPLIERS).get(difficulty, 1)
    window = min(time_limit_ms, bonus_window_ms)
    bonus_fraction = max(0.0, (window - elapsed_ms) / window) if window > 0 else 0.0
    raw = base * (1 + bonus_fraction) * multiplier * min(fraction, 1.0)
    if double_points:
        raw *= 2
    return max(0, int(math.floor(raw + 0.5)))


def leaderboard(players: Iterable, limit: Optional[int] = None) -> List[dict]:
    """Rank players by score, then total time spent on correct answers, then
    join order."""
    ranked = sorted(players, key=lambda p: (-p.score, p.time_to_correct(), p.join_seq))
    if limit is not None:
        ranked = ranked[:limit]
    return [
        {'rank': i + 1, 'playerId': p.player_id, 'name': p.display_name, 'score': p.score}
        for i, p in enumerate(ranked)
    ]


def consensus_award(correct: bool, percentage: int, difficulty: str, *, base: int = 100,
                    multipliers: Optional[Dict[str, int]] = None) -> int:
    """Team points for a locked consensus answer. Unanimous answers earn 1.5x,
    75% agreement or more earns 1.2x."""
    if not correct:
        return 0
    multiplier = (multipliers or DEFAULT_MULTIPLIERS).get(difficulty, 2)
    if percentage >= 100:
        bonus = 1.5
    elif percentage >= 75:
        bonus = 1.2
    else:
        bonus = 1.0
    return int(math.floor(base * multiplier * bonus))
