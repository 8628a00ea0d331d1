"""In-memory model of a live game session."""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from quizcast.errors import ProtocolError

from .questions import Question, Quiz


POWER_UP_KINDS = ('fifty-fifty', 'extend-time', 'double-points')


class SessionState(str, Enum):
    LOBBY = 'lobby'
    COUNTDOWN = 'countdown'
    ASKING = 'asking'
    REVEAL = 'reveal'
    ENDED = 'ended'


TRANSITIONS = {
    SessionState.LOBBY: {SessionState.COUNTDOWN, SessionState.ENDED},
    SessionState.COUNTDOWN: {SessionState.ASKING, SessionState.ENDED},
    SessionState.ASKING: {SessionState.REVEAL, SessionState.ENDED},
    SessionState.REVEAL: {SessionState.ASKING, SessionState.ENDED},
    SessionState.ENDED: {SessionState.LOBBY},
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class GameRules:
    """Server-side tunables, read once from the Flask config."""
    question_default_time_ms: int = 20000
    leaderboard_display_ms: int = 3000
    countdown_ms: int = 3000
    auto_advance_ms: int = 3000
    extend_time_ms: int = 10000
    scoring_base: int = 100
    scoring_bonus_window_ms: int = 10000
    difficulty_multipliers: Dict[str, int] = field(
        default_factory=lambda: {'easy': 1, 'medium': 2, 'hard': 3})
    default_numeric_tolerance: float = 0.1
    max_player_name_len: int = 20
    max_players_per_game: int = 200
    min_players_to_start: int = 1
    leaderboard_size: int = 5

    @classmethod
    def from_config(cls, config) -> 'GameRules':
        return cls(
            question_default_time_ms=int(config.get('QUESTION_DEFAULT_TIME_MS', 20000)),
            leaderboard_display_ms=int(config.get('LEADERBOARD_DISPLAY_MS', 3000)),
            countdown_ms=int(config.get('COUNTDOWN_MS', 3000)),
            auto_advance_ms=int(config.get('AUTO_ADVANCE_MS', 3000)),
            extend_time_ms=int(config.get('EXTEND_TIME_MS', 10000)),
            scoring_base=int(config.get('SCORING_BASE', 100)),
            scoring_bonus_window_ms=int(config.get('SCORING_BONUS_WINDOW_MS', 10000)),
            difficulty_multipliers=dict(config.get('DIFFICULTY_MULTIPLIERS')
                                        or {'easy': 1, 'medium': 2, 'hard': 3}),
            default_numeric_tolerance=float(config.get('DEFAULT_NUMERIC_TOLERANCE', 0.1)),
            max_player_name_len=int(config.get('MAX_PLAYER_NAME_LEN', 20)),
            max_players_per_game=int(config.get('MAX_PLAYERS_PER_GAME', 200)),
            min_players_to_start=int(config.get('MIN_PLAYERS_TO_START', 1)),
        )


@dataclass
class GameSettings:
    randomize_questions: bool = False
    randomize_answers: bool = False
    manual_advance: bool = False
    power_ups_enabled: bool = False
    global_time_limit_ms: Optional[int] = None
    consensus_mode: bool = False
    consensus_threshold: int = 66
    allow_chat: bool = False

    @classmethod
    def from_payload(cls, data) -> 'GameSettings':
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ProtocolError('"settings" must be an object')
        limit = data.get('globalTimeLimitMs')
        if limit is not None:
            if isinstance(limit, bool) or not isinstance(limit, (int, float)) or limit <= 0:
                raise ProtocolError('"globalTimeLimitMs" must be a positive number')
            limit = int(limit)
        threshold = data.get('consensusThreshold', 66)
        if isinstance(threshold, str) and threshold.strip().isdigit():
            threshold = int(threshold.strip())
        if isinstance(threshold, bool) or not isinstance(threshold, int) or not 1 <= threshold <= 100:
            raise ProtocolError('"consensusThreshold" must be a percentage between 1 and 100')
        return cls(
            randomize_questions=bool(data.get('randomizeQuestions', False)),
            randomize_answers=bool(data.get('randomizeAnswers', False)),
            manual_advance=bool(data.get('manualAdvance', False)),
            power_ups_enabled=bool(data.get('powerUpsEnabled', False)),
            global_time_limit_ms=limit,
            consensus_mode=bool(data.get('consensusMode', False)),
            consensus_threshold=threshold,
            allow_chat=bool(data.get('allowChat', False)),
        )

    def to_dict(self) -> dict:
        return {
            'randomizeQuestions': self.randomize_questions,
            'randomizeAnswers': self.randomize_answers,
            'manualAdvance': self.manual_advance,
            'powerUpsEnabled': self.power_ups_enabled,
            'globalTimeLimitMs': self.global_time_limit_ms,
            'consensusMode': self.consensus_mode,
            'consensusThreshold': self.consensus_threshold,
            'allowChat': self.allow_chat,
        }


@dataclass
class AnswerRecord:
    """One entry of a player's answer history, by position in play order."""
    question_index: int
    submitted: bool = False
    value: Any = None
    elapsed_ms: Optional[int] = None
    awarded: int = 0
    correct: bool = False
    fraction: float = 0.0
    absent: bool = False
    double_points: bool = False

    def to_dict(self) -> dict:
        return {
            'questionIndex': self.question_index,
            'submitted': self.submitted,
            'value': self.value,
            'elapsedMs': self.elapsed_ms,
            'awarded': self.awarded,
            'correct': self.correct,
            'fraction': self.fraction,
            'absent': self.absent,
        }


@dataclass
class Answer:
    player_id: str
    question_index: int
    value: Any
    received_at: int
    elapsed_ms: int
    fraction: float
    awarded: int

    @property
    def correct(self) -> bool:
        return self.fraction >= 1.0


@dataclass
class Player:
    player_id: str
    conn_id: str
    display_name: str
    join_seq: int
    score: int = 0
    answers: List[AnswerRecord] = field(default_factory=list)
    power_ups: Dict[str, int] = field(default_factory=dict)

    def record_for(self, question_index: int) -> Optional[AnswerRecord]:
        for record in self.answers:
            if record.question_index == question_index:
                return record
        return None

    def time_to_correct(self) -> int:
        return sum(r.elapsed_ms or 0 for r in self.answers if r.correct)

    def reset(self, power_ups_enabled: bool) -> None:
        self.score = 0
        self.answers = []
        self.power_ups = {kind: 1 for kind in POWER_UP_KINDS} if power_ups_enabled else {}

    def to_dict(self) -> dict:
        return {'playerId': self.player_id, 'name': self.display_name, 'score': self.score}


class Session:
    """A live game. Every mutation happens while holding ``lock``."""

    def __init__(self, pin: str, host_conn: str, quiz: Quiz, settings: GameSettings,
                 game_id: str, created_mono: int):
        self.pin = pin
        self.id = game_id
        self.host_conn = host_conn
        self.quiz = quiz
        self.settings = settings
        self.players: Dict[str, Player] = {}
        self.departed: Dict[str, Player] = {}
        self.state = SessionState.LOBBY
        self.current_index = -1
        self.question_order: List[int] = list(range(len(quiz.questions)))
        self.question_started_at: Optional[int] = None
        self.question_deadline: Optional[int] = None
        self.question_timer = None
        self.advance_timer = None
        self.generation = 0
        self.answers_by_player: Dict[str, Answer] = {}
        self.answer_stats: Dict[str, Any] = {}
        self.option_orders: Dict[str, List[int]] = {}
        self.double_points: Set[str] = set()
        self.consensus = None
        self.team_score = 0
        self.question_history: List[dict] = []
        self.created_at = utc_now_iso()
        self.created_mono = created_mono
        self.started_at: Optional[str] = None
        self.ended_at: Optional[str] = None
        self.results_saved = False
        self.terminated = False
        self.next_join_seq = 0
        self.engine = None
        self.lock = threading.RLock()

    @property
    def title(self) -> str:
        return self.quiz.title

    @property
    def question_count(self) -> int:
        return len(self.quiz.questions)

    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.current_index < len(self.question_order):
            return self.quiz.questions[self.question_order[self.current_index]]
        return None

    @property
    def is_last_question(self) -> bool:
        return self.current_index >= self.question_count - 1

    @property
    def has_started(self) -> bool:
        return self.started_at is not None

    def transition(self, target: SessionState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise RuntimeError(f'illegal transition {self.state.value} -> {target.value}')
        self.state = target

    def cancel_timers(self) -> None:
        for handle in (self.question_timer, self.advance_timer):
            if handle is not None:
                handle.cancel()
        self.question_timer = None
        self.advance_timer = None

    def player_list(self) -> List[dict]:
        return [p.to_dict() for p in self.players.values()]

    def all_answered(self) -> bool:
        return all(pid in self.answers_by_player for pid in self.players)

    def summary_row(self) -> dict:
        return {
            'pin': self.pin,
            'title': self.title,
            'playerCount': len(self.players),
            'questionCount': self.question_count,
            'createdAt': self.created_at,
        }
