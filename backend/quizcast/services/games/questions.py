"""Quiz content: parsing authored questions, validating submitted answers
and judging them.

Answers are tagged by the current question's type. A submission whose
shape does not fit the question raises ``AnswerRejected`` before any
scoring happens, so evaluation itself is total.
"""

import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from quizcast.errors import AnswerRejected, InvalidQuiz


MAX_TEXT_ANSWER_LEN = 200
_WHITESPACE = re.compile(r'\s+')


class QuestionType(str, Enum):
    SINGLE_CHOICE = 'single-choice'
    MULTIPLE_CORRECT = 'multiple-correct'
    TRUE_FALSE = 'true-false'
    NUMERIC = 'numeric'
    TEXT = 'text'
    ORDERING = 'ordering'
    MATCHING = 'matching'


# Older clients send 'multiple-choice' for single-answer questions
_TYPE_ALIASES = {'multiple-choice': QuestionType.SINGLE_CHOICE}

DIFFICULTIES = ('easy', 'medium', 'hard')


@dataclass
class Question:
    id: str
    type: QuestionType
    prompt: str
    time_limit_ms: int
    difficulty: str = 'medium'
    options: List[str] = field(default_factory=list)
    image: Optional[str] = None
    explanation: Optional[str] = None
    # single-choice: int, multiple-correct: sorted list, true-false: bool,
    # numeric: float, text: list of authored answers, ordering/matching: list
    correct: Any = None
    tolerance: float = 0.0
    right: List[str] = field(default_factory=list)
    # text: normalised forms of ``correct`` used for matching
    accepted: List[str] = field(default_factory=list)

    @property
    def shufflable(self) -> bool:
        return self.type in (QuestionType.SINGLE_CHOICE, QuestionType.MULTIPLE_CORRECT)

    def public_payload(self, option_order: Optional[Sequence[int]] = None) -> dict:
        """What players may see: never includes the correct answer."""
        options = list(self.options)
        if option_order is not None:
            options = [self.options[i] for i in option_order]
        payload = {
            'id': self.id,
            'type': self.type.value,
            'prompt': self.prompt,
            'image': self.image,
            'difficulty': self.difficulty,
            'options': options,
        }
        if self.type == QuestionType.MATCHING:
            payload['left'] = list(self.options)
            payload['right'] = list(self.right)
        return payload


@dataclass
class Quiz:
    title: str
    questions: List[Question]


def normalize_text(value: str) -> str:
    return _WHITESPACE.sub(' ', value.strip()).casefold()


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _as_bool(value) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ('true', 'false'):
        return value.strip().lower() == 'true'
    return None


def _as_number(value) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _index_list(value, bound: int) -> Optional[List[int]]:
    if not isinstance(value, list) or not all(_is_int(v) for v in value):
        return None
    if any(v < 0 or v >= bound for v in value):
        return None
    return list(value)


def parse_question_type(raw) -> Optional[QuestionType]:
    if not isinstance(raw, str):
        return None
    if raw in _TYPE_ALIASES:
        return _TYPE_ALIASES[raw]
    try:
        return QuestionType(raw)
    except ValueError:
        return None


# ---- quiz parsing ----

def _options(data: dict, key: str = 'options') -> List[str]:
    options = data.get(key)
    if not isinstance(options, list) or len(options) < 2:
        raise InvalidQuiz(f'"{key}" must list at least 2 entries')
    return [str(o) for o in options]


def _parse_time_limit(data: dict, global_time_limit_ms: Optional[int], default_ms: int) -> int:
    if data.get('timeLimitMs') is not None:
        value = _as_number(data.get('timeLimitMs'))
    elif data.get('timeLimit') is not None:
        seconds = _as_number(data.get('timeLimit'))
        value = seconds * 1000 if seconds is not None else None
    else:
        value = global_time_limit_ms or default_ms
    if value is None or value <= 0:
        raise InvalidQuiz('Time limit must be a positive number')
    return int(value)


def parse_question(data, position: int, *, default_time_ms: int,
                   global_time_limit_ms: Optional[int] = None,
                   default_tolerance: float = 0.1) -> Question:
    if not isinstance(data, dict):
        raise InvalidQuiz(f'Question {position + 1} is not an object')
    qtype = parse_question_type(data.get('type') or 'single-choice')
    if qtype is None:
        raise InvalidQuiz(f'Question {position + 1} has unknown type {data.get("type")!r}')
    prompt = data.get('question') or data.get('prompt') or data.get('text') or ''
    difficulty = data.get('difficulty') or 'medium'
    if difficulty not in DIFFICULTIES:
        raise InvalidQuiz(f'Question {position + 1} has unknown difficulty {difficulty!r}')

    question = Question(
        id=str(data.get('id') or f'q{position + 1}'),
        type=qtype,
        prompt=str(prompt),
        time_limit_ms=_parse_time_limit(data, global_time_limit_ms, default_time_ms),
        difficulty=difficulty,
        image=data.get('image') or None,
        explanation=data.get('explanation') or None,
    )

    try:
        if qtype == QuestionType.SINGLE_CHOICE:
            question.options = _options(data)
            correct = data.get('correctIndex', data.get('correctAnswer'))
            if not _is_int(correct) or not 0 <= correct < len(question.options):
                raise InvalidQuiz('A valid correct option must be selected')
            question.correct = correct
        elif qtype == QuestionType.MULTIPLE_CORRECT:
            question.options = _options(data)
            raw = data.get('correctIndices', data.get('correctAnswers'))
            correct = _index_list(raw, len(question.options))
            if not correct:
                raise InvalidQuiz('At least one valid correct option must be selected')
            question.correct = sorted(set(correct))
        elif qtype == QuestionType.TRUE_FALSE:
            correct = _as_bool(data.get('correctAnswer'))
            if correct is None:
                raise InvalidQuiz('Correct answer must be true or false')
            question.options = ['true', 'false']
            question.correct = correct
        elif qtype == QuestionType.NUMERIC:
            correct = _as_number(data.get('correctAnswer'))
            if correct is None:
                raise InvalidQuiz('Numeric answer required')
            tolerance = data.get('tolerance')
            tolerance = default_tolerance if tolerance is None else _as_number(tolerance)
            if tolerance is None or tolerance < 0:
                raise InvalidQuiz('Tolerance must be a non-negative number')
            question.correct = correct
            question.tolerance = tolerance
        elif qtype == QuestionType.TEXT:
            accepted = data.get('acceptedAnswers') or [data.get('correctAnswer')]
            accepted = [a.strip() for a in accepted if isinstance(a, str) and a.strip()]
            if not accepted:
                raise InvalidQuiz('At least one accepted text answer is required')
            question.correct = accepted
            question.accepted = [normalize_text(a) for a in accepted]
        elif qtype == QuestionType.ORDERING:
            question.options = _options(data)
            order = _index_list(data.get('correctOrder'), len(question.options))
            if order is None or sorted(order) != list(range(len(question.options))):
                raise InvalidQuiz('Correct order must be a permutation of the options')
            question.correct = order
        elif qtype == QuestionType.MATCHING:
            question.options = _options(data, 'left')
            question.right = _options(data, 'right')
            matches = _index_list(data.get('correctMatches'), len(question.right))
            if matches is None or len(matches) != len(question.options):
                raise InvalidQuiz('Every left item needs a matching right item')
            question.correct = matches
    except InvalidQuiz as exc:
        raise InvalidQuiz(f'Question {position + 1}: {exc.message}') from None
    return question


def parse_quiz(data, *, default_time_ms: int, global_time_limit_ms: Optional[int] = None,
               default_tolerance: float = 0.1) -> Quiz:
    if not isinstance(data, dict) or not isinstance(data.get('questions'), list):
        raise InvalidQuiz('Invalid quiz data')
    if not data['questions']:
        raise InvalidQuiz('Quiz must have at least one question')
    questions = [
        parse_question(q, i, default_time_ms=default_time_ms,
                       global_time_limit_ms=global_time_limit_ms,
                       default_tolerance=default_tolerance)
        for i, q in enumerate(data['questions'])
    ]
    title = data.get('title') or 'Untitled Quiz'
    return Quiz(title=str(title), questions=questions)


# ---- answers ----

def parse_answer(question: Question, raw, declared_type=None):
    """Validate ``raw`` against the question and return its normalised value."""
    if declared_type is not None and parse_question_type(declared_type) != question.type:
        raise AnswerRejected('type-mismatch', 'Answer type does not match the current question')

    qtype = question.type
    value = None
    if qtype == QuestionType.SINGLE_CHOICE:
        if _is_int(raw) and 0 <= raw < len(question.options):
            value = raw
    elif qtype == QuestionType.MULTIPLE_CORRECT:
        indices = _index_list(raw, len(question.options))
        if indices is not None and len(set(indices)) == len(indices):
            value = sorted(indices)
    elif qtype == QuestionType.TRUE_FALSE:
        value = _as_bool(raw)
    elif qtype == QuestionType.NUMERIC:
        value = _as_number(raw)
    elif qtype == QuestionType.TEXT:
        if isinstance(raw, str) and len(raw) <= MAX_TEXT_ANSWER_LEN:
            value = raw
    elif qtype == QuestionType.ORDERING:
        order = _index_list(raw, len(question.options))
        if order is not None and sorted(order) == list(range(len(question.options))):
            value = order
    elif qtype == QuestionType.MATCHING:
        matches = _index_list(raw, len(question.right))
        if matches is not None and len(matches) == len(question.options):
            value = matches

    if value is None:
        raise AnswerRejected('invalid-answer', f'Answer is not valid for a {qtype.value} question')
    return value


def kendall_distance(a: Sequence[int], b: Sequence[int]) -> int:
    """Number of item pairs ordered differently in ``a`` and ``b``."""
    position = {item: i for i, item in enumerate(b)}
    ranks = [position[item] for item in a]
    discordant = 0
    for i in range(len(ranks)):
        for j in range(i + 1, len(ranks)):
            if ranks[i] > ranks[j]:
                discordant += 1
    return discordant


def evaluate(question: Question, value) -> float:
    """Correctness of an already-validated answer as a fraction in [0, 1]."""
    qtype = question.type
    if qtype in (QuestionType.SINGLE_CHOICE, QuestionType.TRUE_FALSE):
        return 1.0 if value == question.correct else 0.0
    if qtype == QuestionType.NUMERIC:
        # tiny epsilon so 10.1 vs 10.0 with tolerance 0.1 is not lost to float error
        return 1.0 if abs(value - question.correct) <= question.tolerance + 1e-9 else 0.0
    if qtype == QuestionType.TEXT:
        return 1.0 if normalize_text(value) in question.accepted else 0.0
    if qtype == QuestionType.MULTIPLE_CORRECT:
        chosen, correct = set(value), set(question.correct)
        union = chosen | correct
        return len(chosen & correct) / len(union) if union else 0.0
    if qtype == QuestionType.ORDERING:
        n = len(question.correct)
        pairs = n * (n - 1) // 2
        if pairs == 0:
            return 1.0
        return 1.0 - kendall_distance(value, question.correct) / pairs
    if qtype == QuestionType.MATCHING:
        hits = sum(1 for got, want in zip(value, question.correct) if got == want)
        return hits / len(question.correct)
    return 0.0


def correct_answer_payload(question: Question) -> dict:
    qtype = question.type
    correct = question.correct
    if qtype == QuestionType.SINGLE_CHOICE:
        option = question.options[correct]
    elif qtype == QuestionType.MULTIPLE_CORRECT:
        option = ', '.join(question.options[i] for i in correct)
    elif qtype == QuestionType.ORDERING:
        option = ' -> '.join(question.options[i] for i in correct)
    elif qtype == QuestionType.MATCHING:
        option = ', '.join(f'{left} = {question.right[r]}' for left, r in zip(question.options, correct))
    elif qtype == QuestionType.TEXT:
        option = correct[0]
    elif qtype == QuestionType.TRUE_FALSE:
        option = 'true' if correct else 'false'
    else:
        option = f'{correct:g}'
    payload = {
        'correctAnswer': correct,
        'correctOption': option,
        'questionType': qtype.value,
        'explanation': question.explanation,
    }
    if qtype == QuestionType.NUMERIC:
        payload['tolerance'] = question.tolerance
    return payload


# ---- statistics ----

def empty_stats(question: Question) -> Dict[str, Any]:
    if question.type in (QuestionType.SINGLE_CHOICE, QuestionType.MULTIPLE_CORRECT):
        per_option = {str(i): 0 for i in range(len(question.options))}
    elif question.type == QuestionType.TRUE_FALSE:
        per_option = {'true': 0, 'false': 0}
    else:
        per_option = {}
    return {'submitted': 0, 'correct': 0, 'perOption': per_option}


def stat_keys(question: Question, value) -> List[str]:
    """Buckets a submitted value is counted under in ``perOption``."""
    qtype = question.type
    if qtype == QuestionType.SINGLE_CHOICE:
        return [str(value)]
    if qtype == QuestionType.MULTIPLE_CORRECT:
        return [str(v) for v in value]
    if qtype == QuestionType.TRUE_FALSE:
        return ['true' if value else 'false']
    if qtype == QuestionType.NUMERIC:
        return [f'{value:g}']
    if qtype == QuestionType.TEXT:
        return [normalize_text(value)]
    return [','.join(str(v) for v in value)]


def record_stat(stats: Dict[str, Any], question: Question, value, fraction: float) -> None:
    stats['submitted'] += 1
    if fraction >= 1.0:
        stats['correct'] += 1
    for key in stat_keys(question, value):
        stats['perOption'][key] = stats['perOption'].get(key, 0) + 1
