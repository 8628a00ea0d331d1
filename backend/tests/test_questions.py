import pytest

from quizcast.errors import AnswerRejected, InvalidQuiz
from quizcast.services.games.questions import (
    QuestionType, correct_answer_payload, empty_stats, evaluate, kendall_distance,
    normalize_text, parse_answer, parse_question, parse_quiz, record_stat,
)


def q(data, **kwargs):
    kwargs.setdefault('default_time_ms', 20000)
    return parse_question(data, 0, **kwargs)


def test_parse_quiz_defaults_and_aliases():
    quiz = parse_quiz({'questions': [
        {'question': 'Pick', 'type': 'multiple-choice', 'options': ['a', 'b'], 'correctAnswer': 0},
        {'prompt': 'Sky is blue', 'type': 'true-false', 'correctAnswer': 'true', 'timeLimit': 15},
    ]}, default_time_ms=20000)
    assert quiz.title == 'Untitled Quiz'
    first, second = quiz.questions
    assert first.type == QuestionType.SINGLE_CHOICE
    assert first.time_limit_ms == 20000
    assert first.id == 'q1'
    assert second.correct is True
    assert second.time_limit_ms == 15000


def test_global_time_limit_applies_when_question_has_none():
    quiz = parse_quiz({'questions': [
        {'question': 'a', 'options': ['x', 'y'], 'correctIndex': 0},
        {'question': 'b', 'options': ['x', 'y'], 'correctIndex': 0, 'timeLimitMs': 5000},
    ]}, default_time_ms=20000, global_time_limit_ms=8000)
    assert [x.time_limit_ms for x in quiz.questions] == [8000, 5000]


@pytest.mark.parametrize('payload', [
    None,
    {'questions': []},
    {'questions': [{'type': 'single-choice', 'options': ['only one'], 'correctIndex': 0}]},
    {'questions': [{'type': 'single-choice', 'options': ['a', 'b'], 'correctIndex': 5}]},
    {'questions': [{'type': 'ordering', 'options': ['a', 'b', 'c'], 'correctOrder': [0, 0, 1]}]},
    {'questions': [{'type': 'essay'}]},
    {'questions': [{'type': 'numeric', 'correctAnswer': 'lots'}]},
    {'questions': [{'type': 'single-choice', 'options': ['a', 'b'], 'correctIndex': 0, 'difficulty': 'brutal'}]},
])
def test_invalid_quizzes_rejected(payload):
    with pytest.raises(InvalidQuiz) as exc:
        parse_quiz(payload, default_time_ms=20000)
    assert exc.value.code == 'invalid-quiz'


def test_single_choice_and_true_false_exact():
    choice = q({'options': ['a', 'b', 'c'], 'correctIndex': 2})
    assert evaluate(choice, parse_answer(choice, 2)) == 1.0
    assert evaluate(choice, parse_answer(choice, 0)) == 0.0
    tf = q({'type': 'true-false', 'correctAnswer': False})
    assert evaluate(tf, parse_answer(tf, 'false')) == 1.0
    assert evaluate(tf, parse_answer(tf, True)) == 0.0


def test_numeric_tolerance():
    question = q({'type': 'numeric', 'correctAnswer': 10})
    assert question.tolerance == 0.1
    assert evaluate(question, parse_answer(question, 10.1)) == 1.0
    assert evaluate(question, parse_answer(question, '9.95')) == 1.0
    assert evaluate(question, parse_answer(question, 10.2)) == 0.0
    exact = q({'type': 'numeric', 'correctAnswer': 3, 'tolerance': 0})
    assert evaluate(exact, parse_answer(exact, 3)) == 1.0


def test_text_answers_are_normalised():
    question = q({'type': 'text', 'acceptedAnswers': ['New  York', 'NYC']})
    assert normalize_text('  New   YORK ') == 'new york'
    assert evaluate(question, parse_answer(question, ' new york')) == 1.0
    assert evaluate(question, parse_answer(question, 'nyc')) == 1.0
    assert evaluate(question, parse_answer(question, 'Boston')) == 0.0


def test_text_reveal_keeps_authored_spelling():
    question = q({'type': 'text', 'acceptedAnswers': ['  Paris ', 'PARIS, France']})
    payload = correct_answer_payload(question)
    assert payload['correctOption'] == 'Paris'
    assert payload['correctAnswer'] == ['Paris', 'PARIS, France']
    assert evaluate(question, parse_answer(question, 'paris, france')) == 1.0


def test_multiple_correct_uses_jaccard():
    question = q({'type': 'multiple-correct', 'options': ['a', 'b', 'c', 'd'], 'correctIndices': [0, 1]})
    assert evaluate(question, parse_answer(question, [1, 0])) == 1.0
    assert evaluate(question, parse_answer(question, [0])) == 0.5
    assert evaluate(question, parse_answer(question, [0, 2])) == pytest.approx(1 / 3)
    assert evaluate(question, parse_answer(question, [])) == 0.0


def test_ordering_uses_kendall_distance():
    question = q({'type': 'ordering', 'options': ['a', 'b', 'c'], 'correctOrder': [0, 1, 2]})
    assert kendall_distance([0, 1, 2], [0, 1, 2]) == 0
    assert kendall_distance([2, 1, 0], [0, 1, 2]) == 3
    assert evaluate(question, parse_answer(question, [0, 1, 2])) == 1.0
    assert evaluate(question, parse_answer(question, [1, 0, 2])) == pytest.approx(2 / 3)
    assert evaluate(question, parse_answer(question, [2, 1, 0])) == 0.0


def test_matching_scores_fraction_of_pairs():
    question = q({'type': 'matching', 'left': ['dog', 'cat', 'cow'], 'right': ['meow', 'moo', 'woof'],
                  'correctMatches': [2, 0, 1]})
    assert evaluate(question, parse_answer(question, [2, 0, 1])) == 1.0
    assert evaluate(question, parse_answer(question, [2, 1, 0])) == pytest.approx(1 / 3)


@pytest.mark.parametrize('data,answer', [
    ({'options': ['a', 'b'], 'correctIndex': 0}, 'a'),
    ({'options': ['a', 'b'], 'correctIndex': 0}, 2),
    ({'options': ['a', 'b'], 'correctIndex': 0}, True),
    ({'type': 'numeric', 'correctAnswer': 1}, 'NaN'),
    ({'type': 'ordering', 'options': ['a', 'b'], 'correctOrder': [1, 0]}, [0, 0]),
    ({'type': 'multiple-correct', 'options': ['a', 'b'], 'correctIndices': [0]}, [0, 0]),
    ({'type': 'text', 'correctAnswer': 'x'}, 42),
    ({'type': 'true-false', 'correctAnswer': True}, 'maybe'),
])
def test_malformed_answers_rejected(data, answer):
    question = q(data)
    with pytest.raises(AnswerRejected) as exc:
        parse_answer(question, answer)
    assert exc.value.reason == 'invalid-answer'


def test_declared_type_mismatch():
    question = q({'options': ['a', 'b'], 'correctIndex': 0})
    assert parse_answer(question, 1, 'multiple-choice') == 1
    with pytest.raises(AnswerRejected) as exc:
        parse_answer(question, 1, 'numeric')
    assert exc.value.reason == 'type-mismatch'


def test_correct_answer_payload_and_stats():
    question = q({'options': ['a', 'b', 'c'], 'correctIndex': 1, 'explanation': 'b is right'})
    payload = correct_answer_payload(question)
    assert payload == {'correctAnswer': 1, 'correctOption': 'b', 'questionType': 'single-choice',
                       'explanation': 'b is right'}
    stats = empty_stats(question)
    record_stat(stats, question, 1, 1.0)
    record_stat(stats, question, 2, 0.0)
    assert stats == {'submitted': 2, 'correct': 1, 'perOption': {'0': 0, '1': 1, '2': 1}}


def test_public_payload_hides_answer_and_applies_order():
    question = q({'options': ['a', 'b', 'c'], 'correctIndex': 1})
    payload = question.public_payload([2, 0, 1])
    assert payload['options'] == ['c', 'a', 'b']
    assert 'correct' not in payload and 'correctIndex' not in payload
