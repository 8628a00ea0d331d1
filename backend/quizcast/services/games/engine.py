"""Question-flow state machine for one session.

Every public operation and every timer callback runs under the session's
re-entrant lock, and decides, mutates and emits inside that one locked
section. Timers capture ``session.generation`` when armed; the counter is
bumped whenever the session leaves the state a timer was armed for, so a
timer that lost the race against a cancel finds a mismatch and does
nothing.
"""

import random
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional

from quizcast.errors import AnswerRejected, ProtocolError, StateError

from .consensus import (
    QUICK_RESPONSES, ConsensusRound, clean_chat, option_is_correct, supports_consensus,
)
from .questions import (
    QuestionType, correct_answer_payload, empty_stats, evaluate, parse_answer, record_stat,
)
from .scoring import compute_award, consensus_award, leaderboard
from .session import (
    POWER_UP_KINDS, Answer, AnswerRecord, GameRules, Player, Session, SessionState, utc_now_iso,
)


@dataclass
class EngineContext:
    """Collaborators shared by every engine of one coordinator."""
    router: Any
    scheduler: Any
    clock: Callable[[], int]
    rules: GameRules
    rng: random.Random
    results: Any
    logger: Any
    on_fatal: Optional[Callable[[Session], None]] = None


class QuestionFlowEngine:
    def __init__(self, session: Session, ctx: EngineContext):
        self.session = session
        self.ctx = ctx
        session.engine = self

    @property
    def pin(self) -> str:
        return self.session.pin

    def _log(self, message: str) -> None:
        self.ctx.logger.info(message)

    # ---- timers ----

    def _arm(self, delay_ms: int, kind: str):
        generation = self.session.generation
        self._log(f"[timer-set] pin={self.pin} kind={kind} gen={generation} delay={delay_ms}ms")
        return self.ctx.scheduler.call_later(delay_ms, self._on_timer, kind, generation)

    def _on_timer(self, kind: str, generation: int) -> None:
        session = self.session
        try:
            with session.lock:
                expected = {
                    'countdown': SessionState.COUNTDOWN,
                    'question': SessionState.ASKING,
                    'advance': SessionState.REVEAL,
                }[kind]
                if session.terminated or session.state != expected or session.generation != generation:
                    self._log(f"[timer-abort] pin={self.pin} kind={kind} gen={generation} "
                              f"state={session.state.value} current_gen={session.generation}")
                    return
                self._log(f"[timer-fire] pin={self.pin} kind={kind} gen={generation}")
                if kind == 'countdown':
                    session.advance_timer = None
                    self._begin_question(0)
                elif kind == 'question':
                    session.question_timer = None
                    self._reveal(early_end=False)
                else:
                    session.advance_timer = None
                    self._advance()
        except Exception:
            self.ctx.logger.exception(f"[fatal] pin={self.pin} timer={kind}")
            if self.ctx.on_fatal is not None:
                self.ctx.on_fatal(session)

    def _cancel_question_timer(self) -> None:
        if self.session.question_timer is not None:
            self.session.question_timer.cancel()
            self.session.question_timer = None

    def _cancel_advance_timer(self) -> None:
        if self.session.advance_timer is not None:
            self.session.advance_timer.cancel()
            self.session.advance_timer = None

    # ---- operations ----

    def start(self) -> None:
        session = self.session
        rules = self.ctx.rules
        with session.lock:
            if session.state != SessionState.LOBBY:
                raise StateError('Game has already started', state=session.state.value,
                                 code='game-already-started')
            if len(session.players) < rules.min_players_to_start:
                raise StateError(
                    f'At least {rules.min_players_to_start} player(s) needed to start',
                    state=session.state.value, code='not-enough-players')
            order = list(range(session.question_count))
            if session.settings.randomize_questions:
                self.ctx.rng.shuffle(order)
            session.question_order = order
            session.started_at = utc_now_iso()
            session.generation += 1
            session.transition(SessionState.COUNTDOWN)
            self._log(f"[game-started] pin={self.pin} players={len(session.players)}")
            self.ctx.router.to_all(self.pin, 'game-started', {
                'powerUpsEnabled': session.settings.power_ups_enabled,
                'questionCount': session.question_count,
                'manualAdvance': session.settings.manual_advance,
                'countdownMs': rules.countdown_ms,
                'consensusMode': session.settings.consensus_mode,
            })
            session.advance_timer = self._arm(rules.countdown_ms, 'countdown')

    def _begin_question(self, index: int) -> None:
        session = self.session
        router = self.ctx.router
        session.current_index = index
        question = session.current_question
        session.answers_by_player = {}
        session.answer_stats = empty_stats(question)
        session.double_points = set()
        session.option_orders = {}
        session.consensus = None
        if session.settings.consensus_mode and supports_consensus(question):
            session.consensus = ConsensusRound(session.settings.consensus_threshold)
        session.generation += 1
        session.transition(SessionState.ASKING)

        base = {
            'index': index,
            'totalQuestions': session.question_count,
            'timeLimitMs': question.time_limit_ms,
        }
        router.to_host(self.pin, 'question-start', dict(base, question=question.public_payload()))
        # the team discusses one shared option list
        shuffle = (session.settings.randomize_answers and question.shufflable
                   and session.consensus is None)
        for player in list(session.players.values()):
            order = None
            if shuffle:
                order = list(range(len(question.options)))
                self.ctx.rng.shuffle(order)
                session.option_orders[player.player_id] = order
            router.to_conn(player.conn_id, 'question-start',
                           dict(base, question=question.public_payload(order)))

        # Measured from after every client has been told to start
        session.question_started_at = self.ctx.clock()
        session.question_deadline = session.question_started_at + question.time_limit_ms
        session.question_timer = self._arm(question.time_limit_ms, 'question')
        self._log(f"[question-start] pin={self.pin} index={index} id={question.id} "
                  f"limit={question.time_limit_ms}ms")
        if session.all_answered():
            # nobody left to wait for
            self._reveal(early_end=True)

    def _to_canonical(self, player_id: str, value):
        order = self.session.option_orders.get(player_id)
        if order is None:
            return value
        if isinstance(value, list):
            return sorted(order[v] for v in value)
        return order[value]

    def _to_displayed(self, player_id: str, indices):
        order = self.session.option_orders.get(player_id)
        if order is None:
            return sorted(indices)
        return sorted(order.index(i) for i in indices)

    def submit_answer(self, player_id: str, raw, declared_type=None) -> Optional[Answer]:
        session = self.session
        rules = self.ctx.rules
        router = self.ctx.router
        with session.lock:
            player = session.players.get(player_id)
            if player is None:
                return None
            if session.state != SessionState.ASKING:
                raise AnswerRejected('closed', 'This question is closed')
            if player_id in session.answers_by_player:
                raise AnswerRejected('duplicate', 'Answer already submitted')
            if session.consensus is not None:
                raise AnswerRejected('consensus-mode', 'Propose an answer to the team instead')

            now = self.ctx.clock()
            elapsed = max(0, now - session.question_started_at)
            question = session.current_question
            value = parse_answer(question, raw, declared_type)
            canonical = self._to_canonical(player_id, value)
            fraction = evaluate(question, canonical)
            double = player_id in session.double_points
            awarded = compute_award(
                fraction, elapsed, question.time_limit_ms, question.difficulty, double,
                base=rules.scoring_base,
                bonus_window_ms=rules.scoring_bonus_window_ms,
                multipliers=rules.difficulty_multipliers,
            )
            answer = Answer(player_id, session.current_index, canonical, now, elapsed, fraction, awarded)
            session.answers_by_player[player_id] = answer
            player.answers.append(AnswerRecord(
                question_index=session.current_index,
                submitted=True,
                value=canonical,
                elapsed_ms=elapsed,
                awarded=awarded,
                correct=answer.correct,
                fraction=fraction,
                double_points=double,
            ))
            player.score += awarded
            record_stat(session.answer_stats, question, canonical, fraction)
            self.ctx.logger.debug(f"[answer] pin={self.pin} player={player_id} elapsed={elapsed}ms "
                                  f"fraction={fraction:.2f} awarded={awarded}")

            router.to_conn(player.conn_id, 'answer-submitted', {'answer': raw})
            self._send_answer_count()
            if session.all_answered():
                self._reveal(early_end=True)
            return answer

    def _send_answer_count(self) -> None:
        session = self.session
        submitted = sum(1 for pid in session.players if pid in session.answers_by_player)
        total = len(session.players)
        self.ctx.router.to_host_noncritical(
            self.pin, 'answer-count-update', {'submitted': submitted, 'total': total},
            final=submitted >= total)

    def _reveal(self, early_end: bool) -> None:
        session = self.session
        router = self.ctx.router
        rules = self.ctx.rules
        self._cancel_question_timer()
        session.generation += 1
        session.transition(SessionState.REVEAL)
        index = session.current_index
        question = session.current_question
        if session.consensus is not None and not session.consensus.locked:
            self._lock_consensus()

        for player in session.players.values():
            if player.record_for(index) is None:
                player.answers.append(AnswerRecord(question_index=index))
        for player in session.departed.values():
            if player.record_for(index) is None:
                player.answers.append(AnswerRecord(question_index=index, absent=True))

        stats = dict(session.answer_stats)
        entry = dict(stats, index=index, questionId=question.id, prompt=question.prompt,
                     type=question.type.value)
        if session.consensus is not None:
            entry['consensus'] = session.consensus.result
        session.question_history.append(entry)

        router.to_all(self.pin, 'question-end', dict(
            correct_answer_payload(question), stats=stats, earlyEnd=early_end))

        answers = sorted(session.answers_by_player.values(),
                         key=lambda a: (a.received_at, a.player_id))
        timings = []
        for answer in answers:
            owner = session.players.get(answer.player_id) or session.departed.get(answer.player_id)
            timings.append({
                'playerId': answer.player_id,
                'name': owner.display_name if owner else None,
                'elapsedMs': answer.elapsed_ms,
                'correct': answer.correct,
            })
        router.to_host(self.pin, 'answer-statistics', {
            'perOption': stats['perOption'],
            'submitted': stats['submitted'],
            'correct': stats['correct'],
            'timings': timings,
        })

        for player in list(session.players.values()):
            record = player.record_for(index)
            router.to_conn(player.conn_id, 'player-result', {
                'correct': record.correct,
                'awarded': record.awarded,
                'totalScore': player.score,
                'fraction': record.fraction,
                'doublePointsUsed': record.double_points,
            })

        router.to_host(self.pin, 'show-leaderboard', {
            'leaderboard': leaderboard(session.players.values(), rules.leaderboard_size),
            'displayMs': rules.leaderboard_display_ms,
        })
        self._log(f"[question-end] pin={self.pin} index={index} submitted={stats['submitted']} "
                  f"early={early_end}")

        if session.settings.manual_advance:
            router.to_host(self.pin, 'show-next-button', {'isLastQuestion': session.is_last_question})
        else:
            session.advance_timer = self._arm(rules.auto_advance_ms, 'advance')

    def advance(self) -> bool:
        """Host-driven next. Outside REVEAL this does nothing."""
        with self.session.lock:
            if self.session.state != SessionState.REVEAL:
                return False
            self._advance()
            return True

    def _advance(self) -> None:
        session = self.session
        self._cancel_advance_timer()
        session.generation += 1
        if session.settings.manual_advance:
            self.ctx.router.to_host(self.pin, 'hide-next-button', {'isLastQuestion': session.is_last_question})
        if session.is_last_question:
            self._end()
        else:
            self._begin_question(session.current_index + 1)

    def _end(self) -> None:
        session = self.session
        session.cancel_timers()
        session.generation += 1
        session.transition(SessionState.ENDED)
        session.ended_at = utc_now_iso()
        final = leaderboard(session.players.values())
        payload = {'finalLeaderboard': final, 'reason': 'completed'}
        if session.settings.consensus_mode:
            payload['teamScore'] = session.team_score
        self.ctx.router.to_all(self.pin, 'game-end', payload)
        self._log(f"[game-end] pin={self.pin} players={len(session.players)}")
        self.save_results('completed')

    def halt(self) -> None:
        """Stop everything without emitting; used when the session is torn down."""
        session = self.session
        with session.lock:
            session.cancel_timers()
            session.generation += 1
            if session.state != SessionState.ENDED:
                session.transition(SessionState.ENDED)
                session.ended_at = utc_now_iso()

    def reset(self) -> None:
        session = self.session
        with session.lock:
            if session.state != SessionState.ENDED:
                raise StateError('A rematch can only start after the game ends',
                                 state=session.state.value, code='game-not-ended')
            session.cancel_timers()
            session.generation += 1
            # each round is saved as its own result row
            session.id = str(uuid.uuid4())
            for player in session.players.values():
                player.reset(session.settings.power_ups_enabled)
            session.departed = {}
            session.current_index = -1
            session.question_order = list(range(session.question_count))
            session.answers_by_player = {}
            session.answer_stats = {}
            session.option_orders = {}
            session.double_points = set()
            session.question_history = []
            session.consensus = None
            session.team_score = 0
            session.question_started_at = None
            session.question_deadline = None
            session.started_at = None
            session.ended_at = None
            session.results_saved = False
            session.transition(SessionState.LOBBY)
            self._log(f"[game-reset] pin={self.pin} players={len(session.players)}")
            self.ctx.router.to_all(self.pin, 'game-reset', {
                'pin': self.pin,
                'gameId': session.id,
                'title': session.title,
                'players': session.player_list(),
                'questionCount': session.question_count,
                'hostConnId': session.host_conn,
            })

    def use_power_up(self, player_id: str, kind) -> Optional[dict]:
        session = self.session
        rules = self.ctx.rules
        with session.lock:
            player = session.players.get(player_id)
            if player is None:
                return None
            if not session.settings.power_ups_enabled:
                raise StateError('Power-ups are not enabled for this game', code='power-ups-disabled')
            if kind not in POWER_UP_KINDS:
                raise ProtocolError(f'Unknown power-up {kind!r}', code='unknown-power-up')
            if session.state != SessionState.ASKING:
                raise StateError('Power-ups can only be used while a question is open',
                                 state=session.state.value, code='power-up-unavailable')
            if player_id in session.answers_by_player:
                raise StateError('Power-ups must be used before answering', code='already-answered')
            if player.power_ups.get(kind, 0) <= 0:
                raise StateError('Power-up already used', code='power-up-used')

            question = session.current_question
            result = {'success': True, 'kind': kind}
            if kind == 'fifty-fifty':
                if question.type != QuestionType.SINGLE_CHOICE:
                    raise StateError('Fifty-fifty only works on single-choice questions',
                                     code='power-up-not-applicable')
                wrong = [i for i in range(len(question.options)) if i != question.correct]
                hidden = self.ctx.rng.sample(wrong, (len(wrong) + 1) // 2)
                result['hiddenOptions'] = self._to_displayed(player_id, hidden)
            elif kind == 'extend-time':
                self._extend_question(player)
                result['extraMs'] = rules.extend_time_ms
            else:
                session.double_points.add(player_id)

            player.power_ups[kind] -= 1
            self._log(f"[power-up] pin={self.pin} player={player_id} kind={kind}")
            self.ctx.router.to_conn(player.conn_id, 'power-up-result', result)
            return result

    def _extend_question(self, player: Player) -> None:
        session = self.session
        extra = self.ctx.rules.extend_time_ms
        self._cancel_question_timer()
        session.generation += 1
        session.question_deadline += extra
        remaining = max(0, session.question_deadline - self.ctx.clock())
        session.question_timer = self._arm(remaining, 'question')
        self.ctx.router.to_all(self.pin, 'time-extended', {
            'extraMs': extra,
            'remainingMs': remaining,
            'playerName': player.display_name,
        })

    # ---- consensus mode ----

    def _consensus_round(self) -> ConsensusRound:
        session = self.session
        if not session.settings.consensus_mode:
            raise StateError('This game is not in consensus mode', code='consensus-not-active')
        if session.state not in (SessionState.ASKING, SessionState.REVEAL):
            raise StateError('No question is active', state=session.state.value,
                             code='no-active-question')
        if session.consensus is None:
            raise StateError('This question is answered individually',
                             code='consensus-not-applicable')
        return session.consensus

    def propose_answer(self, player_id: str, option) -> Optional[dict]:
        session = self.session
        router = self.ctx.router
        with session.lock:
            player = session.players.get(player_id)
            if player is None:
                return None
            consensus = self._consensus_round()
            if consensus.locked or session.state != SessionState.ASKING:
                raise StateError('The team answer is already locked', code='consensus-locked')
            question = session.current_question
            if isinstance(option, bool) or not isinstance(option, int) \
                    or not 0 <= option < len(question.options):
                raise ProtocolError('Proposal must be an option index', code='invalid-answer')

            consensus.propose(player_id, option)
            distribution = consensus.distribution(session.players)
            router.to_all(self.pin, 'proposal-update', distribution)
            reached = consensus.reached(session.players)
            if reached:
                router.to_all(self.pin, 'consensus-threshold-met',
                              dict(reached, threshold=consensus.threshold))
            self.ctx.logger.debug(f"[proposal] pin={self.pin} player={player_id} option={option}")
            return distribution

    def quick_response(self, player_id: str, kind, target=None) -> Optional[dict]:
        session = self.session
        with session.lock:
            player = session.players.get(player_id)
            if player is None:
                return None
            consensus = self._consensus_round()
            if kind not in QUICK_RESPONSES:
                raise ProtocolError(f'Unknown quick response {kind!r}', code='invalid-response')
            if not isinstance(target, str) or not target.strip():
                target = None
            else:
                target = target.strip()[:self.ctx.rules.max_player_name_len]
            message = consensus.add_message(player, 'quick', kind, target, self.ctx.clock())
            self.ctx.router.to_all(self.pin, 'quick-response', message)
            return message

    def chat_message(self, player_id: str, text) -> Optional[dict]:
        session = self.session
        with session.lock:
            player = session.players.get(player_id)
            if player is None:
                return None
            consensus = self._consensus_round()
            if not session.settings.allow_chat:
                raise StateError('Chat is disabled for this game', code='chat-disabled')
            content = clean_chat(text)
            if not content:
                raise ProtocolError('Message is empty', code='empty-message')
            message = consensus.add_message(player, 'chat', content, None, self.ctx.clock())
            self.ctx.router.to_all(self.pin, 'chat-message', message)
            return message

    def lock_consensus(self) -> dict:
        """Host locks the team answer, which also closes the question."""
        session = self.session
        with session.lock:
            consensus = self._consensus_round()
            if consensus.locked or session.state != SessionState.ASKING:
                raise StateError('The team answer is already locked', code='consensus-locked')
            result = self._lock_consensus()
            self._reveal(early_end=True)
            return result

    def _lock_consensus(self) -> dict:
        session = self.session
        rules = self.ctx.rules
        consensus = session.consensus
        question = session.current_question
        consensus.locked = True
        reached = consensus.reached(session.players)
        if reached is None:
            result = {'answer': None, 'percentage': 0, 'isCorrect': False, 'teamPoints': 0}
        else:
            correct = option_is_correct(question, reached['answer'])
            points = consensus_award(correct, reached['percentage'], question.difficulty,
                                     base=rules.scoring_base,
                                     multipliers=rules.difficulty_multipliers)
            result = dict(reached, isCorrect=correct, teamPoints=points)
        session.team_score += result['teamPoints']
        result['totalTeamScore'] = session.team_score
        consensus.result = result
        self.ctx.router.to_all(self.pin, 'consensus-reached', result)
        self.ctx.router.to_all(self.pin, 'team-score-update', {
            'teamScore': session.team_score,
            'questionPoints': result['teamPoints'],
            'isCorrect': result['isCorrect'],
        })
        self._log(f"[consensus-locked] pin={self.pin} answer={result['answer']} "
                  f"correct={result['isCorrect']} points={result['teamPoints']}")
        return result

    def player_left(self, player_id: str) -> None:
        session = self.session
        router = self.ctx.router
        with session.lock:
            player = session.players.pop(player_id, None)
            if player is None:
                return
            self._log(f"[player-left] pin={self.pin} player={player_id} state={session.state.value}")
            if session.state == SessionState.LOBBY:
                router.to_all(self.pin, 'player-list-update', {'players': session.player_list()})
                return
            session.departed[player_id] = player
            router.to_host(self.pin, 'player-list-update', {'players': session.player_list()})
            if session.state == SessionState.ASKING:
                if session.consensus is not None and session.consensus.withdraw(player_id):
                    router.to_all(self.pin, 'proposal-update',
                                  session.consensus.distribution(session.players))
                if session.all_answered():
                    self._reveal(early_end=True)
                else:
                    self._send_answer_count()

    # ---- results ----

    def summary(self, reason: str) -> dict:
        session = self.session
        everyone = list(session.players.values()) + list(session.departed.values())
        ranks = {row['playerId']: row['rank'] for row in leaderboard(everyone)}
        participants = []
        for player in sorted(everyone, key=lambda p: ranks[p.player_id]):
            participants.append({
                'playerId': player.player_id,
                'name': player.display_name,
                'score': player.score,
                'rank': ranks[player.player_id],
                'departed': player.player_id in session.departed,
                'answers': [r.to_dict() for r in player.answers],
            })
        summary = {
            'gameId': session.id,
            'quizTitle': session.title,
            'pin': self.pin,
            'startedAt': session.started_at,
            'endedAt': session.ended_at or utc_now_iso(),
            'reason': reason,
            'questionCount': session.question_count,
            'participants': participants,
            'perQuestionStats': list(session.question_history),
        }
        if session.settings.consensus_mode:
            summary['teamScore'] = session.team_score
        return summary

    def save_results(self, reason: str) -> None:
        session = self.session
        with session.lock:
            if session.results_saved or not session.has_started or self.ctx.results is None:
                return
            session.results_saved = True
            summary = self.summary(reason)
        self.ctx.results.save(summary)
