"""Team consensus rounds: players propose an option, discuss, and the team
locks in one shared answer per question."""

from typing import Dict, List, Optional

from .questions import Question, QuestionType

QUICK_RESPONSES = {
    'propose': "I think it's {answer}",
    'agree': 'I agree with {player}',
    'unsure': "I'm not sure",
    'discuss': "Let's discuss",
    'ready': 'Ready to lock in',
}

MAX_CHAT_LEN = 200
MAX_MESSAGES = 50


def supports_consensus(question: Question) -> bool:
    return question.type in (QuestionType.SINGLE_CHOICE, QuestionType.TRUE_FALSE)


def option_is_correct(question: Question, option: int) -> bool:
    if question.type == QuestionType.TRUE_FALSE:
        # options are ['true', 'false']
        return option == (0 if question.correct else 1)
    return option == question.correct


def clean_chat(text) -> str:
    if not isinstance(text, str):
        return ''
    return text.strip()[:MAX_CHAT_LEN].replace('<', '').replace('>', '')


class ConsensusRound:
    """Proposals and discussion for the question currently on screen."""

    def __init__(self, threshold: int):
        self.threshold = threshold
        self.proposals: Dict[str, int] = {}
        self.messages: List[dict] = []
        self.locked = False
        self.result: Optional[dict] = None
        self._seq = 0

    def propose(self, player_id: str, option: int) -> None:
        self.proposals[player_id] = option

    def withdraw(self, player_id: str) -> bool:
        return self.proposals.pop(player_id, None) is not None

    def distribution(self, players: Dict) -> dict:
        counts: Dict[int, int] = {}
        names: Dict[int, List[str]] = {}
        for player_id, option in self.proposals.items():
            player = players.get(player_id)
            if player is None:
                continue
            counts[option] = counts.get(option, 0) + 1
            names.setdefault(option, []).append(player.display_name)

        leading, top = None, 0
        for option in sorted(counts):
            if counts[option] > top:
                leading, top = option, counts[option]
        total = len(players)
        # round half up
        percent = int(top * 100 / total + 0.5) if total else 0
        return {
            'proposals': {str(o): {'count': counts[o], 'players': names[o]} for o in sorted(counts)},
            'consensusPercent': percent,
            'leadingAnswer': leading,
            'totalProposals': sum(counts.values()),
            'totalPlayers': total,
        }

    def reached(self, players: Dict) -> Optional[dict]:
        dist = self.distribution(players)
        if dist['leadingAnswer'] is None or dist['consensusPercent'] < self.threshold:
            return None
        return {'answer': dist['leadingAnswer'], 'percentage': dist['consensusPercent']}

    def add_message(self, player, kind: str, content: str, target: Optional[str], now: int) -> dict:
        self._seq += 1
        message = {
            'id': self._seq,
            'playerId': player.player_id,
            'playerName': player.display_name,
            'type': kind,
            'content': content,
            'targetPlayer': target,
            'timestamp': now,
        }
        self.messages.append(message)
        del self.messages[:-MAX_MESSAGES]
        return message
