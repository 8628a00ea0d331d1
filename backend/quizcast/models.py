import json
from datetime import datetime, timezone

from quizcast import db


def _utcnow():
    return datetime.now(timezone.utc)


class GameResult(db.Model):
    __tablename__ = 'game_result'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.String(36), unique=True, nullable=False, index=True)
    pin = db.Column(db.String(12), nullable=False)
    quiz_title = db.Column(db.String(255), nullable=False)
    reason = db.Column(db.String(32), nullable=False, default='completed')
    player_count = db.Column(db.Integer, nullable=False, default=0)
    question_count = db.Column(db.Integer, nullable=False, default=0)
    started_at = db.Column(db.String(40), nullable=True)
    ended_at = db.Column(db.String(40), nullable=True)
    participants = db.Column(db.Text, nullable=False, default='[]')  # JSON list
    question_stats = db.Column(db.Text, nullable=False, default='[]')  # JSON list
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    @classmethod
    def from_summary(cls, summary: dict) -> 'GameResult':
        participants = summary.get('participants') or []
        return cls(
            game_id=summary['gameId'],
            pin=summary['pin'],
            quiz_title=summary.get('quizTitle') or 'Untitled Quiz',
            reason=summary.get('reason') or 'completed',
            player_count=len(participants),
            question_count=int(summary.get('questionCount') or 0),
            started_at=summary.get('startedAt'),
            ended_at=summary.get('endedAt'),
            participants=json.dumps(participants),
            question_stats=json.dumps(summary.get('perQuestionStats') or []),
        )

    def to_dict(self, detail: bool = False):
        data = {
            'id': self.id,
            'gameId': self.game_id,
            'pin': self.pin,
            'quizTitle': self.quiz_title,
            'reason': self.reason,
            'playerCount': self.player_count,
            'questionCount': self.question_count,
            'startedAt': self.started_at,
            'endedAt': self.ended_at,
        }
        if detail:
            try:
                data['participants'] = json.loads(self.participants or '[]')
            except ValueError:
                data['participants'] = []
            try:
                data['perQuestionStats'] = json.loads(self.question_stats or '[]')
            except ValueError:
                data['perQuestionStats'] = []
        return data
