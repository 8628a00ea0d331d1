from sqlalchemy.exc import SQLAlchemyError

from quizcast import db
from quizcast.models import GameResult


class SqlResultsStore:
    """Persists finished-game summaries to the ``game_result`` table.

    Called from socket handlers and timer workers, so it pushes its own app
    context the same way the stage timers do.
    """

    def __init__(self, app):
        self.app = app

    def save(self, summary: dict):
        with self.app.app_context():
            try:
                row = GameResult.from_summary(summary)
                db.session.add(row)
                db.session.commit()
                self.app.logger.info(
                    f"[results-saved] game={row.game_id} pin={row.pin} players={row.player_count}")
                return row.id
            except SQLAlchemyError:
                db.session.rollback()
                self.app.logger.exception(f"[results-error] game={summary.get('gameId')}")
                return None

    def list(self, limit: int = 50):
        return (GameResult.query
                .order_by(GameResult.created_at.desc(), GameResult.id.desc())
                .limit(limit)
                .all())

    def get(self, game_id: str):
        return GameResult.query.filter_by(game_id=game_id).first()
