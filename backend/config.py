import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///quizcast.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = [o.strip() for o in os.environ.get(
        'CORS_ORIGINS', 'http://localhost:3000,http://127.0.0.1:3000'
    ).split(',') if o.strip()]
    SOCKETIO_NAMESPACE = os.environ.get('SOCKETIO_NAMESPACE', '/')
    # Base URL encoded into join QR codes; falls back to the request host
    PUBLIC_BASE_URL = os.environ.get('PUBLIC_BASE_URL')

    # Game timing (milliseconds)
    QUESTION_DEFAULT_TIME_MS = int(os.environ.get('QUESTION_DEFAULT_TIME_MS', '20000'))
    LEADERBOARD_DISPLAY_MS = int(os.environ.get('LEADERBOARD_DISPLAY_MS', '3000'))
    COUNTDOWN_MS = int(os.environ.get('COUNTDOWN_MS', '3000'))
    AUTO_ADVANCE_MS = int(os.environ.get('AUTO_ADVANCE_MS', '3000'))
    EXTEND_TIME_MS = int(os.environ.get('EXTEND_TIME_MS', '10000'))

    # Scoring
    SCORING_BASE = 100
    SCORING_BONUS_WINDOW_MS = 10000
    DIFFICULTY_MULTIPLIERS = {'easy': 1, 'medium': 2, 'hard': 3}
    DEFAULT_NUMERIC_TOLERANCE = 0.1

    # Limits
    PIN_LENGTH = 6
    PIN_MAX_ATTEMPTS = 100
    MAX_PLAYER_NAME_LEN = 20
    MAX_PLAYERS_PER_GAME = int(os.environ.get('MAX_PLAYERS_PER_GAME', '200'))
    MAX_CONCURRENT_GAMES = int(os.environ.get('MAX_CONCURRENT_GAMES', '100'))
    # Minimum joined players before the host may start (0 allows an empty game)
    MIN_PLAYERS_TO_START = int(os.environ.get('MIN_PLAYERS_TO_START', '1'))

    # Per-connection events per window; events not listed are not limited
    RATE_LIMITS = {
        'host-join': 5,
        'player-join': 5,
        'player-change-name': 5,
        'start-game': 3,
        'submit-answer': 3,
        'next-question': 5,
        'power-up': 3,
        'rematch-game': 3,
        'end-game': 3,
        'propose-answer': 5,
        'send-quick-response': 10,
        'send-chat-message': 5,
        'lock-consensus': 3,
    }
    RATE_LIMIT_WINDOW_MS = 1000
    RATE_LIMIT_SWEEP_INTERVAL_MS = int(os.environ.get('RATE_LIMIT_SWEEP_INTERVAL_MS', '10000'))

    # Housekeeping
    ORPHAN_SWEEP_INTERVAL_MS = max(60000, int(os.environ.get('ORPHAN_SWEEP_INTERVAL_MS', '60000')))
    MAX_SESSION_AGE_MS = int(os.environ.get('MAX_SESSION_AGE_MS', str(2 * 60 * 60 * 1000)))
    # Coalesce answer-count-update per connection. 0 disables.
    NONCRITICAL_MIN_INTERVAL_MS = int(os.environ.get('NONCRITICAL_MIN_INTERVAL_MS', '100'))
    # Sweepers are started by create_app unless disabled (tests)
    START_BACKGROUND_TASKS = os.environ.get('START_BACKGROUND_TASKS', '1') != '0'
