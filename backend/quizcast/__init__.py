import random

from flask import Flask
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
from flask_sqlalchemy import SQLAlchemy

from config import Config

db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO(async_mode=None)


def create_app(config_class=Config, scheduler=None, clock=None, rng: random.Random = None):
    """Build the Flask app and its game coordinator.

    ``scheduler``, ``clock`` and ``rng`` replace the real timers, monotonic
    clock and random source; tests pass deterministic ones.
    """
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    origins = flask_app.config.get('CORS_ORIGINS') or '*'

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=origins)

    from quizcast.routes import main
    flask_app.register_blueprint(main)

    from quizcast.api.results import results
    flask_app.register_blueprint(results, url_prefix='/api/results')

    from quizcast.services.games.coordinator import GameCoordinator
    from quizcast.services.qr import QRCodeCache
    from quizcast.services.results import SqlResultsStore

    results_store = SqlResultsStore(flask_app)
    coordinator = GameCoordinator(
        socketio, flask_app.config, flask_app.logger,
        results=results_store, scheduler=scheduler, clock=clock, rng=rng,
    )
    flask_app.extensions['quizcast'] = coordinator
    flask_app.extensions['quizcast.results'] = results_store
    flask_app.extensions['quizcast.qr'] = QRCodeCache()

    from quizcast.socketio_events import register_socketio_handlers
    register_socketio_handlers(namespace=flask_app.config.get('SOCKETIO_NAMESPACE', '/'))

    if flask_app.config.get('START_BACKGROUND_TASKS'):
        coordinator.start_background_tasks()

    return flask_app
