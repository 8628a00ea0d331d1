import signal
import sys

from quizcast import create_app, socketio

app = create_app()


def _shutdown(signum, frame):
    app.logger.info(f"[signal] received {signal.Signals(signum).name}, ending live games")
    app.extensions['quizcast'].shutdown()
    sys.exit(0)


if __name__ == '__main__':
    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
    # Use SocketIO server to enable websockets in dev
    socketio.run(app, debug=True, use_reloader=False)
