import re
import time

from flask import Blueprint, current_app, jsonify, request

main = Blueprint('main', __name__)

_PIN_RE = re.compile(r'^\d{6}$')


def _coordinator():
    return current_app.extensions['quizcast']


@main.route('/')
def index():
    return jsonify({'message': 'QuizCast game server'})


@main.route('/ping')
def ping():
    return jsonify({'status': 'ok', 'timestamp': int(time.time() * 1000)})


@main.route('/active-games')
def active_games():
    return jsonify({'games': _coordinator().active_games()})


@main.route('/qr/<string:pin>')
def qr_code(pin):
    if not _PIN_RE.match(pin):
        return jsonify({'error': 'invalid-pin', 'message': 'PIN must be 6 digits'}), 400
    if _coordinator().registry.get(pin) is None:
        return jsonify({'error': 'game-not-found', 'message': 'Game not found'}), 404
    base = current_app.config.get('PUBLIC_BASE_URL') or request.host_url
    game_url = f"{base.rstrip('/')}/?pin={pin}"
    image = current_app.extensions['quizcast.qr'].get(game_url)
    response = jsonify({'qrCode': image, 'gameUrl': game_url, 'pin': pin})
    response.headers['Cache-Control'] = 'public, max-age=300'
    return response
