from flask import Blueprint, current_app, jsonify, request

results = Blueprint('results', __name__)


def _store():
    return current_app.extensions['quizcast.results']


@results.route('', methods=['GET'])
def list_results():
    try:
        limit = int(request.args.get('limit', 50))
    except ValueError:
        return jsonify({'error': 'limit must be an integer'}), 400
    limit = max(1, min(limit, 200))
    return jsonify({'results': [r.to_dict() for r in _store().list(limit)]})


@results.route('/<string:game_id>', methods=['GET'])
def get_result(game_id):
    row = _store().get(game_id)
    if row is None:
        return jsonify({'error': 'Result not found'}), 404
    return jsonify(row.to_dict(detail=True))
