from flask import current_app, request
from flask_socketio import emit

from quizcast import socketio
from quizcast.errors import GameError


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _coordinator():
    return current_app.extensions['quizcast']


def _dispatch(event: str, op, *args) -> None:
    """Rate-check, run the coordinator operation and report game errors to
    the sender only."""
    sid = _get_sid()
    coordinator = _coordinator()
    retry_after = coordinator.check_rate(sid, event)
    if retry_after:
        current_app.logger.debug(f"[rate-limited] sid={sid} event={event}")
        emit('rate-limited', {
            'event': event,
            'message': 'Too many requests, slow down',
            'retryAfterMs': retry_after,
        })
        return
    try:
        op(sid, *args)
    except GameError as exc:
        emit(exc.event, exc.to_payload())


def handle_connect(auth=None):
    emit('connected', {'message': 'Connected', 'sid': _get_sid()})


def handle_disconnect(reason=None):
    sid = _get_sid()
    current_app.logger.info(f"[disconnect] sid={sid} reason={reason}")
    try:
        _coordinator().disconnect(sid)
    except GameError as exc:
        current_app.logger.warning(f"[disconnect] sid={sid} {exc.code}: {exc.message}")


def handle_host_join(data=None):
    _dispatch('host-join', _coordinator().host_join, data)


def handle_player_join(data=None):
    _dispatch('player-join', _coordinator().player_join, data)


def handle_change_name(data=None):
    _dispatch('player-change-name', _coordinator().change_name, data)


def handle_start_game(data=None):
    _dispatch('start-game', _coordinator().start_game)


def handle_submit_answer(data=None):
    _dispatch('submit-answer', _coordinator().submit_answer, data)


def handle_next_question(data=None):
    _dispatch('next-question', _coordinator().next_question)


def handle_leave_game(data=None):
    _dispatch('leave-game', _coordinator().leave_game)


def handle_power_up(data=None):
    _dispatch('power-up', _coordinator().power_up, data)


def handle_propose_answer(data=None):
    _dispatch('propose-answer', _coordinator().propose_answer, data)


def handle_quick_response(data=None):
    _dispatch('send-quick-response', _coordinator().quick_response, data)


def handle_chat_message(data=None):
    _dispatch('send-chat-message', _coordinator().chat_message, data)


def handle_lock_consensus(data=None):
    _dispatch('lock-consensus', _coordinator().lock_consensus)


def handle_rematch(data=None):
    _dispatch('rematch-game', _coordinator().rematch)


def handle_end_game(data=None):
    _dispatch('end-game', _coordinator().end_game)


HANDLERS = {
    'connect': handle_connect,
    'disconnect': handle_disconnect,
    'host-join': handle_host_join,
    'player-join': handle_player_join,
    'player-change-name': handle_change_name,
    'start-game': handle_start_game,
    'submit-answer': handle_submit_answer,
    'next-question': handle_next_question,
    'leave-game': handle_leave_game,
    'power-up': handle_power_up,
    'rematch-game': handle_rematch,
    'end-game': handle_end_game,
    'propose-answer': handle_propose_answer,
    'send-quick-response': handle_quick_response,
    'send-chat-message': handle_chat_message,
    'lock-consensus': handle_lock_consensus,
}


def register_socketio_handlers(namespace: str = '/') -> None:
    """Register every realtime event handler on ``namespace``."""
    for event, handler in HANDLERS.items():
        socketio.on_event(event, handler, namespace=namespace)
