"""Game error taxonomy.

Every error carries a stable machine-readable ``code`` plus a short English
``message``; the presentation layer resolves the code to user-facing text.
``event`` names the outbound Socket.IO event the error is reported on.
"""


class GameError(Exception):
    event = 'error'
    code = 'error'

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_payload(self) -> dict:
        return {'code': self.code, 'message': self.message}


class ProtocolError(GameError):
    """Malformed or missing fields in an inbound message."""
    code = 'invalid-request'


class StateError(GameError):
    """Operation not valid in the session's current state."""
    code = 'invalid-state'

    def __init__(self, message: str, state: str | None = None, code: str | None = None):
        super().__init__(message, code)
        self.state = state

    def to_payload(self) -> dict:
        payload = super().to_payload()
        if self.state:
            payload['state'] = self.state
        return payload


class CapacityError(GameError):
    code = 'capacity'


class PlayerLimitReached(CapacityError):
    event = 'player-limit-reached'
    code = 'player-limit-reached'


class NoFreePin(CapacityError):
    code = 'no-free-pin'


class LookupFailure(GameError):
    """Unknown PIN or unknown player."""
    event = 'game-not-found'
    code = 'game-not-found'


class InvalidPin(GameError):
    event = 'invalid-pin'
    code = 'invalid-pin'


class NameTaken(GameError):
    event = 'name-taken'
    code = 'name-taken'


class InvalidQuiz(ProtocolError):
    code = 'invalid-quiz'


class AnswerRejected(GameError):
    """Submission refused; reported to the submitter only."""
    event = 'answer-rejected'

    def __init__(self, reason: str, message: str):
        super().__init__(message, code=reason)
        self.reason = reason

    def to_payload(self) -> dict:
        return {'reason': self.reason, 'message': self.message}
