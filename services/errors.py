"""Error kinds raised by the issue engine.

Every engine operation either commits fully or raises one of these with no
side effect. The web layer turns them into JSON responses; nothing inside the
engine catches them.
"""


class EngineError(Exception):
    kind = 'error'
    status_code = 500
    retryable = False

    def __init__(self, message=None, **details):
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.details = details

    def to_dict(self):
        payload = {'error': self.kind, 'message': self.message}
        if self.retryable:
            payload['retryable'] = True
        if self.details:
            payload['details'] = self.details
        return payload


class ValidationError(EngineError):
    kind = 'validation_error'
    status_code = 400


class Unauthenticated(EngineError):
    kind = 'unauthenticated'
    status_code = 401


class Forbidden(EngineError):
    kind = 'forbidden'
    status_code = 403


class NotFound(EngineError):
    kind = 'not_found'
    status_code = 404


class InvalidState(EngineError):
    kind = 'invalid_state'
    status_code = 409


class ConflictRetryable(EngineError):
    kind = 'conflict'
    status_code = 409
    retryable = True


class StoreUnavailable(EngineError):
    kind = 'store_unavailable'
    status_code = 503
