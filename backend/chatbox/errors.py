"""Error taxonomy shared by the HTTP and WebSocket layers.

Every error carries a machine-readable ``code`` (sent to WebSocket clients in
``error_message`` events) and an HTTP ``status_code`` (used by the exception
handler registered in ``chatbox.main``).

    AuthFailure         bad credentials or token                  401
    MissingToken        no bearer token supplied                  400
    NotFound            unknown user, room or resource            404
    Conflict            duplicate username or room name           400
    PersistenceFailure  store unavailable or timed out            500
    UnknownSender       room message sender does not resolve      400
    DeliveryFailure     recipient connection stale or gone        (never HTTP)
    NotRegistered       event needs an identity, none is bound    400
    InvalidPayload      malformed input                           422
"""


class ChatError(Exception):
    """Base class for all domain errors."""

    code = "error"
    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class AuthFailure(ChatError):
    code = "auth_failure"
    status_code = 401


class NotFound(ChatError):
    code = "not_found"
    status_code = 404


class Conflict(ChatError):
    code = "conflict"
    status_code = 400


class PersistenceFailure(ChatError):
    code = "persistence_failure"
    status_code = 500


class UnknownSender(ChatError):
    code = "unknown_sender"
    status_code = 400


class DeliveryFailure(ChatError):
    code = "delivery_failed"
    status_code = 500


class NotRegistered(ChatError):
    code = "not_registered"
    status_code = 400


class InvalidPayload(ChatError):
    code = "invalid_payload"
    status_code = 422


class MissingToken(AuthFailure):
    """No bearer token on a request that needs one."""
    code = "missing_token"
    status_code = 400
