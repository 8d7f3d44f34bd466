"""
Error taxonomy for the chat core.

Every failure degrades to "this one chat/message operation didn't work"; none
of these is fatal to a session. Each error carries the HTTP status the API
renders it with.
"""


class ChatError(Exception):
    status_code: int = 500
    default_detail: str = "Chat operation failed"

    def __init__(self, detail: str = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class AuthRequired(ChatError):
    status_code = 401
    default_detail = "Authentication required"


class ValidationError(ChatError):
    status_code = 422
    default_detail = "Invalid input"


class PermissionDeniedError(ChatError):
    """Row-level access denial reported by the backend, surfaced opaquely."""
    status_code = 403
    default_detail = "Access denied"


class NotFoundError(ChatError):
    status_code = 404
    default_detail = "Not found"


class BackendError(ChatError):
    status_code = 502
    default_detail = "Backend request failed"


class LoadError(BackendError):
    default_detail = "Failed to load messages"


class SendError(BackendError):
    default_detail = "Failed to send message"


class RequestTimeoutError(ChatError, TimeoutError):
    status_code = 504
    default_detail = "Backend request timed out"
