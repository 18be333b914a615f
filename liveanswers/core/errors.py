"""
Domain exceptions. Services raise these; the handlers in main.py map them to HTTP responses.
"""


class LiveAnswersError(Exception):
    status_code = 500
    error_type = "internal_error"
    public_message = "Internal Server Error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class StorageError(LiveAnswersError):
    """Persistence failure in the answer or session store."""
    error_type = "storage_error"


class NotFoundError(LiveAnswersError):
    """No record matches the scoped lookup (owner + id, code, ...)."""
    status_code = 404
    error_type = "not_found"
    public_message = "Not found"


class TransportError(LiveAnswersError):
    """Queue unreachable or publish failed."""
    error_type = "transport_error"


class TransportNotReadyError(TransportError):
    """The broker channel did not become ready in time."""
    error_type = "transport_not_ready"


class AuthError(LiveAnswersError):
    status_code = 401
    error_type = "auth_error"
    public_message = "Invalid or expired token"


class PolicyError(LiveAnswersError):
    status_code = 403
    error_type = "policy_error"
    public_message = "Anonymous users not allowed"


class ChangeFeedError(LiveAnswersError):
    """The change feed behind a subscription failed."""
    error_type = "change_feed_error"
