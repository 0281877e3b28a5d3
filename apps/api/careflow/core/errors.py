"""Domain error taxonomy shared by services and routers.

Services raise these; ``careflow.main`` maps them to HTTP responses. None of
them are retried automatically.
"""


class CareflowError(Exception):
    """Base exception for domain errors."""

    status_code: int = 400
    default_message: str = "Request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidTransition(CareflowError):
    """Wrong source state, or the action is not allowed for this role/policy."""

    status_code = 409
    default_message = "Care plan cannot transition from its current state"


class Forbidden(CareflowError):
    """Tenant, role or language qualification mismatch."""

    status_code = 403
    default_message = "Access denied"


class ValidationError(CareflowError):
    """Missing mandatory input (justification, reason) or malformed input."""

    status_code = 422
    default_message = "Invalid input"


class TokenInvalid(CareflowError):
    """Unknown or expired patient access token.

    Both cases share one message so callers cannot tell them apart.
    """

    status_code = 404
    default_message = "Invalid or expired access link"

    def __init__(self, message: str | None = None):
        super().__init__(self.default_message)


class AlreadyResponded(CareflowError):
    """Duplicate check-in response."""

    status_code = 409
    default_message = "This check-in has already been answered"


class NotFound(CareflowError):
    """Entity does not exist."""

    status_code = 404
    default_message = "Not found"


class UpstreamFailure(CareflowError):
    """Text-processing or notification service unavailable."""

    status_code = 502
    default_message = "Upstream service unavailable"
