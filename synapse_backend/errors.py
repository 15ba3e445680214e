"""Application error taxonomy.

Handlers and CRUD helpers raise these; ``api.envelope`` renders every subclass of
``SynapseError`` as ``{"success": false, "error": message}`` with its status code.
"""

from __future__ import annotations


class SynapseError(Exception):
    """Base exception for all request-level errors."""

    status_code = 500

    def __init__(self, message: str = "internal_server_error", status_code: int | None = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(SynapseError):
    """Missing or malformed input."""

    status_code = 400


class AuthError(SynapseError):
    """Missing, invalid or expired credentials."""

    status_code = 401


class MissingToken(AuthError):
    def __init__(self) -> None:
        super().__init__("missing_token")


class InvalidToken(AuthError):
    # One message for malformed, expired, wrong-secret and unknown-user tokens.
    def __init__(self) -> None:
        super().__init__("invalid_or_expired_token")


class ForbiddenError(SynapseError):
    """Authenticated but lacking the required role."""

    status_code = 403


class NotFoundError(SynapseError):
    status_code = 404


class ConflictError(SynapseError):
    status_code = 409


class DuplicateEmail(ConflictError):
    def __init__(self) -> None:
        super().__init__("email_already_registered")


class InvalidTransition(ConflictError):
    """Raised when a class is asked to leave an absorbing status."""

    def __init__(self, current_status: str, target_status: str):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(f"cannot_transition: {current_status} -> {target_status}")


class RateLimitError(SynapseError):
    status_code = 429

    def __init__(self, retry_after: float):
        self.retry_after = retry_after
        super().__init__("too_many_requests")


class DependencyError(SynapseError):
    """Database or push-provider failure."""

    status_code = 503


class PushDeliveryError(DependencyError):
    """Push provider failed partway through a send.

    `tickets` holds the results for the chunks that were delivered before the failure.
    """

    def __init__(self, message: str, tickets=()):
        self.tickets = list(tickets)
        super().__init__(message)


class ConfigurationError(Exception):
    """Fatal misconfiguration detected at startup. Never rendered to clients."""

    pass


class TokenError(Exception):
    """Base for Token Service verification failures."""

    pass


class TokenExpired(TokenError):
    pass


class TokenInvalid(TokenError):
    pass
