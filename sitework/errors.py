"""
Domain exceptions raised by the service layer.

Routes let these propagate; ``create_app`` maps them to HTTP responses.
"""


class DomainError(Exception):
    """Base exception for business rule violations."""

    status_code = 400

    def __init__(self, message: str, code: str = "DOMAIN_ERROR"):
        self.message = message
        self.code = code
        super().__init__(self.message)


class ValidationError(DomainError):
    """Raised when input data is invalid or violates domain rules."""


class NotFoundError(DomainError):
    status_code = 404

    def __init__(self, entity: str, entity_id=None):
        message = f"{entity} not found" if entity_id is None else f"{entity} '{entity_id}' not found"
        super().__init__(message, code="NOT_FOUND")
        self.entity = entity


class ConflictError(DomainError):
    status_code = 409

    def __init__(self, message: str):
        super().__init__(message, code="CONFLICT")


class InvalidTransition(DomainError):
    """Raised when a status change is not allowed from the current status."""

    status_code = 400

    def __init__(self, entity: str, current: str, target: str):
        message = f"Cannot move {entity} from '{current}' to '{target}'"
        super().__init__(message, code="INVALID_TRANSITION")
        self.current = current
        self.target = target


class AuthorizationError(DomainError):
    """Raised when a user lacks permission for an action."""

    status_code = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN")


class UpstreamError(DomainError):
    """Raised when an external collaborator (webhook, mail server) fails."""

    status_code = 502

    def __init__(self, message: str):
        super().__init__(message, code="UPSTREAM_ERROR")
