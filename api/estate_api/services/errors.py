class ServiceError(Exception):
    """Base error for listing lifecycle operations."""


class UnavailableError(ServiceError):
    """Raised when the database is unavailable or not configured."""


class NotFoundError(ServiceError):
    """Raised when the requested listing, payment, package or wallet does not exist."""


class ConflictError(ServiceError):
    """Raised when an operation is not valid from the entity's current state."""


class ForbiddenError(ServiceError):
    """Raised when the actor lacks ownership or role for the operation."""


class ValidationFailedError(ServiceError):
    """Raised when payload validation fails before persistence."""
