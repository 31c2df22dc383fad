"""Service error taxonomy. Each error maps to one HTTP status code."""


class ServiceError(Exception):
    """Base class for errors raised by services and rendered as {"detail": message}."""

    status_code = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(ServiceError):
    """Malformed or missing input."""

    status_code = 400


class UnauthenticatedError(ServiceError):
    """No credential presented, or the credential does not resolve to a user."""

    status_code = 401


class ForbiddenError(ServiceError):
    """Credential present but invalid, expired or insufficient."""

    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    """Uniqueness violation."""

    status_code = 409


class UpstreamError(ServiceError):
    """An external dependency (billing provider, blob store) failed."""

    status_code = 502


class ServiceUnavailableError(ServiceError):
    """A dependency is not configured."""

    status_code = 503
