"""
Error taxonomy shared by the service layer.

Services raise these; route handlers decide the HTTP status for their
call site and turn them into HTTPException.
"""


class AppError(Exception):
    """Base class for user-facing service failures."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    """Malformed input."""
    status_code = 400


class AuthError(AppError):
    """Missing, invalid or expired credentials."""
    status_code = 401


class NotFoundError(AppError):
    """Unknown city or unknown user id."""
    status_code = 404


class ConflictError(AppError):
    """Duplicate email on registration."""
    status_code = 400


class DependencyError(AppError):
    """Cache, datastore or provider failure other than not-found."""
    status_code = 500
