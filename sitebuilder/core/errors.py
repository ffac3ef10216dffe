"""
Error types raised by the sitebuilder reducers.

All errors derive from SiteBuilderError, which is a ValueError so callers
that only know about ValueError (the CLI, older scripts) keep working.
The web layer maps each ``code`` to an HTTP status.
"""


class SiteBuilderError(ValueError):
    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SiteBuilderError):
    """Malformed or missing input."""

    code = "validation_error"


class NotFoundError(SiteBuilderError):
    """Referenced row does not exist."""

    code = "not_found"


class ConflictError(SiteBuilderError):
    """Uniqueness violated (username, email)."""

    code = "conflict"


class AuthError(SiteBuilderError):
    """Credentials did not verify."""

    code = "auth_failed"


class PermissionDeniedError(SiteBuilderError):
    """Caller may not touch this row."""

    code = "permission_denied"
