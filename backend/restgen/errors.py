class RestgenError(Exception):
    """Base class for every error raised by restgen."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RestgenError):
    """A model description is malformed. Raised at registration time."""


class AuthenticationError(RestgenError):
    """Missing, malformed or expired token, or bad credentials."""

    status_code = 401


class AuthorizationError(RestgenError):
    """The caller is authenticated but lacks the required role."""

    status_code = 403


class StorageError(RestgenError):
    """The storage engine rejected a statement or could not be reached."""
