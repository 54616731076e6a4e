from fastapi import status
from typing import Any, List, Optional


class APIError(Exception):
    def __init__(
        self,
        status_code: int,
        message: str,
        errors: Optional[List[Any]] = None,
        error: Optional[str] = None,
    ):
        self.status_code = status_code
        self.message = message
        self.errors = errors or []
        self.error = error


class CSRFValidationError(APIError):
    """Double-submit check failed; the client should fetch a fresh token and retry."""

    def __init__(self, error: str, message: str):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            message=message,
            error=error,
        )


class CSRFTokenUnavailable(APIError):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Could not provide a CSRF token",
            error="CSRF_TOKEN_UNAVAILABLE",
        )


class NotAuthenticated(APIError):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            message="Not authenticated",
            error="NOT_AUTHENTICATED",
        )


class InvalidTokenError(APIError):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            message="Could not validate credentials",
            error="INVALID_TOKEN",
        )


class TokenRevokedError(APIError):
    """Terminal for the presented token; the user has to authenticate again."""

    def __init__(self, error: str, message: str):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            message=message,
            error=error,
        )
