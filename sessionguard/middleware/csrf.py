"""
Double-submit-cookie CSRF protection.

The token lives in an httpOnly cookie and has to be echoed back in a custom
header on every state-changing request. Clients read the value once from the
``/csrf-token`` endpoint. No server-side session state is kept.
"""
import hmac
from secrets import token_hex
from typing import Optional, Tuple

import structlog
from fastapi import Request, Response

from sessionguard.core.config import settings
from sessionguard.core.exceptions import CSRFTokenUnavailable, CSRFValidationError

logger = structlog.get_logger()

CSRF_COOKIE_NAME = "csrf-token"
CSRF_HEADER_NAME = "X-CSRF-Token"
CSRF_HEADER_NAMES = (CSRF_HEADER_NAME, "X-XSRF-Token", "CSRF-Token")
CSRF_TOKEN_BYTES = 32
CSRF_COOKIE_MAX_AGE = 60 * 60 * 24
CSRF_SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}

CSRF_TOKEN_MISSING = "CSRF_TOKEN_MISSING"
CSRF_HEADER_MISSING = "CSRF_HEADER_MISSING"
CSRF_TOKEN_INVALID = "CSRF_TOKEN_INVALID"


def generate_csrf_token() -> str:
    return token_hex(CSRF_TOKEN_BYTES)


def _request_context(request: Request) -> dict:
    return {
        "client_ip": request.client.host if request.client else None,
        "path": request.url.path,
        "method": request.method,
    }


def set_csrf_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=CSRF_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
        max_age=CSRF_COOKIE_MAX_AGE,
        path="/",
    )


def get_cookie_token(request: Request) -> Optional[str]:
    """Return the cookie token, or None when absent or empty."""
    return request.cookies.get(CSRF_COOKIE_NAME) or None


def get_header_token(request: Request) -> Optional[str]:
    for header_name in CSRF_HEADER_NAMES:
        value = request.headers.get(header_name)
        if value:
            return value
    return None


def setup_csrf_token(request: Request) -> Tuple[str, bool]:
    """Make sure the request has a CSRF token; returns (token, newly_issued)."""
    token = get_cookie_token(request)
    issued = False

    if token is None:
        token = generate_csrf_token()
        issued = True
        logger.debug("csrf_token_issued", **_request_context(request))

    request.state.csrf_token = token
    return token, issued


def apply_csrf_cookie(request: Request, response: Response, token: str, issued: bool) -> None:
    """Write the cookie for a freshly issued token unless the handler already rotated or cleared it."""
    if not issued or getattr(request.state, "csrf_cookie_written", False):
        return
    set_csrf_cookie(response, token)


def _reject(request: Request, error: str, message: str, **context) -> CSRFValidationError:
    logger.warning(
        "csrf_validation_failed",
        reason=error,
        **_request_context(request),
        **context,
    )
    return CSRFValidationError(error=error, message=message)


def verify_csrf_token(request: Request) -> None:
    """Raise CSRFValidationError unless cookie and header carry the same token."""
    if request.method in CSRF_SAFE_METHODS:
        return

    cookie_token = get_cookie_token(request)
    if cookie_token is None:
        raise _reject(request, CSRF_TOKEN_MISSING, "Request rejected: security token is missing")

    header_token = get_header_token(request)
    if not header_token:
        raise _reject(request, CSRF_HEADER_MISSING, "Request rejected: security token header is missing")

    cookie_bytes = cookie_token.encode("utf-8")
    header_bytes = header_token.encode("utf-8")

    if len(cookie_bytes) != len(header_bytes):
        raise _reject(
            request,
            CSRF_TOKEN_INVALID,
            "Request rejected: security token is invalid",
            cookie_token_length=len(cookie_bytes),
            header_token_length=len(header_bytes),
        )

    if not hmac.compare_digest(cookie_bytes, header_bytes):
        raise _reject(request, CSRF_TOKEN_INVALID, "Request rejected: security token is invalid")

    logger.debug("csrf_validation_succeeded", **_request_context(request))


def provide_csrf_token(request: Request) -> dict:
    token = getattr(request.state, "csrf_token", None) or get_cookie_token(request)
    if not token:
        logger.error("csrf_token_unavailable", **_request_context(request))
        raise CSRFTokenUnavailable()

    return {
        "success": True,
        "csrfToken": token,
        "message": "Security token issued successfully",
    }


def clear_csrf_token(request: Request, response: Response) -> None:
    response.delete_cookie(
        key=CSRF_COOKIE_NAME,
        path="/",
        secure=settings.is_production,
        httponly=True,
        samesite="strict",
    )
    request.state.csrf_token = None
    request.state.csrf_cookie_written = True
    logger.debug("csrf_token_cleared", **_request_context(request))


def refresh_csrf_token(request: Request, response: Response) -> str:
    token = generate_csrf_token()
    set_csrf_cookie(response, token)
    request.state.csrf_token = token
    request.state.csrf_cookie_written = True
    logger.debug("csrf_token_refreshed", **_request_context(request))
    return token
