import structlog
from fastapi import Depends, Request

from sessionguard.core.exceptions import NotAuthenticated, TokenRevokedError
from sessionguard.core.security import decode_token, extract_token
from sessionguard.middleware.csrf import verify_csrf_token
from sessionguard.middleware.token_blocklist import TokenBlocklist, token_subject

logger = structlog.get_logger()


def get_token_blocklist(request: Request) -> TokenBlocklist:
    return request.app.state.token_blocklist


def get_current_claims(
    request: Request,
    blocklist: TokenBlocklist = Depends(get_token_blocklist),
) -> dict:
    """Verify the presented JWT, then reject it if it has been revoked."""
    token = extract_token(request)
    if not token:
        raise NotAuthenticated()

    claims = decode_token(token)

    decision = blocklist.check(claims)
    if not decision.allowed:
        raise TokenRevokedError(error=decision.reason, message=decision.message)

    logger.debug(
        "token_usage",
        user_id=token_subject(claims),
        client_ip=request.client.host if request.client else None,
        path=request.url.path,
        method=request.method,
    )

    request.state.access_token = token
    return claims


def csrf_protect(request: Request) -> None:
    verify_csrf_token(request)


def get_protected_claims(
    request: Request,
    claims: dict = Depends(get_current_claims),
) -> dict:
    """Authenticated and CSRF-validated, in that order."""
    verify_csrf_token(request)
    return claims
