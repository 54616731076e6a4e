from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from sessionguard.api.deps import (
    csrf_protect,
    get_current_claims,
    get_protected_claims,
    get_token_blocklist,
)
from sessionguard.core.config import settings
from sessionguard.core.rate_limiter import limiter
from sessionguard.core.security import ACCESS_TOKEN_COOKIE_NAME
from sessionguard.middleware.csrf import (
    clear_csrf_token,
    provide_csrf_token,
    refresh_csrf_token,
)
from sessionguard.middleware.token_blocklist import TokenBlocklist, token_subject
from sessionguard.utils.response import success

router = APIRouter()


def _end_session_response(request: Request, message: str) -> JSONResponse:
    response = JSONResponse(content=success(message=message))
    response.delete_cookie(
        key=ACCESS_TOKEN_COOKIE_NAME,
        path="/",
        samesite="lax",
        secure=settings.is_production,
    )
    clear_csrf_token(request, response)
    return response


@router.get(
    "/csrf-token",
    summary="Get CSRF token",
    description="""
Returns the CSRF token bound to the caller's `csrf-token` cookie.

The cookie is httpOnly, so clients read the value here once and echo it in
the `X-CSRF-Token` header on every POST/PUT/PATCH/DELETE request.
""",
)
@limiter.limit(settings.RATE_LIMIT_CSRF_TOKEN)
def get_csrf_token(request: Request):
    return provide_csrf_token(request)


@router.post("/csrf-token/refresh", dependencies=[Depends(csrf_protect)])
@limiter.limit(settings.RATE_LIMIT_CSRF_TOKEN)
def rotate_csrf_token(request: Request, response: Response):
    """Issue a fresh token after a sensitive action; the previous one stops validating."""
    refresh_csrf_token(request, response)
    return provide_csrf_token(request)


@router.get("/session")
def read_session(claims: dict = Depends(get_current_claims)):
    return success(
        data={
            "user_id": token_subject(claims),
            "jti": claims.get("jti"),
            "issued_at": claims.get("iat"),
            "expires_at": claims.get("exp"),
        },
        message="Session is active",
    )


@router.post(
    "/logout",
    summary="Logout",
    description="""
Revokes the presented access token until its natural expiry and clears the
access and CSRF cookies.
""",
    responses={
        200: {"description": "Logout successful"},
        401: {"description": "Not authenticated or token already revoked"},
        403: {"description": "CSRF validation failed"},
    },
)
@limiter.limit(settings.RATE_LIMIT_LOGOUT)
def logout(
    request: Request,
    claims: dict = Depends(get_protected_claims),
    blocklist: TokenBlocklist = Depends(get_token_blocklist),
):
    blocklist.block(request.state.access_token)
    return _end_session_response(request, "Logout successful")


@router.post(
    "/logout-all",
    summary="Logout from every device",
    description="""
Invalidates every token issued to the current user up to now (for example
after a password change) and revokes the presented token.
""",
)
@limiter.limit(settings.RATE_LIMIT_LOGOUT)
def logout_all(
    request: Request,
    claims: dict = Depends(get_protected_claims),
    blocklist: TokenBlocklist = Depends(get_token_blocklist),
):
    blocklist.invalidate_user(token_subject(claims))
    blocklist.block(request.state.access_token)
    return _end_session_response(request, "All sessions have been logged out")


@router.get("/blocklist/stats")
def blocklist_stats(
    claims: dict = Depends(get_current_claims),
    blocklist: TokenBlocklist = Depends(get_token_blocklist),
):
    return success(data=blocklist.stats())
