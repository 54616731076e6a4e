import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import sentry_sdk
import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sentry_sdk.integrations.fastapi import FastApiIntegration
from slowapi.errors import RateLimitExceeded

from sessionguard.api.v1 import auth
from sessionguard.core.config import settings
from sessionguard.core.exceptions import APIError
from sessionguard.core.logging_config import configure_logging
from sessionguard.core.rate_limiter import limiter
from sessionguard.middleware.csrf import CSRF_HEADER_NAMES, apply_csrf_cookie, setup_csrf_token
from sessionguard.middleware.token_blocklist import TokenBlocklist
from sessionguard.tasks.security_tasks import BlocklistSweeper
from sessionguard.utils.response import standardized_error_response

API_VERSION = "1.0.0"

# --------------------------------------------------
# CONFIGURE LOGGING (FIRST)
# --------------------------------------------------
configure_logging()

# --------------------------------------------------
# INITIALIZE SENTRY (ONLY IN PRODUCTION)
# --------------------------------------------------
if settings.is_production and settings.SENTRY_DSN:
    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            traces_sample_rate=0.1,
            integrations=[FastApiIntegration()],
        )
        logging.info("Sentry initialized successfully")
    except Exception as e:
        logging.warning(f"Failed to initialize Sentry: {e}")


def create_app(blocklist: Optional[TokenBlocklist] = None) -> FastAPI:
    """Build the API around an explicitly owned revocation store."""
    if blocklist is None:
        blocklist = TokenBlocklist(
            user_invalidation_retention=settings.USER_INVALIDATION_RETENTION_SECONDS,
        )
    sweeper = BlocklistSweeper(blocklist, interval=settings.BLOCKLIST_SWEEP_INTERVAL_SECONDS)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper.start()
        try:
            yield
        finally:
            await sweeper.stop()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        docs_url=f"{settings.API_V1_STR}/docs",
        redoc_url=f"{settings.API_V1_STR}/redoc",
        lifespan=lifespan,
    )
    app.state.token_blocklist = blocklist
    app.state.blocklist_sweeper = sweeper

    # --------------------------------------------------
    # RATE LIMITING SETUP
    # --------------------------------------------------
    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return standardized_error_response(
            status_code=429,
            message="Too many requests. Please try again later.",
        )

    # --------------------------------------------------
    # CSRF TOKEN SETUP (EVERY REQUEST)
    # --------------------------------------------------
    @app.middleware("http")
    async def csrf_setup_middleware(request: Request, call_next):
        token, issued = setup_csrf_token(request)
        response = await call_next(request)
        apply_csrf_cookie(request, response, token, issued)
        return response

    # --------------------------------------------------
    # SECURITY HEADERS MIDDLEWARE
    # --------------------------------------------------
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    # --------------------------------------------------
    # REQUEST TIMING MIDDLEWARE
    # --------------------------------------------------
    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        response.headers["X-Process-Time"] = str(time.time() - start_time)
        return response

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())

        request.state.correlation_id = correlation_id
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("correlation_id")

        response.headers["X-Correlation-ID"] = correlation_id
        return response

    # --------------------------------------------------
    # REQUEST LOGGING MIDDLEWARE
    # --------------------------------------------------
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger = structlog.get_logger()

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
        )

        response = await call_next(request)

        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
        )

        return response

    # --------------------------------------------------
    # CORS MIDDLEWARE (OUTERMOST)
    # --------------------------------------------------
    cors_origins = list(settings.BACKEND_CORS_ORIGINS)
    # Exact match required for cookies.
    if settings.FRONTEND_URL and settings.FRONTEND_URL not in cors_origins:
        cors_origins.append(settings.FRONTEND_URL)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", *CSRF_HEADER_NAMES],
        expose_headers=["X-Process-Time", "X-Correlation-ID"],
        max_age=3600,
    )

    # --------------------------------------------------
    # INCLUDE ROUTERS
    # --------------------------------------------------
    app.include_router(auth.router, prefix=f"{settings.API_V1_STR}/auth", tags=["Authentication"])

    # --------------------------------------------------
    # HEALTH CHECK ENDPOINT
    # --------------------------------------------------
    @app.get("/health")
    def health_check(request: Request):
        return {
            "status": "healthy",
            "environment": settings.ENVIRONMENT,
            "version": API_VERSION,
            "token_blocklist": request.app.state.token_blocklist.stats(),
        }

    @app.get("/")
    def root():
        return {
            "message": settings.PROJECT_NAME,
            "docs": f"{settings.API_V1_STR}/docs",
            "version": API_VERSION,
        }

    # --------------------------------------------------
    # EXCEPTION HANDLERS
    # --------------------------------------------------
    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        return standardized_error_response(
            status_code=exc.status_code,
            message=exc.message,
            errors=exc.errors,
            error=exc.error,
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        detail = exc.detail

        if isinstance(detail, str):
            message = detail
            errors = []
        elif isinstance(detail, list):
            message = "Request failed"
            errors = detail
        elif isinstance(detail, dict):
            message = detail.get("message", "Request failed")
            errors = detail.get("errors", [])
        else:
            message = "Request failed"
            errors = []

        return standardized_error_response(
            status_code=exc.status_code,
            message=message,
            errors=errors,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return standardized_error_response(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            message="Validation failed",
            errors=exc.errors(),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger = structlog.get_logger()
        logger.exception("unhandled_exception", error_type=type(exc).__name__, detail=str(exc))

        if settings.DEBUG and not settings.is_production:
            return standardized_error_response(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                message=f"Internal server error: {str(exc)}",
                errors=[{"type": type(exc).__name__}],
            )

        return standardized_error_response(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Internal server error",
        )

    return app


app = create_app()
