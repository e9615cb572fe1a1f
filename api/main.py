"""
api/main.py -- FastAPI application entry point for ApexGate.

Exposes the session validator, authorization gate, client management and
audit log over HTTP for the portal front end and back-office tooling.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the stores and services once and places them on app.state;
route handlers and auth/dependencies.py read them from there. Shutdown
cancels the purge task and closes the stores symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.audit import router as audit_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.clients import router as clients_router
from api.routes.v1.features import router as features_router
from api.routes.v1.users import router as users_router
from audit.service import AuditLogService
from audit.store import AuditLogStore
from auth.dependencies import get_principal
from auth.models import Principal
from auth.resolver import JWTCredentialResolver
from auth.service import AuthService
from auth.session import SessionValidator
from auth.store import UserStore
from authz.gate import AuthorizationGate
from core.config import get_settings
from core.errors import SERVER_ERROR, SERVER_ERROR_MESSAGE, VALIDATION_ERROR, ApexGateError
from tenancy.evaluator import AccessEvaluator
from tenancy.service import ClientManagementService
from tenancy.store import TenantStore

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("apexgate.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Drop expired entries from the revoked-token table every interval seconds.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        removed = app.state.user_store.purge_revoked()
        if removed:
            logger.info("Purged %d expired revoked-token entries", removed)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def wire_services(app: FastAPI, user_store: UserStore, tenant_store: TenantStore, audit_store: AuditLogStore) -> None:
    """Build every service from the three stores and attach them to app.state.

    Shared by the real lifespan and by tests, so both run the same object graph.
    """
    resolver = JWTCredentialResolver(user_store)
    audit_service = AuditLogService(audit_store)
    evaluator = AccessEvaluator(tenant_store)

    app.state.user_store = user_store
    app.state.tenant_store = tenant_store
    app.state.audit_store = audit_store
    app.state.session_validator = SessionValidator(resolver)
    app.state.auth_service = AuthService(user_store, resolver)
    app.state.evaluator = evaluator
    app.state.gate = AuthorizationGate(evaluator)
    app.state.audit_service = audit_service
    app.state.client_service = ClientManagementService(tenant_store, audit_service)


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    settings = get_settings()
    logger.info("ApexGate API starting up")
    wire_services(app, UserStore(), TenantStore(), AuditLogStore())
    if not app.state.user_store.has_users():
        logger.warning("No users exist yet. Create the first admin with: python main.py create-admin")
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.revoked_token_purge_seconds))

    yield

    app.state.purge_task.cancel()
    app.state.user_store.close()
    app.state.tenant_store.close()
    app.state.audit_store.close()
    logger.info("ApexGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="ApexGate API",
    description="Session validation, tier-based feature gating, and admin audit trail for the client portal.",
    version=API_VERSION,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced below by authenticated equivalents.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=get_settings().allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Latency and status are logged; credentials never are.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(features_router, prefix="/api/v1", tags=["Features"])
app.include_router(clients_router, prefix="/api/v1", tags=["Clients"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(audit_router, prefix="/api/v1", tags=["Audit"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(principal: Principal = Depends(get_principal)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="ApexGate API")


@app.get("/redoc", include_in_schema=False)
async def redoc(principal: Principal = Depends(get_principal)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="ApexGate API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(ApexGateError)
async def apexgate_error_handler(request: Request, exc: ApexGateError) -> JSONResponse:
    """Render typed domain failures (401 auth, 400 validation, 404, 500 store) in the envelope.

    StoreUnavailableError has already been logged with its cause where it was
    raised; only its generic message reaches the client.
    """
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_detail()})


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="RATE_LIMITED",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(exclude_none=True),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 VALIDATION_ERROR when request body or query params fail validation."""
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code=VALIDATION_ERROR,
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Gate denials and dependencies raise HTTPException with a dict detail
    (code, message and any payload); that dict becomes the error field as-is.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"HTTP_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(code=SERVER_ERROR, message=SERVER_ERROR_MESSAGE)
        ).model_dump(exclude_none=True),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable regardless of router
# registration state. No rate limit and no authentication.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=API_VERSION)
