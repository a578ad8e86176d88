"""Azhur Katering - catering backend, authentication API."""

import asyncio
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from app.config import get_settings
from app.errors import ApiError, ConflictError
from app.logging_config import get_logger, setup_logging
from app.rate_limit import get_real_ip, limiter
from app.routers import auth_router
from app.schemas.common import ApiResponse
from app.services.cleanup import CleanupService, run_periodically
from app.services.notifier import get_notifier

APP_NAME = "azhur-katering"
APP_VERSION = "0.1.0"

setup_logging()
logger = get_logger("app")

HTTP_ERROR_CODES = {
    401: "USER_NOT_AUTHENTICATED",
    403: "ACCESS_DENIED",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    413: "PAYLOAD_TOO_LARGE",
}


def error_response(status_code: int, message: str, error_code: str, headers: dict | None = None) -> JSONResponse:
    """Uniform error body: success, message, errorCode, timestamp."""
    body = ApiResponse.error(message, error_code).model_dump(mode="json", by_alias=True, exclude_none=True)
    return JSONResponse(status_code=status_code, content=body, headers=headers)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    for warning in settings.validate():
        logger.warning("Config: %s", warning)

    cleanup = CleanupService()
    logger.info("Starting background cleanup tasks")
    tasks = [
        asyncio.create_task(
            run_periodically(cleanup.purge_expired_refresh_tokens, settings.TOKEN_CLEANUP_INTERVAL_SECONDS)
        ),
        asyncio.create_task(
            run_periodically(cleanup.purge_expired_verifications, settings.TOKEN_CLEANUP_INTERVAL_SECONDS)
        ),
        asyncio.create_task(
            run_periodically(cleanup.purge_used_verifications, settings.USED_CODE_CLEANUP_INTERVAL_SECONDS)
        ),
    ]
    yield
    logger.info("Shutting down background tasks")
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    get_notifier().shutdown(wait=True)


app = FastAPI(title="Azhur Katering", version=APP_VERSION, lifespan=lifespan)
app.state.limiter = limiter


# --- Security headers middleware ---
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        if request.url.path.startswith("/api/"):
            response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        return response


# --- Request size limit middleware ---
class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    MAX_BODY_SIZE = 1024 * 1024  # 1MB, auth payloads are tiny

    async def dispatch(self, request: Request, call_next) -> Response:
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.MAX_BODY_SIZE:
            return error_response(413, "Request body too large", "PAYLOAD_TOO_LARGE")
        return await call_next(request)


# --- Audit logging middleware ---
class AuditLogMiddleware(BaseHTTPMiddleware):
    AUDIT_PREFIX = "/api/v1/auth/"

    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.time()
        response = await call_next(request)
        duration_ms = (time.time() - start) * 1000

        path = request.url.path
        if request.method == "POST" and path.startswith(self.AUDIT_PREFIX):
            logger.info(
                "AUDIT %s %s -> %d (%.0fms) from %s",
                request.method,
                path,
                response.status_code,
                duration_ms,
                get_real_ip(request),
            )

        return response


app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestSizeLimitMiddleware)
app.add_middleware(AuditLogMiddleware)

# API routers
app.include_router(auth_router)


# --- Error handlers ---
@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(exc.status_code, exc.message, exc.error_code)


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
    logger.warning("Concurrent modification on %s %s", request.method, request.url.path)
    return error_response(409, exc.message, "CONFLICT")


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Field errors as a single 400 message."""
    messages = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query"))
        messages.append(f"{field}: {error.get('msg')}" if field else str(error.get("msg")))
    return error_response(400, "; ".join(messages) or "Invalid request", "VALIDATION_ERROR")


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Handle rate limit exceeded."""
    logger.warning("Rate limit exceeded %s from %s", request.url.path, get_real_ip(request))
    return error_response(
        429,
        "Too many requests. Please try again later.",
        "RATE_LIMIT_EXCEEDED",
        headers={"Retry-After": "60"},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(
        exc.status_code,
        str(exc.detail),
        HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "Internal server error", "INTERNAL_SERVER_ERROR")


# --- Health check ---
@app.get("/api/health")
def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "ok", "app": APP_NAME, "version": APP_VERSION}
