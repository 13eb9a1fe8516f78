from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.exceptions import RequestValidationError
from fastapi.exception_handlers import http_exception_handler, request_validation_exception_handler
from starlette.exceptions import HTTPException as StarletteHTTPException
from utils.prometheus import CONTENT_TYPE_LATEST, REGISTRY, generate_latest
from routers import (
    admin,
    analytics,
    auth,
    bookmarks,
    cron,
    download,
    file_requests,
    files,
    health,
    search,
    setup,
    share,
    trash,
)
from auth.middleware import auth_gate
from init_db import init_db
from services.scheduler_service import scheduler_service
from contextlib import asynccontextmanager
import logging
import asyncio
from config import config, normalize_cors_origins

# Configure Logging
import logging_config  # noqa: F401  initializes logging

logger = logging.getLogger("zee_index.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting up application...")

    try:
        await asyncio.to_thread(init_db)
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")

    if config.SCHEDULER_ENABLED:
        try:
            scheduler_service.start()
        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")
    else:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=false)")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    if config.SCHEDULER_ENABLED:
        scheduler_service.shutdown()

app = FastAPI(title="Zee Index API", lifespan=lifespan)


HTTP_STATUS_CODE_MAP = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    410: "gone",
    422: "validation_error",
    429: "too_many_requests",
    502: "bad_gateway",
    503: "service_unavailable",
}


def _http_exception_to_api_error(exc: StarletteHTTPException) -> dict:
    detail = exc.detail
    if isinstance(detail, str):
        message = detail
    elif isinstance(detail, dict) and "message" in detail:
        message = str(detail["message"])
    else:
        message = str(detail) if detail else "Request error"

    payload = {
        "error": message,
        "code": HTTP_STATUS_CODE_MAP.get(exc.status_code, "http_error"),
        "message": message,
    }

    if not isinstance(detail, str):
        payload["details"] = detail

    return payload


# Innermost middleware; the error wrapper and CORS sit outside it.
app.middleware("http")(auth_gate)


@app.middleware("http")
async def ensure_api_json_error_response(request: Request, call_next):
    try:
        response = await call_next(request)
        return response
    except Exception:
        if request.url.path.startswith("/api"):
            logger.error("Unhandled exception for API request", exc_info=True)
            return JSONResponse(
                status_code=500,
                content={
                    "error": "An unexpected error occurred",
                    "code": "internal_server_error",
                    "message": "An unexpected error occurred",
                },
            )
        raise


# Parse and normalize CORS origins from config (comma-separated string)
origins = normalize_cors_origins(config.CORS_ORIGINS)
logger.info(f"CORS allowed origins: {origins}")

cors_params = {
    "allow_origins": origins,
    "allow_credentials": True,
    "allow_methods": ["*"],
    "allow_headers": ["*"],
    "expose_headers": ["Content-Disposition", "Content-Range", "X-RateLimit-Limit",
                       "X-RateLimit-Remaining", "X-RateLimit-Reset"],
}

if config.CORS_ORIGIN_REGEX:
    cors_params["allow_origin_regex"] = config.CORS_ORIGIN_REGEX
    logger.info(f"CORS origin regex enabled: {config.CORS_ORIGIN_REGEX}")

app.add_middleware(
    CORSMiddleware,
    **cors_params,
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler_for_api(request: Request, exc: StarletteHTTPException):
    """Normalize HTTPException responses for /api routes while preserving defaults elsewhere."""
    if request.url.path.startswith("/api"):
        return JSONResponse(
            status_code=exc.status_code,
            content=_http_exception_to_api_error(exc),
            headers=getattr(exc, "headers", None),
        )

    return await http_exception_handler(request, exc)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Normalize validation errors for API routes while preserving default behavior elsewhere."""
    if request.url.path.startswith("/api"):
        return JSONResponse(
            status_code=422,
            content={
                "error": "Validation error",
                "code": "validation_error",
                "message": "Validation error",
                "details": jsonable_encoder(exc.errors(), custom_encoder={Exception: str}),
            },
        )

    return await request_validation_exception_handler(request, exc)


app.include_router(auth.router, prefix="/api")
app.include_router(files.router, prefix="/api")
app.include_router(search.router, prefix="/api")
app.include_router(trash.router, prefix="/api")
app.include_router(download.router, prefix="/api")
app.include_router(share.router, prefix="/api")
app.include_router(bookmarks.router, prefix="/api")
app.include_router(admin.router, prefix="/api")
app.include_router(analytics.router, prefix="/api")
app.include_router(file_requests.router, prefix="/api")
app.include_router(setup.router, prefix="/api")
app.include_router(cron.router, prefix="/api")
app.include_router(health.router, prefix="/api")


@app.get("/metrics")
def prometheus_metrics():
    """Expose Prometheus metrics collected by the application."""
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)

@app.get("/")
def read_root():
    return {"message": "Zee Index API"}
