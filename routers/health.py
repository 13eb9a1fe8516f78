"""
Health check: KV round trip and a Drive root lookup, each with its latency.
"""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from kv import kv_store
from services.drive import get_drive_service
from services.google_auth import DriveNotConfiguredError, is_drive_configured, root_folder_id
from utils.structured_logging import StructuredLogger

router = APIRouter(tags=["health"])

health_logger = StructuredLogger(service="health", logger_name="zee_index.health")

_STARTED_AT = time.monotonic()


def _elapsed_ms(start: float) -> int:
    return round((time.perf_counter() - start) * 1000)


def check_kv() -> dict:
    start = time.perf_counter()
    try:
        key = f"health:{time.time_ns()}"
        kv_store.client.set(key, "ok", ex=5)
        if kv_store.client.get(key) != "ok":
            raise RuntimeError("Write/read mismatch")
        return {"status": "healthy", "latency": _elapsed_ms(start)}
    except Exception as e:
        health_logger.error(action="kv_check", message="KV health check failed", error=e)
        return {"status": "unhealthy", "latency": _elapsed_ms(start), "error": str(e)}


def check_drive() -> dict:
    if not is_drive_configured():
        return {"status": "not_configured", "latency": 0}
    start = time.perf_counter()
    try:
        root_id = root_folder_id()
        if not root_id:
            raise RuntimeError("Root folder ID not configured")
        get_drive_service().get_root_metadata(root_id)
        return {"status": "healthy", "latency": _elapsed_ms(start)}
    except DriveNotConfiguredError:
        return {"status": "not_configured", "latency": 0}
    except Exception as e:
        health_logger.error(action="drive_check", message="Drive health check failed", error=e)
        return {"status": "unhealthy", "latency": _elapsed_ms(start), "error": str(e)}


@router.get("/health")
def health_check(request: Request):
    """
    Status codes:
        - 200: every dependency is healthy (or Drive is simply not configured yet)
        - 503: at least one dependency failed
    """
    services = {"database": check_kv(), "google_drive": check_drive()}
    has_error = any(s["status"] == "unhealthy" for s in services.values())

    return JSONResponse(
        status_code=503 if has_error else 200,
        content={
            "status": "error" if has_error else "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - _STARTED_AT, 1),
            "services": services,
            "meta": {"userAgent": request.headers.get("user-agent", "unknown")},
        },
        headers={"Cache-Control": "no-store, no-cache, must-revalidate"},
    )
