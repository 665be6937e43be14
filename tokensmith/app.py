from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from tokensmith.api.error_handling import register_exception_handlers
from tokensmith.api.routes import router
from tokensmith.logging import get_logger, set_correlation_id
from tokensmith.storage.errors import StoreUnavailable

logger = get_logger(__name__)

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 2.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime on startup and release store connections on shutdown."""
    from tokensmith.service.runtime import get_runtime

    get_runtime()
    logger.info("startup_complete", version=__version__)

    yield

    try:
        await get_runtime().close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="tokensmith", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag each request with a correlation ID for log tracing.

    Taken from the X-Request-ID header when the client sends one, generated
    otherwise, and echoed back in the response.
    """
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    # Responses carry bearer credentials; nothing may be cached.
    if request.url.path.startswith("/v1/") or request.url.path == "/healthz":
        response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, private")
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz")
async def health() -> Any:
    """Report credential store reachability and build version."""
    from tokensmith.service.runtime import get_runtime

    runtime = get_runtime()
    checks: Dict[str, str] = {}
    try:
        await asyncio.wait_for(runtime.credentials.ping(), HEALTH_CHECK_TIMEOUT_SECONDS)
        checks["credential_store"] = "ok"
    except asyncio.TimeoutError:
        logger.error("health_check_timeout", component="credential_store")
        checks["credential_store"] = "timeout"
    except StoreUnavailable:
        checks["credential_store"] = "unavailable"

    healthy = all(value == "ok" for value in checks.values())
    body = {
        "status": "ok" if healthy else "degraded",
        "version": __version__,
        "checks": checks,
    }
    return JSONResponse(status_code=200 if healthy else 503, content=body)


def create_app() -> FastAPI:
    return app
