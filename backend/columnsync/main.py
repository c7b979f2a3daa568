"""
Column Sync API
FastAPI service keeping column, problem-highlight, sensor, halo and crane
layers in sync with the problem lifecycle. One SyncContext per process.
"""
import os
import sys
import time
import logging
from contextlib import asynccontextmanager

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from columnsync.config import HTTP_TIMEOUT_S  # noqa: E402  (reads env populated above)
from columnsync.api.problem_routes import router as problem_router  # noqa: E402
from columnsync.services.context import build_context  # noqa: E402
from columnsync.services.logging_config import setup_logging  # noqa: E402
from columnsync.services.middleware import RequestTimingMiddleware  # noqa: E402
from columnsync.services.perf_monitor import tracker as flow_tracker  # noqa: E402

VERSION = "1.0.0"

_log_level = os.getenv("LOG_LEVEL", "INFO")
_json_logs = os.getenv("LOG_FORMAT", "json").lower() != "text"
setup_logging(level=_log_level, json_output=_json_logs)
logger = logging.getLogger("columnsync")

_PROCESS_START = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_S) as client:
        app.state.ctx = build_context(client)
        logger.info("sync context ready")
        try:
            yield
        finally:
            app.state.ctx.shutdown()
            app.state.ctx = None


app = FastAPI(
    title="Column Sync API",
    version=VERSION,
    description="Structural problem lifecycle and spatial layer synchronisation",
    lifespan=lifespan,
)

_cors_default = "http://localhost:3000,http://localhost:5173"
cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", _cors_default).split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "X-Request-ID"],
)
# Outermost so it times everything else
app.add_middleware(RequestTimingMiddleware)

app.include_router(problem_router)


@app.get("/health")
async def health_check():
    ctx = getattr(app.state, "ctx", None)
    return {
        "status": "active",
        "version": VERSION,
        "context_ready": ctx is not None,
        "entities": len(ctx.scene) if ctx else 0,
        "open_problems": len(ctx.store.list_open()) if ctx else 0,
    }


@app.get("/metrics")
async def metrics():
    """
    Flow metrics from the in-process FlowTracker plus process uptime and
    peak memory (Unix only; 0 elsewhere).
    """
    memory_mb = 0.0
    try:
        import resource
    except ImportError:
        resource = None
    if resource is not None:
        rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        # kilobytes on Linux, bytes on macOS
        memory_mb = round(rss / (1024 * 1024) if sys.platform == "darwin" else rss / 1024, 2)

    return {
        "uptime_seconds": round(time.monotonic() - _PROCESS_START, 1),
        "memory_usage_mb": memory_mb,
        **flow_tracker.get_metrics(),
    }


def run():
    import uvicorn
    uvicorn.run(
        "columnsync.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )


if __name__ == "__main__":
    run()
