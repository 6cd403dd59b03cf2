from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .envelope import error_response
from .rate_limit import build_rate_limiter
from .rate_limit import init_db as init_rate_limit_db
from .routers import hints as hints_router
from .routers import preferences as preferences_router
from .routers import profile as profile_router
from .routers import push as push_router
from .routers import signals as signals_router
from .storage import profile_store, push_store, signal_store


logger = logging.getLogger("webchat")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize DB tables on startup."""
    profile_store.init_db()
    push_store.init_db()
    signal_store.init_db()
    if get_settings().rate_limit_backend == "db":
        init_rate_limit_db()
    yield


app = FastAPI(title="Webchat Backend", version="0.1.0", lifespan=lifespan)
app.state.rate_limiter = build_rate_limiter(get_settings().rate_limit_backend)


# CORS: controlled by env CORS_ORIGINS (e.g. * or http://localhost:3000)
_cors_origins_list = [o.strip() for o in get_settings().cors_origins.strip().split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(preferences_router.router)
app.include_router(push_router.router)
app.include_router(profile_router.router)
app.include_router(signals_router.router)
app.include_router(hints_router.router)


@app.get("/")
async def root() -> Dict[str, Any]:
    """
    Service metadata endpoint.
    """
    return {
        "service": get_settings().service_name,
        "version": app.version,
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/health")
async def health() -> JSONResponse:
    """
    Simple health check. Returns 200 when the database answers.
    """
    try:
        profile_store.init_db()
    except Exception as exc:
        logger.exception("health check failed")
        return error_response(500, "STORAGE_ERROR", str(exc))
    return JSONResponse(status_code=200, content={"status": "ok", "service": get_settings().service_name})


def get_app() -> FastAPI:
    """Convenience accessor for external runners."""
    return app
