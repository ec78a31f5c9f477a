"""FastAPI REST backend for the trip coordination engine."""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from carpool.errors import CarpoolError
from carpool.routers import recurring, trips

log = logging.getLogger(__name__)

app = FastAPI(title="Carpool Trips", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Include routers
# ---------------------------------------------------------------------------
app.include_router(trips.router)
app.include_router(recurring.router)


@app.exception_handler(CarpoolError)
async def carpool_error_handler(request: Request, exc: CarpoolError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": type(exc).__name__, "detail": exc.message},
    )


@app.get("/health")
def health():
    redis_ok = False
    from carpool.cache.redis_client import get_redis
    r = get_redis()
    if r is not None:
        try:
            r.ping()
            redis_ok = True
        except Exception as exc:
            log.warning("Redis ping failed: %s", exc)

    return {"status": "ok", "redis": redis_ok}
