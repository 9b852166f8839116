# src/badge_rotation/main.py
"""Main entry point for the badge rotation service."""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from badge_rotation import __version__
from badge_rotation.api.v1 import config_router, moderation_router
from badge_rotation.core.errors import RotationError
from badge_rotation.core.settings import settings
from badge_rotation.schemas.common import failure
from badge_rotation.services.rotation import get_rotation_services
from badge_rotation.services.scheduler import RotationScheduler

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Rotating, time-limited community moderation badges",
    version=__version__,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(moderation_router, prefix="/api/v1")
app.include_router(config_router, prefix="/api/v1")


@app.exception_handler(RotationError)
async def rotation_error_handler(request: Request, exc: RotationError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=failure(str(exc)))


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=failure(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    detail = first.get("msg", "Invalid request")
    message = f"{location}: {detail}" if location else "Invalid request"
    return JSONResponse(status_code=422, content=failure(message))


@app.on_event("startup")
async def on_startup() -> None:
    if settings.scheduler_enabled:
        scheduler = RotationScheduler()
        await scheduler.start()
        app.state.scheduler = scheduler
    else:
        app.state.scheduler = None


@app.on_event("shutdown")
async def on_shutdown() -> None:
    scheduler: RotationScheduler | None = getattr(app.state, "scheduler", None)
    if scheduler:
        await scheduler.stop()

    services = get_rotation_services()
    await services.settlement.wait_for_transfers()
    for client in (services.ledger, services.transfer):
        aclose = getattr(client, "aclose", None)
        if aclose is not None:
            await aclose()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("badge_rotation.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
