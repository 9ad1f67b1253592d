# src/visidash/server/main.py
"""FastAPI application for the Visidash server."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from visidash import __version__
from visidash.server.database import close_db, init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup - create missing tables
    try:
        await init_db()
    except (SQLAlchemyError, OSError) as e:
        # Settings fall back to the environment while the database is down
        logger.warning(f"Database initialization failed: {e}")

    yield
    # Shutdown
    await close_db()


app = FastAPI(
    title="Visidash",
    description="Natural-language data visualization dashboard API",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code >= 500:
        logger.warning(f"HTTP {exc.status_code} on {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid payload", "issues": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled server error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Import and include routers after app is created to avoid circular imports
from visidash.server.routes import (  # noqa: E402
    admin,
    ai_lab,
    auth,
    follow_ups,
    proxy,
    queries,
    settings,
)

app.include_router(auth.router, prefix="/api/auth")
app.include_router(admin.router, prefix="/api/admin")
app.include_router(ai_lab.router, prefix="/api/admin/ai-lab")
app.include_router(settings.router, prefix="/api/settings")
app.include_router(queries.router, prefix="/api/queries")
app.include_router(follow_ups.router, prefix="/api/follow-ups")
app.include_router(proxy.router, prefix="/api")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {"message": "Visidash API", "docs": "/docs"}
