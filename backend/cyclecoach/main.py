"""Cycle Coach - FastAPI Application Entry Point."""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from cyclecoach.config import get_settings
from cyclecoach.database import engine, Base
from cyclecoach.exceptions import CycleCoachError
from cyclecoach.logging_config import setup_logging
from cyclecoach.routers import (
    cycle_router,
    plans_router,
    races_router,
    runners_router,
    sessions_router,
)
from cyclecoach.schemas import ErrorResponse


settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    setup_logging(logging.DEBUG if settings.debug else logging.INFO)
    # Startup: Create database tables
    Base.metadata.create_all(bind=engine)
    logger.info("%s started", settings.app_name)
    yield


app = FastAPI(
    title="Cycle Coach API",
    description="Cycle-aware race training plans that adapt to how training actually goes",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        settings.frontend_url,
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CycleCoachError)
async def cyclecoach_error_handler(request: Request, exc: CycleCoachError):
    """Map domain errors to JSON responses with a stable error code."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(detail=exc.detail, error_code=exc.error_code).model_dump(),
    )


# Include routers
app.include_router(runners_router, prefix="/api/v1")
app.include_router(races_router, prefix="/api/v1")
app.include_router(plans_router, prefix="/api/v1")
app.include_router(sessions_router, prefix="/api/v1")
app.include_router(cycle_router, prefix="/api/v1")


@app.get("/")
def root():
    """Root endpoint with API info."""
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }


@app.get("/health")
def health_check():
    """Health check endpoint for container orchestration."""
    return {"status": "healthy"}
