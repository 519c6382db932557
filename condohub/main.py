"""
Main FastAPI Application
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from condohub.core.config import settings
from condohub.core.database import init_db
from condohub.core.exceptions import (
    CondoHubError, NotFoundError, ValidationError, InvalidStateError, DuplicateLinkError
)
from condohub.api.v1 import integration, jobs, financial, maintenance, unit_payments, notifications
from condohub.services.scheduler import Scheduler

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    logger.info("Starting up...")
    init_db()

    scheduler = Scheduler()
    app.state.scheduler = scheduler
    if settings.SCHEDULER_ENABLED:
        scheduler.start()

    logger.info("Database initialized")

    yield

    # Shutdown
    logger.info("Shutting down...")
    await scheduler.shutdown()


# Create app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


ERROR_STATUS = {
    NotFoundError: 404,
    DuplicateLinkError: 409,
    ValidationError: 400,
    InvalidStateError: 400,
}


# Exception handlers
@app.exception_handler(CondoHubError)
async def domain_exception_handler(request: Request, exc: CondoHubError):
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        400
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "resource": exc.resource, "resource_id": exc.resource_id}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred", "error": str(exc)}
    )


# Health check
@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": settings.APP_VERSION}


# Include routers
app.include_router(integration.router, prefix="/api/v1")
app.include_router(jobs.router, prefix="/api/v1")
app.include_router(financial.router, prefix="/api/v1")
app.include_router(maintenance.router, prefix="/api/v1")
app.include_router(unit_payments.router, prefix="/api/v1")
app.include_router(notifications.router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
