"""
SQL Broker - FastAPI Main Application
"""
from fastapi import FastAPI, Depends, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
import logging
import structlog
import time

from sqlbroker.config import settings
from sqlbroker.core.exceptions import BrokerError
from sqlbroker.database import init_models
from sqlbroker.services.history_ledger import HistoryLedger
from sqlbroker.services.maintenance import HistoryMaintenance, MaintenanceScheduler
from sqlbroker.services.query_broker import QueryBroker, get_broker
from sqlbroker.api import query


def configure_logging() -> None:
    """Configure structured logging."""
    logging.basicConfig(format="%(message)s", level=settings.LOG_LEVEL.upper())
    renderer = structlog.processors.JSONRenderer() if settings.LOG_JSON else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            renderer
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


configure_logging()

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    logger.info("application_startup", version=settings.APP_VERSION)

    init_models()
    logger.info("database_initialized")

    broker = get_broker()
    broker.registry.start_reaper()

    scheduler = None
    if settings.MAINTENANCE_ENABLED:
        scheduler = MaintenanceScheduler(
            HistoryMaintenance(HistoryLedger(), retention_days=settings.HISTORY_RETENTION_DAYS),
            purge_cron=settings.PURGE_CRON,
            sweep_cron=settings.SWEEP_CRON,
            timezone=settings.MAINTENANCE_TIMEZONE
        )
        scheduler.start()

    yield

    # Shutdown
    if scheduler is not None:
        await scheduler.stop()
    await broker.close()
    logger.info("application_shutdown")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Role-governed SQL execution against shared target databases",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request timing middleware
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add request timing to response headers."""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    return response


# Exception handlers
@app.exception_handler(BrokerError)
async def broker_exception_handler(request: Request, exc: BrokerError):
    """Translate broker errors to their HTTP status and stable code."""
    logger.info("broker_error", code=exc.code, path=request.url.path, execution_id=exc.execution_id)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors."""
    logger.warning("validation_error", errors=exc.errors(), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": exc.errors(),
            "message": "Validation error"
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error("unhandled_exception", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "message": str(exc) if settings.DEBUG else "An error occurred"
        }
    )


# Health check endpoint
@app.get("/health", tags=["System"])
async def health_check(broker: QueryBroker = Depends(get_broker)):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "app": settings.APP_NAME,
        "active_pools": len(broker.registry),
        "running_queries": len(broker.tracker)
    }


# Include routers
app.include_router(query.router, prefix="/api/query", tags=["Query"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "sqlbroker.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
