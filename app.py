"""
SmartPillBox Backend
Main FastAPI application: intake scheduling, sensor correlation and adherence tracking
"""

import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from datetime import datetime
from sqlalchemy.orm import Session

# Configuration and database
from config import settings
from database import init_db, get_db, DatabaseHealthCheck

from api import include_routers, connection_manager
from actions.sweep_scheduler import sweep_scheduler
from services.exceptions import (
    InvalidTimeSlotError,
    IntakeConflictError,
    InvalidTransitionError,
)
from tools.notification_service import notification_dispatcher

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format=settings.LOG_FORMAT
)
logger = logging.getLogger(__name__)


# ==================== LIFESPAN ====================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, wire the realtime sink and run the sweep for the app lifetime"""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Environment: {settings.ENV}")

    # Initialize database
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    # Engine events go out through the websocket rooms
    notification_dispatcher.set_sink(connection_manager)

    if settings.SWEEP_ENABLED:
        sweep_scheduler.start()
    else:
        logger.info("Sweep scheduler disabled")

    yield

    # Shutdown
    await sweep_scheduler.stop(timeout=settings.SWEEP_INTERVAL_SECONDS)
    logger.info(f"Shutting down {settings.APP_NAME}")


# ==================== APP INITIALIZATION ====================

app = FastAPI(
    title=settings.APP_NAME,
    description="""
    ## SmartPillBox API

    Medication intake tracking for sensor-equipped pill boxes.

    ### Features
    - **Schedule generation**: Dose occurrences materialised from each medicine's time slots
    - **Sensor correlation**: Compartment opens confirm the nearest pending dose exactly once
    - **Sweeps**: Overdue doses become missed; upcoming doses trigger one alert per cool-down
    - **Adherence stats**: Daily, monthly, per medicine type and per time of day
    - **Realtime**: WebSocket rooms per patient and per pill box
    """,
    version=settings.APP_VERSION,
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

# Attach modular API routers (prefix /api/v1)
include_routers(app, prefix=settings.API_PREFIX)


# ==================== EXCEPTION HANDLERS ====================

def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": True,
            "message": message,
            "status_code": status_code,
            "timestamp": datetime.utcnow().isoformat()
        }
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return _error_response(exc.status_code, exc.detail)


# Handlers resolve along the MRO, so InvalidTimeSlotError maps to 422
# even though it is a ValueError
DOMAIN_ERROR_STATUS = {
    InvalidTimeSlotError: 422,
    IntakeConflictError: 409,
    InvalidTransitionError: 409,
    ValueError: 400,
    LookupError: 404,
    PermissionError: 403,
}


def _make_domain_handler(status_code: int):
    async def handler(request: Request, exc: Exception):
        logger.info(f"{request.method} {request.url.path} -> {status_code}: {exc}")
        return _error_response(status_code, str(exc))
    return handler


for _exc_type, _status_code in DOMAIN_ERROR_STATUS.items():
    app.add_exception_handler(_exc_type, _make_domain_handler(_status_code))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return _error_response(
        500,
        "An unexpected error occurred" if not settings.DEBUG else str(exc)
    )


# ==================== HEALTH ENDPOINTS ====================

@app.get("/", tags=["Health"])
async def root():
    """Liveness probe"""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat()
    }


@app.get("/health", tags=["Health"])
async def health_check(db: Session = Depends(get_db)):
    """Readiness: database, intake status counts and sweep state"""
    db_connected = DatabaseHealthCheck.is_connected()
    intakes = DatabaseHealthCheck.get_intake_counts(db) if db_connected else {}

    return {
        "status": "healthy" if db_connected else "degraded",
        "timestamp": datetime.utcnow().isoformat(),
        "checks": {
            "database": {
                "status": "up" if db_connected else "down",
                "type": "sqlite" if "sqlite" in settings.DATABASE_URL else "postgresql",
                "intakes": intakes
            },
            "sweep": sweep_scheduler.status()
        },
        "config": {
            "sensor_tolerance_minutes": settings.SENSOR_TOLERANCE_MINUTES,
            "missed_grace_minutes": settings.MISSED_GRACE_MINUTES,
            "upcoming_lookahead_minutes": settings.UPCOMING_LOOKAHEAD_MINUTES,
            "alert_cooldown_minutes": settings.ALERT_COOLDOWN_MINUTES
        },
        "version": settings.APP_VERSION,
        "environment": settings.ENV
    }


# ==================== MAIN ====================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
