"""
API Module
FastAPI routers for the SmartPillBox application
"""

from api.patients import router as patients_router
from api.medicines import router as medicines_router
from api.intake import router as intake_router
from api.device import router as device_router
from api.stats import router as stats_router
from api.realtime import router as realtime_router, connection_manager, ConnectionManager

from api.deps import (
    get_db,
    get_current_patient_id,
    services,
)


__all__ = [
    # Routers
    "patients_router",
    "medicines_router",
    "intake_router",
    "device_router",
    "stats_router",
    "realtime_router",
    # Realtime
    "ConnectionManager",
    "connection_manager",
    # Dependencies
    "get_db",
    "get_current_patient_id",
    "services",
]


def include_routers(app, prefix: str = "/api/v1"):
    """
    Include all API routers in the FastAPI app

    Usage:
        from api import include_routers
        include_routers(app)
    """
    app.include_router(patients_router, prefix=prefix)
    app.include_router(medicines_router, prefix=prefix)
    app.include_router(intake_router, prefix=prefix)
    app.include_router(device_router, prefix=prefix)
    app.include_router(stats_router, prefix=prefix)
    # WebSocket rooms live at the root: /ws/{target_kind}/{target_id}
    app.include_router(realtime_router)
