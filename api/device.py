"""
Device API Router
Endpoints called by the pill box firmware
"""

import logging
from typing import Any, Dict, List
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.deps import get_db, services
from api.schemas.intake import SensorData, SensorDataResponse, DeviceDose, DeviceStatus


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/device", tags=["device"])


@router.post("/sensor-data", response_model=SensorDataResponse)
async def receive_sensor_data(
    data: SensorData,
    db: Session = Depends(get_db)
):
    """
    Ingest a compartment open/close event

    Signals that match no pending dose are stored for audit and reported
    with their outcome; they are never an error for the device.
    """
    intake_service = services.get_intake_service()

    result = await intake_service.record_sensor_signal(
        box_code=data.box_code,
        compartment_no=data.compartment_no,
        signal_time=data.timestamp,
        event_type=data.event_type,
        sensor_value=data.sensor_value,
        db=db
    )
    return SensorDataResponse(**result.to_dict())


@router.get("/next-doses/{box_code}")
async def get_next_doses(
    box_code: str,
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Pending doses for the box in the next hour (max 7)
    """
    schedule_service = services.get_schedule_service()

    doses = await schedule_service.get_next_doses_for_device(box_code, db=db)
    return {
        "success": True,
        "doses": [DeviceDose(**dose).model_dump(mode="json") for dose in doses]
    }


@router.post("/device-status")
async def update_device_status(status_data: DeviceStatus) -> Dict[str, Any]:
    """
    Heartbeat from the box; logged only
    """
    logger.info(
        f"Device {status_data.box_code}: {status_data.status} "
        f"(ip={status_data.ip_address}, fw={status_data.firmware_version}, uptime={status_data.uptime})"
    )
    return {"success": True, "message": "Status received"}


@router.get("/{box_code}/events")
async def get_sensor_events(
    box_code: str,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db)
) -> List[Dict[str, Any]]:
    """
    Audit trail of raw events received from a box, newest first
    """
    intake_service = services.get_intake_service()
    return await intake_service.get_sensor_events(box_code, limit=limit, db=db)
