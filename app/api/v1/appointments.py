from datetime import date
from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional

from ...core.security import Identity
from ...api.deps import get_current_identity, get_scheduling_service
from ...services.scheduling_service import SchedulingService
from ...schemas.appointment import (
    AppointmentCreate, AppointmentResponse, FreeSlotsResponse
)
from ...schemas.scheduling import AppointmentStatus

# Plain ``def`` handlers run on the threadpool, so bookings for different
# practitioners proceed in parallel.
router = APIRouter(prefix="/appointments", tags=["Appointments"])
practitioners_router = APIRouter(prefix="/practitioners", tags=["Practitioners"])

@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(
    payload: AppointmentCreate,
    identity: Identity = Depends(get_current_identity),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Book an appointment slot with a practitioner."""
    appointment = service.book_appointment(
        identity,
        practitioner_id=payload.practitioner_id,
        client_id=payload.client_id,
        start=payload.start,
        duration_minutes=payload.duration_minutes,
    )
    return AppointmentResponse.from_appointment(appointment)

@router.get("", response_model=List[AppointmentResponse])
def list_appointments(
    practitioner_id: Optional[str] = Query(None, alias="practitionerId"),
    client_id: Optional[str] = Query(None, alias="clientId"),
    appointment_status: Optional[AppointmentStatus] = Query(None, alias="status"),
    identity: Identity = Depends(get_current_identity),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """List the appointments the caller may view."""
    appointments = service.list_appointments(
        identity,
        practitioner_id=practitioner_id,
        client_id=client_id,
        status=appointment_status,
    )
    return [AppointmentResponse.from_appointment(appointment) for appointment in appointments]

@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: str,
    identity: Identity = Depends(get_current_identity),
    service: SchedulingService = Depends(get_scheduling_service),
):
    return AppointmentResponse.from_appointment(service.get_appointment(identity, appointment_id))

@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: str,
    identity: Identity = Depends(get_current_identity),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Cancel a scheduled appointment before it starts."""
    return AppointmentResponse.from_appointment(service.cancel_appointment(identity, appointment_id))

@router.post("/{appointment_id}/complete", response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: str,
    identity: Identity = Depends(get_current_identity),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Mark a scheduled appointment as completed once it has ended."""
    return AppointmentResponse.from_appointment(service.complete_appointment(identity, appointment_id))

@practitioners_router.get("/{practitioner_id}/free-slots", response_model=FreeSlotsResponse)
def free_slots(
    practitioner_id: str,
    day: date = Query(..., alias="date"),
    duration_minutes: int = Query(30, alias="durationMinutes"),
    identity: Identity = Depends(get_current_identity),
    service: SchedulingService = Depends(get_scheduling_service),
):
    """Bookable start times for one practitioner on one day."""
    slots = service.free_slots(identity, practitioner_id, day, duration_minutes)
    return FreeSlotsResponse.from_slots(practitioner_id, duration_minutes, slots)
