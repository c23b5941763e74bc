from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from .scheduling import Appointment, AppointmentStatus, TimeSlot


class AppointmentCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    practitioner_id: str = Field(..., alias="practitionerId", min_length=1)
    client_id: str = Field(..., alias="clientId", min_length=1)
    start: datetime
    duration_minutes: int = Field(..., alias="durationMinutes")


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    practitioner_id: str = Field(..., alias="practitionerId")
    client_id: str = Field(..., alias="clientId")
    start: datetime
    end: datetime
    duration_minutes: int = Field(..., alias="durationMinutes")
    status: AppointmentStatus
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    @classmethod
    def from_appointment(cls, appointment: Appointment) -> "AppointmentResponse":
        return cls(
            id=appointment.id,
            practitioner_id=appointment.practitioner_id,
            client_id=appointment.client_id,
            start=appointment.start,
            end=appointment.end,
            duration_minutes=appointment.duration_minutes,
            status=appointment.status,
            created_at=appointment.created_at,
            updated_at=appointment.updated_at,
        )


class FreeSlot(BaseModel):
    start: datetime
    end: datetime


class FreeSlotsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    practitioner_id: str = Field(..., alias="practitionerId")
    duration_minutes: int = Field(..., alias="durationMinutes")
    slots: List[FreeSlot]

    @classmethod
    def from_slots(cls, practitioner_id: str, duration_minutes: int, slots: List[TimeSlot]) -> "FreeSlotsResponse":
        return cls(
            practitioner_id=practitioner_id,
            duration_minutes=duration_minutes,
            slots=[FreeSlot(start=slot.start, end=slot.end) for slot in slots],
        )
