"""
Scheduling domain records.

Relationships between practitioners, clients and appointments are plain id
references; lookups go through the directory and the appointment store.
"""
from datetime import datetime, time, timedelta
from typing import Optional, Tuple
from pydantic import BaseModel, ConfigDict
import enum


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PractitionerRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    name: str = ""
    work_start: time
    work_end: time

    def working_window(self, day) -> Tuple[datetime, datetime]:
        """Return the working window on ``day`` as naive datetimes."""
        return datetime.combine(day, self.work_start), datetime.combine(day, self.work_end)


class ClientRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    name: str = ""


class TimeSlot(BaseModel):
    """Half-open interval ``[start, start + duration)`` on one practitioner's calendar."""
    model_config = ConfigDict(frozen=True)

    practitioner_id: str
    start: datetime
    duration: timedelta

    @property
    def end(self) -> datetime:
        return self.start + self.duration


class Appointment(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    practitioner_id: str
    client_id: str
    start: datetime
    end: datetime
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)
