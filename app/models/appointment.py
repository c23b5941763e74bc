from sqlalchemy import Column, String, ForeignKey, DateTime, Index, Enum as SQLEnum
from sqlalchemy.sql import func
import uuid

from ..core.database import Base
from ..schemas.scheduling import AppointmentStatus

def _new_id() -> str:
    return uuid.uuid4().hex

class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_practitioner_status", "practitioner_id", "status"),
    )

    id = Column(String(32), primary_key=True, default=_new_id)

    # Plain id references, resolved through explicit lookups
    practitioner_id = Column(String(64), ForeignKey("practitioners.id"), nullable=False)
    client_id = Column(String(64), ForeignKey("clients.id"), nullable=False, index=True)

    # Half-open interval [start, end)
    start = Column(DateTime, nullable=False, index=True)
    end = Column(DateTime, nullable=False)
    status = Column(SQLEnum(AppointmentStatus), nullable=False, default=AppointmentStatus.SCHEDULED)

    # Tracking
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Appointment(id='{self.id}', practitioner_id='{self.practitioner_id}', client_id='{self.client_id}', start='{self.start}', status='{self.status}')>"
