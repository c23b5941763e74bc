"""
Appointment store: the system of record for appointments.

``AppointmentStore`` is the interface the scheduling service depends on.
``InMemoryAppointmentStore`` is the reference implementation used in tests
and for single-process demos; ``SQLAppointmentStore`` persists through
SQLAlchemy.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Dict, List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging
import threading
import uuid

from ..core.exceptions import PersistenceError
from ..core.security import utcnow
from ..models.appointment import Appointment as AppointmentRow
from ..schemas.scheduling import Appointment, AppointmentStatus, TimeSlot

logger = logging.getLogger(__name__)


class AppointmentStore(ABC):
    @abstractmethod
    def create(self, client_id: str, slot: TimeSlot) -> Appointment:
        """Persist a new scheduled appointment and return it with its id."""

    @abstractmethod
    def get(self, appointment_id: str) -> Optional[Appointment]:
        """Return the appointment or None."""

    @abstractmethod
    def update_status(
        self,
        appointment_id: str,
        status: AppointmentStatus,
        expected: AppointmentStatus = AppointmentStatus.SCHEDULED,
    ) -> Optional[Appointment]:
        """
        Move an appointment from ``expected`` to ``status``.

        Returns the updated appointment, or None when the appointment does
        not exist or is not in the ``expected`` status.
        """

    @abstractmethod
    def list(
        self,
        practitioner_id: Optional[str] = None,
        client_id: Optional[str] = None,
        status: Optional[AppointmentStatus] = None,
    ) -> List[Appointment]:
        """Return matching appointments ordered by start."""

    def scheduled_for(self, practitioner_id: str) -> List[Appointment]:
        return self.list(practitioner_id=practitioner_id, status=AppointmentStatus.SCHEDULED)


class InMemoryAppointmentStore(AppointmentStore):
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._appointments: Dict[str, Appointment] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def create(self, client_id: str, slot: TimeSlot) -> Appointment:
        now = self._clock()
        appointment = Appointment(
            id=uuid.uuid4().hex,
            practitioner_id=slot.practitioner_id,
            client_id=client_id,
            start=slot.start,
            end=slot.end,
            status=AppointmentStatus.SCHEDULED,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._appointments[appointment.id] = appointment
        return appointment

    def get(self, appointment_id: str) -> Optional[Appointment]:
        with self._lock:
            return self._appointments.get(appointment_id)

    def update_status(self, appointment_id, status, expected=AppointmentStatus.SCHEDULED):
        with self._lock:
            current = self._appointments.get(appointment_id)
            if current is None or current.status != expected:
                return None
            updated = current.model_copy(update={"status": status, "updated_at": self._clock()})
            self._appointments[appointment_id] = updated
            return updated

    def list(self, practitioner_id=None, client_id=None, status=None):
        with self._lock:
            found = [
                appointment for appointment in self._appointments.values()
                if (practitioner_id is None or appointment.practitioner_id == practitioner_id)
                and (client_id is None or appointment.client_id == client_id)
                and (status is None or appointment.status == status)
            ]
        return sorted(found, key=lambda appointment: (appointment.start, appointment.id))


class SQLAppointmentStore(AppointmentStore):
    """Appointment store backed by a SQLAlchemy session factory."""

    def __init__(self, session_factory: Callable[[], Session], clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self._clock = clock

    def create(self, client_id: str, slot: TimeSlot) -> Appointment:
        now = self._clock()
        row = AppointmentRow(
            id=uuid.uuid4().hex,
            practitioner_id=slot.practitioner_id,
            client_id=client_id,
            start=slot.start,
            end=slot.end,
            status=AppointmentStatus.SCHEDULED,
            created_at=now,
            updated_at=now,
        )
        try:
            with self.session_factory() as db:
                db.add(row)
                db.commit()
                return Appointment.model_validate(row)
        except SQLAlchemyError as exc:
            logger.error(f"Failed to persist appointment for {slot.practitioner_id}: {exc}")
            raise PersistenceError("Could not save appointment") from exc

    def get(self, appointment_id: str) -> Optional[Appointment]:
        try:
            with self.session_factory() as db:
                row = db.get(AppointmentRow, appointment_id)
                return Appointment.model_validate(row) if row else None
        except SQLAlchemyError as exc:
            logger.error(f"Failed to load appointment {appointment_id}: {exc}")
            raise PersistenceError("Could not load appointment") from exc

    def update_status(self, appointment_id, status, expected=AppointmentStatus.SCHEDULED):
        try:
            with self.session_factory() as db:
                row = db.get(AppointmentRow, appointment_id)
                if row is None or row.status != expected:
                    return None
                row.status = status
                row.updated_at = self._clock()
                db.commit()
                return Appointment.model_validate(row)
        except SQLAlchemyError as exc:
            logger.error(f"Failed to update appointment {appointment_id}: {exc}")
            raise PersistenceError("Could not update appointment") from exc

    def list(self, practitioner_id=None, client_id=None, status=None):
        try:
            with self.session_factory() as db:
                query = db.query(AppointmentRow)
                if practitioner_id is not None:
                    query = query.filter(AppointmentRow.practitioner_id == practitioner_id)
                if client_id is not None:
                    query = query.filter(AppointmentRow.client_id == client_id)
                if status is not None:
                    query = query.filter(AppointmentRow.status == status)
                rows = query.order_by(AppointmentRow.start, AppointmentRow.id).all()
                return [Appointment.model_validate(row) for row in rows]
        except SQLAlchemyError as exc:
            logger.error(f"Failed to list appointments: {exc}")
            raise PersistenceError("Could not list appointments") from exc
