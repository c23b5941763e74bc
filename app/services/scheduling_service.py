"""
Scheduling service.

Runs one booking attempt end to end:

    identity check -> authorize -> validate -> directory lookups -> reserve

The reserve step checks the availability index and commits to the store
while holding the practitioner's lock, so concurrent attempts on the same
practitioner are serialized and exactly one of several overlapping requests
wins. Different practitioners never share a lock.
"""
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterator, List, Optional
import logging
import threading

from ..core.config import settings
from ..core.exceptions import (
    ConflictError, ExpiredCredential, InvalidTransition, NotFoundError,
    SchedulingTimeout, ValidationError
)
from ..core.security import Identity, as_naive_utc, utcnow
from ..schemas.scheduling import (
    Appointment, AppointmentStatus, ClientRecord, PractitionerRecord, TimeSlot
)
from .appointment_store import AppointmentStore
from .availability import AvailabilityIndex, Interval
from .directory import ClinicDirectory
from .role_guard import Action, Decision, Grant, ResourceOwner, RoleGuard

logger = logging.getLogger(__name__)


class PractitionerLocks:
    """One mutual-exclusion lock per practitioner id."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, practitioner_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(practitioner_id)
            if lock is None:
                lock = self._locks[practitioner_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, practitioner_id: str) -> Iterator[None]:
        lock = self._lock_for(practitioner_id)
        acquired = lock.acquire(timeout=self.timeout) if self.timeout is not None else lock.acquire()
        if not acquired:
            logger.warning(f"Timed out waiting for scheduling lock of practitioner {practitioner_id}")
            raise SchedulingTimeout()
        try:
            yield
        finally:
            lock.release()


class SchedulingService:
    def __init__(
        self,
        store: AppointmentStore,
        directory: ClinicDirectory,
        index: Optional[AvailabilityIndex] = None,
        guard: Optional[RoleGuard] = None,
        clock: Callable[[], datetime] = utcnow,
        lock_timeout: Optional[float] = settings.LOCK_TIMEOUT_SECONDS,
        max_duration_minutes: int = settings.MAX_APPOINTMENT_MINUTES,
    ):
        self.store = store
        self.directory = directory
        self.index = index or AvailabilityIndex()
        self.guard = guard or RoleGuard()
        self.clock = clock
        self.locks = PractitionerLocks(lock_timeout)
        self.max_duration_minutes = max_duration_minutes

    # Booking

    def book_appointment(
        self,
        identity: Identity,
        practitioner_id: str,
        client_id: str,
        start: datetime,
        duration_minutes: int,
        now: Optional[datetime] = None,
    ) -> Appointment:
        """
        Book ``client_id`` with ``practitioner_id`` for ``duration_minutes`` from ``start``.

        Raises:
            ExpiredCredential: identity expired before the request was handled
            AuthorizationError: caller may not book for this client
            ValidationError: bad duration, slot in the past or outside working hours
            NotFoundError: unknown practitioner or client
            ConflictError: slot overlaps a scheduled appointment
            SchedulingTimeout: practitioner lock not acquired in time
            PersistenceError: the store failed; nothing was committed
        """
        now = self._now(now)
        self._check_identity(identity, now)

        grant = self.guard.require(
            identity, Action.BOOK,
            ResourceOwner(client_id=client_id, practitioner_id=practitioner_id),
        )

        slot = self._build_slot(practitioner_id, start, duration_minutes)
        if slot.start <= now:
            raise ValidationError("Appointments must start in the future")

        practitioner = self._get_practitioner(practitioner_id)
        self._get_client(client_id)
        self._check_working_hours(practitioner, slot)

        return self._reserve(grant, client_id, slot)

    def _reserve(self, grant: Grant, client_id: str, slot: TimeSlot) -> Appointment:
        grant.ensure(Action.BOOK)

        with self.locks.hold(slot.practitioner_id):
            self._ensure_index(slot.practitioner_id)

            clashes = self.index.conflicts(slot.practitioner_id, slot.start, slot.end)
            if clashes:
                logger.info(
                    f"Conflict booking {slot.practitioner_id} {slot.start:%Y-%m-%d %H:%M}-{slot.end:%H:%M} "
                    f"for {client_id}: overlaps {[clash.appointment_id for clash in clashes]}"
                )
                raise ConflictError(
                    f"Practitioner {slot.practitioner_id} is already booked between "
                    f"{clashes[0].start.isoformat()} and {clashes[0].end.isoformat()}"
                )

            appointment = self.store.create(client_id, slot)
            self.index.add(slot.practitioner_id, appointment.start, appointment.end, appointment.id)

        logger.info(
            f"Booked appointment {appointment.id}: practitioner={appointment.practitioner_id} "
            f"client={appointment.client_id} start={appointment.start.isoformat()}"
        )
        return appointment

    # Lifecycle transitions

    def cancel_appointment(
        self, identity: Identity, appointment_id: str, now: Optional[datetime] = None
    ) -> Appointment:
        return self._transition(identity, appointment_id, Action.CANCEL, now)

    def complete_appointment(
        self, identity: Identity, appointment_id: str, now: Optional[datetime] = None
    ) -> Appointment:
        return self._transition(identity, appointment_id, Action.COMPLETE, now)

    def _transition(
        self, identity: Identity, appointment_id: str, action: Action, now: Optional[datetime]
    ) -> Appointment:
        now = self._now(now)
        self._check_identity(identity, now)

        appointment = self._get_appointment(appointment_id)
        grant = self.guard.require(identity, action, self._owner(appointment))

        if action is Action.CANCEL:
            return self._cancel(grant, appointment, now)
        return self._complete(grant, appointment, now)

    def _cancel(self, grant: Grant, appointment: Appointment, now: datetime) -> Appointment:
        grant.ensure(Action.CANCEL)

        with self.locks.hold(appointment.practitioner_id):
            self._ensure_index(appointment.practitioner_id)
            current = self._get_appointment(appointment.id)
            self._check_scheduled(current, "cancel")
            if now >= current.start:
                raise InvalidTransition("Appointments can only be cancelled before they start")

            updated = self._update_status(current, AppointmentStatus.CANCELLED)
            self.index.remove(current.practitioner_id, current.id)

        logger.info(f"Cancelled appointment {updated.id} by {grant.identity.role.value} '{grant.identity.subject}'")
        return updated

    def _complete(self, grant: Grant, appointment: Appointment, now: datetime) -> Appointment:
        grant.ensure(Action.COMPLETE)

        with self.locks.hold(appointment.practitioner_id):
            self._ensure_index(appointment.practitioner_id)
            current = self._get_appointment(appointment.id)
            self._check_scheduled(current, "complete")
            if now < current.end:
                raise InvalidTransition("Appointments can only be completed after they end")

            updated = self._update_status(current, AppointmentStatus.COMPLETED)
            # The index only holds scheduled appointments
            self.index.remove(current.practitioner_id, current.id)

        logger.info(f"Completed appointment {updated.id} by {grant.identity.role.value} '{grant.identity.subject}'")
        return updated

    def _update_status(self, appointment: Appointment, status: AppointmentStatus) -> Appointment:
        updated = self.store.update_status(appointment.id, status, expected=AppointmentStatus.SCHEDULED)
        if updated is None:
            raise InvalidTransition(f"Appointment {appointment.id} is no longer scheduled")
        return updated

    @staticmethod
    def _check_scheduled(appointment: Appointment, verb: str) -> None:
        if appointment.status != AppointmentStatus.SCHEDULED:
            raise InvalidTransition(
                f"Cannot {verb} an appointment that is {appointment.status.value}"
            )

    # Reads

    def get_appointment(
        self, identity: Identity, appointment_id: str, now: Optional[datetime] = None
    ) -> Appointment:
        self._check_identity(identity, self._now(now))
        appointment = self._get_appointment(appointment_id)
        self.guard.require(identity, Action.VIEW, self._owner(appointment))
        return appointment

    def list_appointments(
        self,
        identity: Identity,
        practitioner_id: Optional[str] = None,
        client_id: Optional[str] = None,
        status: Optional[AppointmentStatus] = None,
        now: Optional[datetime] = None,
    ) -> List[Appointment]:
        """Appointments matching the filters that ``identity`` is allowed to view."""
        self._check_identity(identity, self._now(now))
        appointments = self.store.list(
            practitioner_id=practitioner_id, client_id=client_id, status=status
        )
        return [
            appointment for appointment in appointments
            if self.guard.authorize(identity, Action.VIEW, self._owner(appointment)) is Decision.ALLOW
        ]

    def free_slots(
        self,
        identity: Identity,
        practitioner_id: str,
        day: date,
        duration_minutes: int,
        now: Optional[datetime] = None,
    ) -> List[TimeSlot]:
        """Bookable slots of ``duration_minutes`` on ``day`` inside working hours."""
        now = self._now(now)
        self._check_identity(identity, now)
        duration = self._check_duration(duration_minutes)
        practitioner = self._get_practitioner(practitioner_id)
        window_start, window_end = practitioner.working_window(day)

        with self.locks.hold(practitioner_id):
            self._ensure_index(practitioner_id)
            starts = self.index.free_windows(
                practitioner_id, window_start, window_end, duration, not_before=now
            )

        return [TimeSlot(practitioner_id=practitioner_id, start=start, duration=duration) for start in starts]

    # Index maintenance

    def rebuild_index(self) -> int:
        """Reload every known practitioner's intervals from the store."""
        practitioner_ids = {
            appointment.practitioner_id
            for appointment in self.store.list(status=AppointmentStatus.SCHEDULED)
        }
        practitioner_ids.update(self.index.loaded_practitioners())
        for practitioner_id in practitioner_ids:
            with self.locks.hold(practitioner_id):
                # Re-read under the lock so a booking committed meanwhile is kept
                self.index.load(
                    practitioner_id,
                    [self._interval(appointment) for appointment in self.store.scheduled_for(practitioner_id)],
                )

        logger.info(f"Availability index rebuilt for {len(practitioner_ids)} practitioners")
        return len(practitioner_ids)

    def _ensure_index(self, practitioner_id: str) -> None:
        # Caller holds the practitioner's lock
        if not self.index.is_loaded(practitioner_id):
            self.index.load(
                practitioner_id,
                [self._interval(appointment) for appointment in self.store.scheduled_for(practitioner_id)],
            )

    # Helpers

    @staticmethod
    def _interval(appointment: Appointment) -> Interval:
        return Interval(appointment.start, appointment.end, appointment.id)

    @staticmethod
    def _owner(appointment: Appointment) -> ResourceOwner:
        return ResourceOwner(client_id=appointment.client_id, practitioner_id=appointment.practitioner_id)

    def _now(self, now: Optional[datetime]) -> datetime:
        return as_naive_utc(now) if now else self.clock()

    @staticmethod
    def _check_identity(identity: Identity, now: datetime) -> None:
        if as_naive_utc(now) >= identity.expires_at:
            raise ExpiredCredential("Token has expired")

    def _check_duration(self, duration_minutes: int) -> timedelta:
        if duration_minutes <= 0:
            raise ValidationError("Duration must be a positive number of minutes")
        if duration_minutes > self.max_duration_minutes:
            raise ValidationError(
                f"Duration may not exceed {self.max_duration_minutes} minutes"
            )
        return timedelta(minutes=duration_minutes)

    def _build_slot(self, practitioner_id: str, start: datetime, duration_minutes: int) -> TimeSlot:
        duration = self._check_duration(duration_minutes)
        try:
            start = as_naive_utc(start)
        except OverflowError as exc:
            raise ValidationError("Appointment start is outside the supported date range") from exc
        if start > datetime.max - duration:
            raise ValidationError("Appointment end is outside the supported date range")
        return TimeSlot(practitioner_id=practitioner_id, start=start, duration=duration)

    @staticmethod
    def _check_working_hours(practitioner: PractitionerRecord, slot: TimeSlot) -> None:
        window_start, window_end = practitioner.working_window(slot.start.date())
        if slot.start < window_start or slot.end > window_end:
            raise ValidationError(
                f"Slot must fall within working hours "
                f"{practitioner.work_start:%H:%M}-{practitioner.work_end:%H:%M}"
            )

    def _get_practitioner(self, practitioner_id: str) -> PractitionerRecord:
        practitioner = self.directory.get_practitioner(practitioner_id)
        if practitioner is None:
            raise NotFoundError(f"Practitioner {practitioner_id} not found")
        return practitioner

    def _get_client(self, client_id: str) -> ClientRecord:
        client = self.directory.get_client(client_id)
        if client is None:
            raise NotFoundError(f"Client {client_id} not found")
        return client

    def _get_appointment(self, appointment_id: str) -> Appointment:
        appointment = self.store.get(appointment_id)
        if appointment is None:
            raise NotFoundError(f"Appointment {appointment_id} not found")
        return appointment
