"""
Clinic directory lookups used by scheduling.

The directory owns practitioners and clients; scheduling only reads it.
"""
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from ..core.exceptions import PersistenceError
from ..models.client import Client
from ..models.practitioner import Practitioner
from ..schemas.scheduling import ClientRecord, PractitionerRecord

logger = logging.getLogger(__name__)


class ClinicDirectory(ABC):
    @abstractmethod
    def get_practitioner(self, practitioner_id: str) -> Optional[PractitionerRecord]:
        ...

    @abstractmethod
    def get_client(self, client_id: str) -> Optional[ClientRecord]:
        ...


class InMemoryClinicDirectory(ClinicDirectory):
    def __init__(self):
        self.practitioners: Dict[str, PractitionerRecord] = {}
        self.clients: Dict[str, ClientRecord] = {}

    def add_practitioner(self, practitioner: PractitionerRecord) -> PractitionerRecord:
        self.practitioners[practitioner.id] = practitioner
        return practitioner

    def add_client(self, client: ClientRecord) -> ClientRecord:
        self.clients[client.id] = client
        return client

    def get_practitioner(self, practitioner_id):
        return self.practitioners.get(practitioner_id)

    def get_client(self, client_id):
        return self.clients.get(client_id)


class SQLClinicDirectory(ClinicDirectory):
    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def get_practitioner(self, practitioner_id):
        try:
            with self.session_factory() as db:
                row = db.get(Practitioner, practitioner_id)
                return PractitionerRecord.model_validate(row) if row else None
        except SQLAlchemyError as exc:
            logger.error(f"Practitioner lookup failed for {practitioner_id}: {exc}")
            raise PersistenceError("Directory unavailable") from exc

    def get_client(self, client_id):
        try:
            with self.session_factory() as db:
                row = db.get(Client, client_id)
                return ClientRecord.model_validate(row) if row else None
        except SQLAlchemyError as exc:
            logger.error(f"Client lookup failed for {client_id}: {exc}")
            raise PersistenceError("Directory unavailable") from exc
