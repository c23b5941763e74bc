import os
from datetime import datetime, time, timedelta

# Must be set before the app modules read settings
os.environ["TESTING"] = "1"
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///./test.db")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.database import Base, engine, redis_client
from app.models.client import Client
from app.models.practitioner import Practitioner
from app.core.security import TokenAuthority, UserRole
from app.schemas.scheduling import ClientRecord, PractitionerRecord
from app.services.appointment_store import InMemoryAppointmentStore, SQLAppointmentStore
from app.services.directory import InMemoryClinicDirectory, SQLClinicDirectory
from app.services.scheduling_service import SchedulingService

# Monday morning, well before the practitioners' working hours
NOW = datetime(2030, 1, 7, 8, 0)
DAY = NOW.date()
TEST_SECRET = "test-secret-key"


def at(hour: int, minute: int = 0, day_offset: int = 0) -> datetime:
    return datetime.combine(DAY + timedelta(days=day_offset), time(hour, minute))


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def authority():
    return TokenAuthority(secret_key=TEST_SECRET, algorithm="HS256", ttl=timedelta(minutes=15))


PRACTITIONERS = [
    PractitionerRecord(id="dr-d", name="Dr. D", work_start=time(9), work_end=time(17)),
    PractitionerRecord(id="dr-e", name="Dr. E", work_start=time(8), work_end=time(12)),
]
CLIENTS = [
    ClientRecord(id="c1", name="Client One"),
    ClientRecord(id="c2", name="Client Two"),
    ClientRecord(id="c3", name="Client Three"),
]


@pytest.fixture(params=["memory", "sql"])
def backend(request):
    """Storage the scheduling fixtures run on; ``sql`` is what the app ships with."""
    return request.param


@pytest.fixture
def sql_session_factory(tmp_path):
    # Register models on the metadata
    from app.models import account, appointment  # noqa: F401
    sql_engine = create_engine(
        f"sqlite:///{tmp_path / 'clinic.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        pool_size=10,
        max_overflow=40,
    )
    Base.metadata.create_all(bind=sql_engine)
    factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=sql_engine)

    with factory() as db:
        db.add_all([
            Practitioner(id=p.id, name=p.name, work_start=p.work_start, work_end=p.work_end)
            for p in PRACTITIONERS
        ])
        db.add_all([Client(id=c.id, name=c.name) for c in CLIENTS])
        db.commit()

    yield factory
    sql_engine.dispose()


@pytest.fixture
def directory(backend, request):
    if backend == "sql":
        return SQLClinicDirectory(request.getfixturevalue("sql_session_factory"))

    directory = InMemoryClinicDirectory()
    for practitioner in PRACTITIONERS:
        directory.add_practitioner(practitioner)
    for client_record in CLIENTS:
        directory.add_client(client_record)
    return directory


@pytest.fixture
def store(backend, request, clock):
    if backend == "sql":
        return SQLAppointmentStore(request.getfixturevalue("sql_session_factory"), clock=clock)
    return InMemoryAppointmentStore(clock=clock)


@pytest.fixture
def service(store, directory, clock):
    return SchedulingService(store, directory, clock=clock, lock_timeout=5)


@pytest.fixture
def identity_for(authority, clock):
    """Build a verified identity the way the HTTP layer does."""
    def make(subject: str, role: UserRole):
        return authority.verify(authority.issue(subject, role, clock()), clock())
    return make


@pytest.fixture
def token_for(authority, clock):
    def make(subject: str, role: UserRole, issued_at: datetime = None) -> dict:
        token = authority.issue(subject, role, issued_at or clock())
        return {"Authorization": f"Bearer {token}"}
    return make


@pytest.fixture
def test_db():
    # Register models on the metadata
    from app.models import account, appointment, client, practitioner  # noqa: F401
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(service, authority, test_db):
    from app.main import app
    from app.api.deps import get_scheduling_service, get_token_authority

    app.dependency_overrides[get_scheduling_service] = lambda: service
    app.dependency_overrides[get_token_authority] = lambda: authority
    redis_client.flushall()

    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client

    app.dependency_overrides.clear()
