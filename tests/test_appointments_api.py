import pytest
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

from app.core.security import UserRole
from tests.conftest import NOW, at

APPOINTMENTS = "/api/v1/appointments"


def booking(practitioner_id, client_id, start, minutes=30):
    return {
        "practitionerId": practitioner_id,
        "clientId": client_id,
        "start": start.isoformat(),
        "durationMinutes": minutes,
    }


@pytest.fixture
def c1(token_for):
    return token_for("c1", UserRole.PATIENT)


@pytest.fixture
def c2(token_for):
    return token_for("c2", UserRole.PATIENT)


@pytest.fixture
def admin(token_for):
    return token_for("admin-1", UserRole.ADMIN)


class TestBookingScenario:

    def test_book_conflict_adjacent_cancel_rebook(self, client, c1, c2):
        """Dr. D works 09:00-17:00; bookings around 10:00 follow half-open slot rules."""
        first = client.post(APPOINTMENTS, json=booking("dr-d", "c1", at(10)), headers=c1)
        assert first.status_code == 201
        assert first.json()["status"] == "scheduled"
        first_id = first.json()["id"]

        overlapping = client.post(APPOINTMENTS, json=booking("dr-d", "c2", at(10, 15)), headers=c2)
        assert overlapping.status_code == 409
        assert overlapping.json()["error"] == "ConflictError"

        adjacent = client.post(APPOINTMENTS, json=booking("dr-d", "c2", at(10, 30)), headers=c2)
        assert adjacent.status_code == 201

        cancelled = client.post(f"{APPOINTMENTS}/{first_id}/cancel", headers=c1)
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "cancelled"

        rebooked = client.post(APPOINTMENTS, json=booking("dr-d", "c2", at(10)), headers=c2)
        assert rebooked.status_code == 201

    def test_response_shape(self, client, c1):
        response = client.post(APPOINTMENTS, json=booking("dr-d", "c1", at(14), 45), headers=c1)
        data = response.json()

        assert data["practitionerId"] == "dr-d"
        assert data["clientId"] == "c1"
        assert data["start"] == "2030-01-07T14:00:00"
        assert data["end"] == "2030-01-07T14:45:00"
        assert data["durationMinutes"] == 45
        assert data["id"]


class TestBookingErrors:

    def test_missing_credential(self, client):
        response = client.post(APPOINTMENTS, json=booking("dr-d", "c1", at(10)))
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_invalid_credential(self, client):
        response = client.post(
            APPOINTMENTS, json=booking("dr-d", "c1", at(10)),
            headers={"Authorization": "Bearer invalid_token"},
        )
        assert response.status_code == 401
        assert response.json()["error"] == "InvalidCredential"

    def test_expired_credential(self, client, token_for):
        expired = token_for("c1", UserRole.PATIENT, issued_at=NOW - timedelta(hours=1))
        response = client.post(APPOINTMENTS, json=booking("dr-d", "c1", at(10)), headers=expired)
        assert response.status_code == 401
        assert response.json()["error"] == "ExpiredCredential"

    def test_patient_booking_for_another_client(self, client, c1):
        response = client.post(APPOINTMENTS, json=booking("dr-d", "c2", at(10)), headers=c1)
        assert response.status_code == 403

    def test_doctor_cannot_book(self, client, token_for):
        response = client.post(
            APPOINTMENTS, json=booking("dr-d", "c1", at(10)),
            headers=token_for("dr-d", UserRole.DOCTOR),
        )
        assert response.status_code == 403

    def test_unknown_practitioner(self, client, c1):
        response = client.post(APPOINTMENTS, json=booking("dr-x", "c1", at(10)), headers=c1)
        assert response.status_code == 404

    def test_unknown_client(self, client, admin):
        response = client.post(APPOINTMENTS, json=booking("dr-d", "c-x", at(10)), headers=admin)
        assert response.status_code == 404

    def test_outside_working_hours(self, client, c1):
        response = client.post(APPOINTMENTS, json=booking("dr-d", "c1", at(18)), headers=c1)
        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

    def test_past_slot(self, client, c1):
        response = client.post(APPOINTMENTS, json=booking("dr-d", "c1", at(10, day_offset=-1)), headers=c1)
        assert response.status_code == 400

    def test_slot_ending_past_calendar_limit(self, client, c1):
        response = client.post(APPOINTMENTS, json=booking("dr-d", "c1", datetime(9999, 12, 31, 23, 0), 120), headers=c1)
        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

    def test_non_positive_duration(self, client, c1):
        response = client.post(APPOINTMENTS, json=booking("dr-d", "c1", at(10), 0), headers=c1)
        assert response.status_code == 400

    def test_malformed_body(self, client, c1):
        response = client.post(APPOINTMENTS, json={"practitionerId": "dr-d"}, headers=c1)
        assert response.status_code == 400


class TestConcurrentRequests:

    def test_one_created_rest_conflict(self, client, admin):
        attempts = 12

        def attempt(_):
            return client.post(APPOINTMENTS, json=booking("dr-d", "c1", at(13)), headers=admin).status_code

        with ThreadPoolExecutor(max_workers=attempts) as pool:
            codes = list(pool.map(attempt, range(attempts)))

        assert codes.count(201) == 1
        assert codes.count(409) == attempts - 1


class TestTransitions:

    def _book(self, client, headers, start=None):
        response = client.post(APPOINTMENTS, json=booking("dr-d", "c1", start or at(10)), headers=headers)
        assert response.status_code == 201
        return response.json()["id"]

    def test_complete_flow(self, client, c1, clock, token_for):
        appointment_id = self._book(client, c1)

        early = client.post(f"{APPOINTMENTS}/{appointment_id}/complete", headers=token_for("dr-d", UserRole.DOCTOR))
        assert early.status_code == 409
        assert early.json()["error"] == "InvalidTransition"

        clock.set(at(10, 30))
        done = client.post(f"{APPOINTMENTS}/{appointment_id}/complete", headers=token_for("dr-d", UserRole.DOCTOR))
        assert done.status_code == 200
        assert done.json()["status"] == "completed"

    def test_complete_cancelled(self, client, c1, clock, token_for):
        appointment_id = self._book(client, c1)
        assert client.post(f"{APPOINTMENTS}/{appointment_id}/cancel", headers=c1).status_code == 200

        clock.set(at(11))
        response = client.post(f"{APPOINTMENTS}/{appointment_id}/complete", headers=token_for("dr-d", UserRole.DOCTOR))
        assert response.status_code == 409

    def test_cancel_after_start(self, client, c1, clock, token_for):
        appointment_id = self._book(client, c1)
        clock.set(at(10, 5))

        response = client.post(f"{APPOINTMENTS}/{appointment_id}/cancel", headers=token_for("c1", UserRole.PATIENT))
        assert response.status_code == 409

    def test_cancel_someone_elses(self, client, c1, c2):
        appointment_id = self._book(client, c1)
        response = client.post(f"{APPOINTMENTS}/{appointment_id}/cancel", headers=c2)
        assert response.status_code == 403

    def test_cancel_unknown(self, client, c1):
        response = client.post(f"{APPOINTMENTS}/nope/cancel", headers=c1)
        assert response.status_code == 404


class TestReadEndpoints:

    def test_list_by_practitioner(self, client, admin, c1, c2, token_for):
        client.post(APPOINTMENTS, json=booking("dr-d", "c1", at(10)), headers=admin)
        client.post(APPOINTMENTS, json=booking("dr-d", "c2", at(11)), headers=admin)

        as_doctor = client.get(APPOINTMENTS, params={"practitionerId": "dr-d"}, headers=token_for("dr-d", UserRole.DOCTOR))
        assert as_doctor.status_code == 200
        assert len(as_doctor.json()) == 2

        as_patient = client.get(APPOINTMENTS, params={"practitionerId": "dr-d"}, headers=c2)
        assert [a["clientId"] for a in as_patient.json()] == ["c2"]

        as_other_doctor = client.get(APPOINTMENTS, params={"practitionerId": "dr-d"}, headers=token_for("dr-e", UserRole.DOCTOR))
        assert as_other_doctor.json() == []

    def test_list_requires_credential(self, client):
        assert client.get(APPOINTMENTS).status_code == 401

    def test_get_one(self, client, c1, c2):
        created = client.post(APPOINTMENTS, json=booking("dr-d", "c1", at(10)), headers=c1).json()

        assert client.get(f"{APPOINTMENTS}/{created['id']}", headers=c1).json() == created
        assert client.get(f"{APPOINTMENTS}/{created['id']}", headers=c2).status_code == 403

    def test_free_slots(self, client, c1):
        client.post(APPOINTMENTS, json=booking("dr-e", "c1", at(9), 60), headers=c1)

        response = client.get(
            "/api/v1/practitioners/dr-e/free-slots",
            params={"date": at(0).date().isoformat(), "durationMinutes": 60},
            headers=c1,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["practitionerId"] == "dr-e"
        assert [slot["start"] for slot in data["slots"]] == ["2030-01-07T10:00:00", "2030-01-07T11:00:00"]


class TestServiceEndpoints:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert "X-Process-Time" in response.headers

    def test_info(self, client):
        assert client.get("/api/v1/info").json()["endpoints"]["appointments"] == "/api/v1/appointments"
