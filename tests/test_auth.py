import pytest
from datetime import datetime

from app.core.database import SessionLocal
from app.core.security import UserRole, get_password_hash
from app.models.account import Account

test_login_data = {
    "email": "patient@example.com",
    "password": "TestPassword123"
}

@pytest.fixture
def accounts(test_db):
    with SessionLocal() as db:
        db.add_all([
            Account(
                email="patient@example.com",
                password_hash=get_password_hash("TestPassword123"),
                role=UserRole.PATIENT,
                subject_id="c1",
            ),
            Account(
                email="inactive@example.com",
                password_hash=get_password_hash("TestPassword123"),
                role=UserRole.DOCTOR,
                subject_id="dr-d",
                is_active=False,
            ),
        ])
        db.commit()

class TestAuthentication:

    def test_login_success(self, client, accounts):
        """Test successful login."""
        response = client.post("/api/v1/auth/token", json=test_login_data)
        assert response.status_code == 200

        data = response.json()
        assert "access_token" in data
        assert data["token_type"] == "bearer"
        assert data["subject"] == "c1"
        assert data["role"] == "patient"
        assert data["expires_in"] == 15 * 60

    def test_login_records_last_login(self, client, accounts):
        client.post("/api/v1/auth/token", json=test_login_data)

        with SessionLocal() as db:
            account = db.query(Account).filter(Account.email == test_login_data["email"]).first()
            assert isinstance(account.last_login, datetime)

    def test_login_invalid_credentials(self, client, accounts):
        """Test login with unknown email."""
        invalid_login = {
            "email": "nonexistent@example.com",
            "password": "wrongpassword"
        }

        response = client.post("/api/v1/auth/token", json=invalid_login)
        assert response.status_code == 401

    def test_login_wrong_password(self, client, accounts):
        """Test login with wrong password."""
        wrong_login = test_login_data.copy()
        wrong_login["password"] = "wrongpassword"

        response = client.post("/api/v1/auth/token", json=wrong_login)
        assert response.status_code == 401
        assert response.json()["error"] == "InvalidCredential"

    def test_login_inactive_account(self, client, accounts):
        response = client.post(
            "/api/v1/auth/token",
            json={"email": "inactive@example.com", "password": "TestPassword123"}
        )
        assert response.status_code == 401

    def test_login_rate_limited(self, client, accounts):
        wrong_login = test_login_data.copy()
        wrong_login["password"] = "wrongpassword"

        codes = [client.post("/api/v1/auth/token", json=wrong_login).status_code for _ in range(11)]
        assert codes[:10] == [401] * 10
        assert codes[10] == 429

    def test_get_current_identity(self, client, accounts):
        """Issued token authenticates against the API."""
        login_response = client.post("/api/v1/auth/token", json=test_login_data)

        token = login_response.json()["access_token"]
        headers = {"Authorization": f"Bearer {token}"}

        response = client.get("/api/v1/auth/me", headers=headers)
        assert response.status_code == 200

        data = response.json()
        assert data["subject"] == "c1"
        assert data["role"] == "patient"

    def test_get_current_identity_invalid_token(self, client):
        """Test get current identity with invalid token."""
        headers = {"Authorization": "Bearer invalid_token"}

        response = client.get("/api/v1/auth/me", headers=headers)
        assert response.status_code == 401

    def test_verify_token(self, client, accounts):
        """Test token verification."""
        login_response = client.post("/api/v1/auth/token", json=test_login_data)

        token = login_response.json()["access_token"]
        headers = {"Authorization": f"Bearer {token}"}

        response = client.post("/api/v1/auth/verify-token", headers=headers)
        assert response.status_code == 200

        data = response.json()
        assert data["valid"] == True
        assert data["subject"] == "c1"

if __name__ == "__main__":
    pytest.main([__file__])
