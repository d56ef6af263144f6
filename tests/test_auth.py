from unittest.mock import MagicMock

import jwt

from database import USERS, get_db
from security import create_jwt


class TestRegisterAndLogin:
    def test_register_returns_token_and_user(self, client, db):
        response = client.post("/auth/register", json={
            "username": "newuser",
            "email": "NewUser@Example.com",
            "password": "password123",
            "firstName": "New",
        })
        assert response.status_code == 201
        data = response.json()
        assert data["token"]
        assert data["user"]["username"] == "newuser"
        assert data["user"]["firstName"] == "New"
        assert data["user"]["role"] == "user"
        assert "passwordHash" not in data["user"]
        stored = db[USERS].find_one({"username": "newuser"})
        assert stored["password_hash"] != "password123"
        assert stored["email"] == "newuser@example.com"

    def test_register_duplicate_username(self, client, author):
        response = client.post("/auth/register", json={
            "username": "alice", "email": "other@example.com", "password": "password123",
        })
        assert response.status_code == 409
        assert "already registered" in response.json()["message"]

    def test_register_duplicate_email(self, client, author):
        response = client.post("/auth/register", json={
            "username": "alice2", "email": "alice@example.com", "password": "password123",
        })
        assert response.status_code == 409

    def test_register_validation_errors_are_field_level(self, client):
        response = client.post("/auth/register", json={"username": "x", "email": "bad", "password": "1"})
        assert response.status_code == 422
        body = response.json()
        assert body["message"] == "Validation failed"
        fields = {e["field"] for e in body["errors"]}
        assert {"username", "email", "password"} <= fields

    def test_login_success(self, client, author):
        response = client.post("/auth/login", json={"email": "alice@example.com", "password": "secret123"})
        assert response.status_code == 200
        assert response.json()["user"]["username"] == "alice"

    def test_login_wrong_password(self, client, author):
        response = client.post("/auth/login", json={"email": "alice@example.com", "password": "nope-nope"})
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid credentials"

    def test_login_deactivated_account(self, client, make_user):
        make_user("sleepy", is_active=False)
        response = client.post("/auth/login", json={"email": "sleepy@example.com", "password": "secret123"})
        assert response.status_code == 403


class TestAuthGate:
    def test_me(self, client, author):
        _, headers = author
        response = client.get("/auth/me", headers=headers)
        assert response.status_code == 200
        assert response.json()["user"]["email"] == "alice@example.com"

    def test_missing_header_is_rejected_before_any_database_access(self, app, client):
        fake_db = MagicMock()
        app.dependency_overrides[get_db] = lambda: fake_db
        response = client.get("/auth/me")
        assert response.status_code == 401
        assert response.json()["message"] == "No token, authorization denied"
        assert fake_db.mock_calls == []

    def test_non_bearer_scheme_is_rejected(self, client):
        response = client.get("/auth/me", headers={"Authorization": "Basic abc"})
        assert response.status_code == 401

    def test_expired_token(self, client, author, settings):
        doc, _ = author
        token = create_jwt({"sub": str(doc["_id"])}, settings, minutes=-1)
        response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["message"] == "Token expired"

    def test_forged_token(self, client, author):
        doc, _ = author
        token = jwt.encode({"sub": str(doc["_id"])}, "someone-elses-secret", algorithm="HS256")
        response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_token_of_deleted_user(self, client, db, author):
        doc, headers = author
        db[USERS].delete_one({"_id": doc["_id"]})
        response = client.get("/auth/me", headers=headers)
        assert response.status_code == 401
        assert response.json()["message"] == "Token is not valid"

    def test_deactivated_user_is_refused(self, client, make_user):
        _, headers = make_user("sleepy", is_active=False)
        assert client.get("/auth/me", headers=headers).status_code == 403

    def test_admin_gate_refuses_regular_user(self, client, author):
        _, headers = author
        response = client.get("/admin/stats", headers=headers)
        assert response.status_code == 403
        assert "Admin role required" in response.json()["message"]


class TestProfile:
    def test_update_profile(self, client, author):
        _, headers = author
        response = client.put("/auth/profile", json={"bio": "Writer", "lastName": "Smith"}, headers=headers)
        assert response.status_code == 200
        user = response.json()["user"]
        assert user["bio"] == "Writer"
        assert user["lastName"] == "Smith"

    def test_update_profile_rejects_unknown_fields(self, client, author, db):
        doc, headers = author
        response = client.put("/auth/profile", json={"role": "admin"}, headers=headers)
        assert response.status_code == 422
        assert db[USERS].find_one({"_id": doc["_id"]})["role"] == "user"
