"""Auth: register, login, validation."""
from fastapi.testclient import TestClient


def test_register_success(client: TestClient):
    r = client.post(
        "/auth/register",
        data={
            "email": "new@example.com",
            "password": "secure123",
            "first_name": "New",
            "last_name": "User",
        },
    )
    assert r.status_code == 200
    j = r.json()
    assert j.get("email") == "new@example.com"
    assert j.get("first_name") == "New"
    assert j.get("user_type") == "citizen"
    assert j.get("med_id", "").startswith("CT")


def test_register_doctor_gets_dr_med_id(client: TestClient):
    r = client.post(
        "/auth/register",
        data={"email": "doc@example.com", "password": "doctor123", "user_type": "doctor"},
    )
    assert r.status_code == 200
    assert r.json()["med_id"].startswith("DR")


def test_register_validation(client: TestClient):
    r = client.post(
        "/auth/register",
        data={"email": "bad", "password": "123"},
    )
    assert r.status_code == 422
    assert r.json().get("status_code") == 422


def test_register_short_password(client: TestClient):
    r = client.post(
        "/auth/register",
        data={"email": "short@example.com", "password": "123"},
    )
    assert r.status_code == 422
    assert "6 characters" in r.json()["error"]


def test_register_duplicate_email(client: TestClient):
    data = {"email": "dup@example.com", "password": "dup123456"}
    assert client.post("/auth/register", data=data).status_code == 200
    r = client.post("/auth/register", data=data)
    assert r.status_code == 400
    assert "already registered" in r.json()["error"]


def test_login_success(client: TestClient):
    client.post(
        "/auth/register",
        data={"email": "login@example.com", "password": "pass123456"},
    )
    r = client.post(
        "/auth/login",
        data={"email": "login@example.com", "password": "pass123456"},
    )
    assert r.status_code == 200
    assert "access_token" in r.json()
    assert r.json().get("token_type") == "bearer"


def test_login_wrong_password(client: TestClient):
    client.post(
        "/auth/register",
        data={"email": "wrong@example.com", "password": "right123"},
    )
    r = client.post(
        "/auth/login",
        data={"email": "wrong@example.com", "password": "wrongpass"},
    )
    assert r.status_code == 401


def test_me_requires_auth(client: TestClient):
    r = client.get("/auth/me")
    assert r.status_code == 401
    assert "request_id" in r.json()


def test_me_rejects_garbage_token(client: TestClient):
    r = client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_me_with_token(client: TestClient, auth_headers: dict):
    r = client.get("/auth/me", headers=auth_headers)
    assert r.status_code == 200
    assert r.json().get("email") == "test@example.com"
