from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from factories import DEFAULT_PASSWORD, auth_headers, make_user
from smart_library.models import UserRole
from smart_library.security.hash import hash_password, verify_password


def _register(client: TestClient, username: str = "reader1", **overrides):
    payload = {
        "username": username,
        "email": f"{username}@example.com",
        "password": "Str0ngPassword",
        "firstName": "Ada",
        "lastName": "Reader",
    }
    payload.update(overrides)
    return client.post("/api/auth/register", json=payload)


def test_password_hashing_roundtrip():
    password = "s3cureP@ss!"
    hashed = hash_password(password)

    assert hashed != password
    assert verify_password(password, hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password(password, "not-a-bcrypt-hash")


def test_register_returns_tokens_and_reader_role(client: TestClient):
    response = _register(client, role="admin")
    assert response.status_code == 201
    body = response.json()

    assert body["user"]["role"] == "reader"
    assert body["user"]["username"] == "reader1"
    assert "passwordHash" not in body["user"]
    assert body["token"]["accessToken"]
    assert body["token"]["refreshToken"]
    assert body["token"]["tokenType"] == "bearer"


def test_register_rejects_duplicates(client: TestClient):
    assert _register(client).status_code == 201

    same_username = _register(client, email="other@example.com")
    assert same_username.status_code == 409
    assert same_username.json()["detail"]["code"] == "username_exists"

    same_email = _register(client, username="reader2", email="reader1@example.com")
    assert same_email.status_code == 409
    assert same_email.json()["detail"]["code"] == "email_exists"


def test_register_rejects_weak_password(client: TestClient):
    response = _register(client, password="weakpass")
    assert response.status_code == 400
    body = response.json()["detail"]
    assert body["code"] == "validation_error"
    assert body["errors"]


def test_login_with_username_or_email(client: TestClient, db: Session):
    make_user(db, "alice")

    by_username = client.post("/api/auth/login", json={"username": "alice", "password": DEFAULT_PASSWORD})
    assert by_username.status_code == 200
    assert by_username.json()["user"]["email"] == "alice@example.com"

    by_email = client.post("/api/auth/login", json={"username": "alice@example.com", "password": DEFAULT_PASSWORD})
    assert by_email.status_code == 200


def test_login_wrong_password(client: TestClient, db: Session):
    make_user(db, "bob")

    response = client.post("/api/auth/login", json={"username": "bob", "password": "WrongPass1"})
    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "invalid_credentials"


def test_login_inactive_account(client: TestClient, db: Session):
    make_user(db, "sleepy", is_active=False)

    response = client.post("/api/auth/login", json={"username": "sleepy", "password": DEFAULT_PASSWORD})
    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "account_inactive"


def test_profile_requires_token(client: TestClient):
    response = client.get("/api/auth/profile")
    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "not_authenticated"

    garbage = client.get("/api/auth/profile", headers={"Authorization": "Bearer not-a-token"})
    assert garbage.status_code == 401


def test_profile_includes_statistics(client: TestClient, db: Session):
    user = make_user(db, "carol")

    response = client.get("/api/auth/profile", headers=auth_headers(user))
    assert response.status_code == 200
    body = response.json()
    assert body["username"] == "carol"
    assert body["statistics"] == {
        "totalCheckouts": 0,
        "activeCheckouts": 0,
        "lateReturns": 0,
        "totalReviews": 0,
    }


def test_refresh_issues_new_tokens(client: TestClient):
    tokens = _register(client).json()["token"]

    response = client.post("/api/auth/refresh", json={"refreshToken": tokens["refreshToken"]})
    assert response.status_code == 200
    assert response.json()["token"]["accessToken"]

    wrong_type = client.post("/api/auth/refresh", json={"refreshToken": tokens["accessToken"]})
    assert wrong_type.status_code == 401
    assert wrong_type.json()["detail"]["code"] == "invalid_token_type"


def test_update_profile_and_change_password(client: TestClient, db: Session):
    user = make_user(db, "dave")
    headers = auth_headers(user)

    updated = client.put("/api/auth/profile", json={"firstName": "David", "phone": "555-0100"}, headers=headers)
    assert updated.status_code == 200
    assert updated.json()["firstName"] == "David"
    assert updated.json()["phone"] == "555-0100"

    wrong_current = client.post(
        "/api/auth/change-password",
        json={"currentPassword": "Nope12345", "newPassword": "N3wPassword"},
        headers=headers,
    )
    assert wrong_current.status_code == 400
    assert wrong_current.json()["detail"]["code"] == "invalid_password"

    changed = client.post(
        "/api/auth/change-password",
        json={"currentPassword": DEFAULT_PASSWORD, "newPassword": "N3wPassword"},
        headers=headers,
    )
    assert changed.status_code == 200

    login = client.post("/api/auth/login", json={"username": "dave", "password": "N3wPassword"})
    assert login.status_code == 200


def test_update_profile_rejects_taken_email(client: TestClient, db: Session):
    make_user(db, "erin")
    frank = make_user(db, "frank")

    response = client.put("/api/auth/profile", json={"email": "erin@example.com"}, headers=auth_headers(frank))
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "email_exists"


def test_role_gate_blocks_readers(client: TestClient, db: Session):
    reader = make_user(db, "grace")
    staff = make_user(db, "henry", UserRole.STAFF)

    denied = client.get("/api/checkouts/overdue", headers=auth_headers(reader))
    assert denied.status_code == 403
    assert denied.json()["detail"]["code"] == "insufficient_permissions"

    allowed = client.get("/api/checkouts/overdue", headers=auth_headers(staff))
    assert allowed.status_code == 200


def test_logout(client: TestClient, db: Session):
    user = make_user(db, "ivan")
    response = client.post("/api/auth/logout", headers=auth_headers(user))
    assert response.status_code == 200
