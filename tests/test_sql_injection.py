from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from factories import make_book, make_user
from smart_library.crud.user import get_user_by_email, get_user_by_login, get_user_credentials_raw

INJECTION = "' OR 1=1; --"


@pytest.fixture()
def reader(db: Session):
    return make_user(db, "reader")


def test_get_user_by_email_returns_expected_user(db: Session, reader):
    user = get_user_by_email("reader@example.com", db)
    assert user is not None
    assert user.id == reader.id


def test_get_user_by_email_rejects_sql_injection_attempt(db: Session, reader):
    with pytest.raises(ValueError):
        get_user_by_email(INJECTION, db)


def test_raw_sql_execution_uses_bound_parameters(db: Session, reader):
    credentials = get_user_credentials_raw("reader@example.com", db)
    assert credentials is not None
    assert credentials["username"] == "reader"

    with pytest.raises(ValueError):
        get_user_credentials_raw(INJECTION, db)


def test_login_identifier_is_bound_not_interpolated(db: Session, reader):
    assert get_user_by_login(INJECTION, db) is None
    assert get_user_by_login("  reader  ", db).id == reader.id


def test_login_with_injected_username_is_rejected(client: TestClient, reader):
    response = client.post("/api/auth/login", json={"username": INJECTION, "password": INJECTION})
    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "invalid_credentials"


def test_catalog_search_treats_input_as_text(client: TestClient, db: Session):
    make_book(db, "Dune")

    response = client.get("/api/books", params={"search": "%' OR '1'='1"})
    assert response.status_code == 200
    assert response.json()["books"] == []
