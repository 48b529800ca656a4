from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from factories import auth_headers, make_book, make_checkout, make_user
from smart_library.models import UserRole


def test_dashboard_summarises_current_loans(client: TestClient, db: Session):
    reader = make_user(db, "reader")
    make_checkout(db, reader, make_book(db, "Overdue Mystery", genre="Mystery"), days_ago=20, due_in_days=14)
    make_checkout(db, reader, make_book(db, "Fresh Mystery", genre="Mystery"))
    make_checkout(db, reader, make_book(db, "Old Poems", genre="Poetry"), days_ago=40, returned=True)

    response = client.get(f"/api/users/{reader.id}/dashboard", headers=auth_headers(reader))
    assert response.status_code == 200
    body = response.json()

    assert body["user"]["username"] == "reader"
    assert body["statistics"]["totalCheckouts"] == 3
    assert body["statistics"]["activeCheckouts"] == 2
    assert [row["book"]["title"] for row in body["currentCheckouts"]] == ["Overdue Mystery", "Fresh Mystery"]
    assert body["overdueCount"] == 1
    assert body["favoriteGenres"][0] == {"genre": "Mystery", "count": 2}


def test_dashboard_forbidden_for_other_readers(client: TestClient, db: Session):
    reader = make_user(db, "reader")
    stranger = make_user(db, "stranger")
    staff = make_user(db, "librarian", UserRole.STAFF)

    forbidden = client.get(f"/api/users/{reader.id}/dashboard", headers=auth_headers(stranger))
    assert forbidden.status_code == 403
    assert forbidden.json()["detail"]["code"] == "ownership_required"

    as_staff = client.get(f"/api/users/{reader.id}/dashboard", headers=auth_headers(staff))
    assert as_staff.status_code == 200

    missing = client.get("/api/users/999/dashboard", headers=auth_headers(staff))
    assert missing.status_code == 404


def test_recommendations_prefer_favourite_genre(client: TestClient, db: Session):
    reader = make_user(db, "reader")
    make_checkout(db, reader, make_book(db, "Read Fantasy", genre="Fantasy"), returned=True)
    make_book(db, "Unread Fantasy", genre="Fantasy", average_rating=3.5)
    make_book(db, "Acclaimed Memoir", genre="Memoir", average_rating=4.8, total_reviews=12)
    make_book(db, "Obscure Memoir", genre="Memoir", average_rating=4.9, total_reviews=1)
    make_book(db, "Gone Fantasy", genre="Fantasy", copies=1, available=0)

    response = client.get(f"/api/users/{reader.id}/recommendations", headers=auth_headers(reader))
    assert response.status_code == 200
    body = response.json()

    assert body["favoriteGenres"] == ["Fantasy"]
    picks = [(row["book"]["title"], row["reason"]) for row in body["recommendations"]]
    assert picks == [("Unread Fantasy", "favorite_genre"), ("Acclaimed Memoir", "highly_rated")]


def test_user_checkouts_and_reviews_routes(client: TestClient, db: Session):
    reader = make_user(db, "reader")
    make_checkout(db, reader, make_book(db, "Dune"))
    headers = auth_headers(reader)

    checkouts = client.get(f"/api/users/{reader.id}/checkouts", headers=headers)
    assert checkouts.status_code == 200
    assert checkouts.json()["pagination"]["totalItems"] == 1

    reviews = client.get(f"/api/users/{reader.id}/reviews", headers=headers)
    assert reviews.status_code == 200
    assert reviews.json()["reviews"] == []

    profile = client.get("/api/users/profile", headers=headers)
    assert profile.json()["statistics"]["activeCheckouts"] == 1
