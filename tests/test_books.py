from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from factories import auth_headers, make_book, make_checkout, make_user
from smart_library.models import UserRole


def test_list_books_hides_retired_and_reports_genres(client: TestClient, db: Session):
    make_book(db, "Dune", genre="Science Fiction")
    make_book(db, "Emma", genre="Classics")
    make_book(db, "Old Almanac", genre="Reference", is_active=False)

    response = client.get("/api/books")
    assert response.status_code == 200
    body = response.json()

    assert [book["title"] for book in body["books"]] == ["Dune", "Emma"]
    assert body["pagination"]["totalItems"] == 2
    assert body["filters"]["availableGenres"] == ["Classics", "Science Fiction"]


def test_list_books_filters(client: TestClient, db: Session):
    make_book(db, "Dune", genre="Science Fiction", authors=("Frank Herbert",))
    make_book(db, "Emma", genre="Classics", authors=("Jane Austen",), copies=1, available=0)
    make_book(db, "Persuasion", genre="Classics", authors=("Jane Austen",))

    by_author = client.get("/api/books", params={"author": "austen"}).json()
    assert {book["title"] for book in by_author["books"]} == {"Emma", "Persuasion"}

    by_search = client.get("/api/books", params={"search": "herbert"}).json()
    assert [book["title"] for book in by_search["books"]] == ["Dune"]

    by_genre = client.get("/api/books", params={"genre": "Classics", "availableOnly": "true"}).json()
    assert [book["title"] for book in by_genre["books"]] == ["Persuasion"]


def test_list_books_pagination_and_sorting(client: TestClient, db: Session):
    for title in ("Alpha", "Bravo", "Charlie", "Delta", "Echo"):
        make_book(db, title)

    first = client.get("/api/books", params={"page": 1, "limit": 2}).json()
    assert [book["title"] for book in first["books"]] == ["Alpha", "Bravo"]
    assert first["pagination"] == {
        "currentPage": 1,
        "perPage": 2,
        "totalItems": 5,
        "totalPages": 3,
        "hasNext": True,
        "hasPrev": False,
    }

    last = client.get("/api/books", params={"page": 3, "limit": 2}).json()
    assert [book["title"] for book in last["books"]] == ["Echo"]
    assert last["pagination"]["hasNext"] is False

    descending = client.get("/api/books", params={"sortBy": "title", "sortOrder": "desc", "limit": 1}).json()
    assert descending["books"][0]["title"] == "Echo"


def test_list_books_rejects_bad_parameters(client: TestClient):
    response = client.get("/api/books", params={"limit": 1000})
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "validation_error"


def test_book_detail(client: TestClient, db: Session):
    book = make_book(db, "Middlemarch", copies=3, authors=("George Eliot",))
    make_checkout(db, make_user(db, "reader"), book)

    response = client.get(f"/api/books/{book.id}")
    assert response.status_code == 200
    body = response.json()
    assert body["authors"] == ["George Eliot"]
    assert body["totalCopies"] == 3
    assert body["availableCopies"] == 2
    assert body["checkedOutCopies"] == 1
    assert body["availabilityStatus"] == "available"
    assert body["recentReviews"] == []


def test_retired_book_visible_only_to_staff(client: TestClient, db: Session):
    book = make_book(db, "Withdrawn", is_active=False)
    staff = make_user(db, "librarian", UserRole.STAFF)

    anonymous = client.get(f"/api/books/{book.id}")
    assert anonymous.status_code == 404
    assert anonymous.json()["detail"]["code"] == "book_not_found"

    as_staff = client.get(f"/api/books/{book.id}", headers=auth_headers(staff))
    assert as_staff.status_code == 200
    assert as_staff.json()["availabilityStatus"] == "retired"


def test_popular_books_ranked_by_recent_checkouts(client: TestClient, db: Session):
    quiet = make_book(db, "Quiet Book", copies=5)
    busy = make_book(db, "Busy Book", copies=5)
    readers = [make_user(db, f"reader{index}") for index in range(3)]
    for reader in readers:
        make_checkout(db, reader, busy, days_ago=2)
    make_checkout(db, readers[0], quiet, days_ago=2)
    make_checkout(db, readers[1], quiet, days_ago=90, returned=True)

    response = client.get("/api/books/popular", params={"period": "month"})
    assert response.status_code == 200
    body = response.json()
    assert body["timePeriod"] == "month"
    ranking = [(book["title"], book["recentCheckouts"]) for book in body["popularBooks"]]
    assert ranking == [("Busy Book", 3), ("Quiet Book", 1)]

    all_time = client.get("/api/books/popular", params={"period": "all"}).json()
    assert all_time["popularBooks"][1]["recentCheckouts"] == 2
