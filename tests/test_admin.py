from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from factories import auth_headers, make_book, make_checkout, make_user
from smart_library.models import StaffAction, StaffLog, User, UserRole

NEW_BOOK = {
    "title": "The Left Hand of Darkness",
    "isbn": "9780441478125",
    "publisher": "Ace",
    "genre": "Science Fiction",
    "pages": 304,
    "totalCopies": 3,
    "authors": ["Ursula K. Le Guin"],
}


def test_admin_routes_require_staff(client: TestClient, db: Session):
    reader = make_user(db, "reader")

    anonymous = client.post("/api/admin/books", json=NEW_BOOK)
    assert anonymous.status_code == 401

    forbidden = client.post("/api/admin/books", json=NEW_BOOK, headers=auth_headers(reader))
    assert forbidden.status_code == 403
    assert forbidden.json()["detail"]["code"] == "insufficient_permissions"


def test_add_book_and_duplicate_isbn_grows_inventory(client: TestClient, db: Session):
    staff = make_user(db, "librarian", UserRole.STAFF)
    headers = auth_headers(staff)

    created = client.post("/api/admin/books", json=NEW_BOOK, headers=headers)
    assert created.status_code == 201
    book = created.json()["book"]
    assert book["authors"] == ["Ursula K. Le Guin"]
    assert book["totalCopies"] == 3
    assert book["availableCopies"] == 3

    again = client.post("/api/admin/books", json={**NEW_BOOK, "totalCopies": 2}, headers=headers)
    assert again.status_code == 200
    assert again.json()["message"] == "Existing book inventory increased"
    assert again.json()["book"]["id"] == book["id"]
    assert again.json()["book"]["totalCopies"] == 5
    assert again.json()["book"]["availableCopies"] == 5

    actions = [log.action_type for log in db.scalars(select(StaffLog).order_by(StaffLog.id))]
    assert actions == [StaffAction.ADD_BOOK, StaffAction.UPDATE_INVENTORY]


def test_add_book_validation(client: TestClient, db: Session):
    staff = make_user(db, "librarian", UserRole.STAFF)

    response = client.post(
        "/api/admin/books",
        json={**NEW_BOOK, "totalCopies": 0, "authors": []},
        headers=auth_headers(staff),
    )
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "validation_error"


def test_update_book_records_old_and_new_values(client: TestClient, db: Session):
    staff = make_user(db, "librarian", UserRole.STAFF)
    book = make_book(db, "Draft Title", genre="Drama")

    response = client.put(
        f"/api/admin/books/{book.id}",
        json={"title": "Final Title", "authors": ["New Author", "Second Author"]},
        headers=auth_headers(staff),
    )
    assert response.status_code == 200
    assert response.json()["book"]["title"] == "Final Title"
    assert response.json()["book"]["authors"] == ["New Author", "Second Author"]

    log = db.scalars(select(StaffLog).where(StaffLog.action_type == StaffAction.UPDATE_BOOK)).one()
    assert log.old_values["title"] == "Draft Title"
    assert log.new_values["title"] == "Final Title"

    empty = client.put(f"/api/admin/books/{book.id}", json={}, headers=auth_headers(staff))
    assert empty.status_code == 400
    assert empty.json()["detail"]["code"] == "no_changes"


def test_update_book_with_only_null_required_fields_is_rejected(client: TestClient, db: Session):
    staff = make_user(db, "librarian", UserRole.STAFF)
    book = make_book(db, "Steady Title")

    response = client.put(
        f"/api/admin/books/{book.id}",
        json={"title": None, "language": None},
        headers=auth_headers(staff),
    )
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "no_changes"

    assert db.scalars(select(StaffLog)).all() == []
    db.refresh(book)
    assert book.title == "Steady Title"


def test_inventory_cannot_drop_below_checked_out(client: TestClient, db: Session):
    staff = make_user(db, "librarian", UserRole.STAFF)
    book = make_book(db, "Dune", copies=4)
    for name in ("ann", "ben", "cat"):
        make_checkout(db, make_user(db, name), book)
    headers = auth_headers(staff)

    rejected = client.put(f"/api/admin/books/{book.id}/inventory", json={"totalCopies": 2}, headers=headers)
    assert rejected.status_code == 409
    assert rejected.json()["detail"]["code"] == "copies_checked_out"

    accepted = client.put(f"/api/admin/books/{book.id}/inventory", json={"totalCopies": 6}, headers=headers)
    assert accepted.status_code == 200
    body = accepted.json()
    assert body["previousTotalCopies"] == 4
    assert body["previousAvailableCopies"] == 1
    assert body["book"]["totalCopies"] == 6
    assert body["book"]["availableCopies"] == 3

    db.refresh(book)
    assert book.total_copies - book.available_copies == 3


def test_retire_book(client: TestClient, db: Session):
    staff = make_user(db, "librarian", UserRole.STAFF)
    reader = make_user(db, "reader")
    busy = make_book(db, "Busy")
    idle = make_book(db, "Idle")
    make_checkout(db, reader, busy)
    headers = auth_headers(staff)

    blocked = client.put(f"/api/admin/books/{busy.id}/retire", headers=headers)
    assert blocked.status_code == 409
    assert blocked.json()["detail"]["code"] == "active_checkouts"

    retired = client.delete(f"/api/admin/books/{idle.id}", headers=headers)
    assert retired.status_code == 200
    assert retired.json()["book"]["isActive"] is False
    assert retired.json()["book"]["availableCopies"] == 0

    twice = client.put(f"/api/admin/books/{idle.id}/retire", headers=headers)
    assert twice.status_code == 404

    catalog = client.get("/api/books").json()
    assert [row["title"] for row in catalog["books"]] == ["Busy"]


def test_reports(client: TestClient, db: Session):
    staff = make_user(db, "librarian", UserRole.STAFF)
    ann = make_user(db, "ann")
    ben = make_user(db, "ben")
    popular = make_book(db, "Popular", copies=10)
    scarce = make_book(db, "Scarce", copies=10, available=1)
    make_checkout(db, ann, popular)
    make_checkout(db, ben, popular)
    make_checkout(db, ann, make_book(db, "Other"))
    headers = auth_headers(staff)

    most_borrowed = client.get("/api/admin/reports", params={"type": "most_borrowed"}, headers=headers)
    assert most_borrowed.status_code == 200
    first = most_borrowed.json()["results"][0]
    assert first["title"] == "Popular"
    assert first["checkoutCount"] == 2

    readers = client.get("/api/admin/reports", params={"type": "top_readers"}, headers=headers).json()
    assert [(row["username"], row["totalCheckouts"]) for row in readers["results"]] == [("ann", 2), ("ben", 1)]

    low = client.get("/api/admin/reports", params={"type": "low_availability"}, headers=headers).json()
    assert [row["bookId"] for row in low["results"]] == [scarce.id]
    assert low["results"][0]["availabilityPercentage"] == 10.0

    bad_range = client.get(
        "/api/admin/reports",
        params={"startDate": "2024-05-01", "endDate": "2024-04-01"},
        headers=headers,
    )
    assert bad_range.status_code == 400


def test_staff_logs_filters(client: TestClient, db: Session):
    staff = make_user(db, "librarian", UserRole.STAFF)
    headers = auth_headers(staff)
    book_id = client.post("/api/admin/books", json=NEW_BOOK, headers=headers).json()["book"]["id"]
    client.put(f"/api/admin/books/{book_id}/inventory", json={"totalCopies": 5}, headers=headers)

    everything = client.get("/api/admin/logs", headers=headers).json()
    assert everything["pagination"]["totalItems"] == 2
    assert everything["logs"][0]["staffName"] == "Librarian Tester"

    inventory_only = client.get(
        "/api/admin/logs",
        params={"actionType": "update_inventory", "targetId": book_id},
        headers=headers,
    ).json()
    assert len(inventory_only["logs"]) == 1
    assert inventory_only["logs"][0]["newValues"]["total_copies"] == 5


def test_admin_user_management(client: TestClient, db: Session):
    admin = make_user(db, "root", UserRole.ADMIN)
    staff = make_user(db, "librarian", UserRole.STAFF)
    reader = make_user(db, "reader")
    headers = auth_headers(admin)

    staff_denied = client.get("/api/admin/users", headers=auth_headers(staff))
    assert staff_denied.status_code == 403

    listing = client.get("/api/admin/users", params={"role": "reader"}, headers=headers).json()
    assert [row["username"] for row in listing["users"]] == ["reader"]

    promoted = client.put(f"/api/admin/users/{reader.id}", json={"role": "staff"}, headers=headers)
    assert promoted.status_code == 200
    assert promoted.json()["user"]["role"] == "staff"
    assert promoted.json()["changes"] == {"role": "staff"}

    db.expire_all()
    assert db.get(User, reader.id).role == UserRole.STAFF

    self_edit = client.put(f"/api/admin/users/{admin.id}", json={"isActive": False}, headers=headers)
    assert self_edit.status_code == 409
    assert self_edit.json()["detail"]["code"] == "cannot_modify_self"

    missing = client.get("/api/admin/users/999", headers=headers)
    assert missing.status_code == 404


def test_deactivated_user_cannot_authenticate(client: TestClient, db: Session):
    admin = make_user(db, "root", UserRole.ADMIN)
    reader = make_user(db, "reader")
    reader_headers = auth_headers(reader)

    client.put(f"/api/admin/users/{reader.id}", json={"isActive": False}, headers=auth_headers(admin))

    response = client.get("/api/auth/profile", headers=reader_headers)
    assert response.status_code == 401
