from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy import event, select
from sqlalchemy.dialects import mysql
from sqlalchemy.orm import Session

from factories import auth_headers, make_book, make_checkout, make_user
from smart_library.core.settings import get_library_settings
from smart_library.models import Checkout, StaffAction, StaffLog, UserRole
from smart_library.schemas.checkout import BorrowRequest
from smart_library.services.circulation_service import CirculationService


def test_borrow_decrements_available_copies(client: TestClient, db: Session):
    reader = make_user(db, "reader")
    book = make_book(db, "Dune", copies=2)

    response = client.post("/api/checkouts/borrow", json={"bookId": book.id}, headers=auth_headers(reader))
    assert response.status_code == 201
    checkout = response.json()["checkout"]
    assert checkout["bookId"] == book.id
    assert checkout["userId"] == reader.id
    assert checkout["isReturned"] is False
    assert checkout["lateFee"] == 0.0
    assert checkout["book"]["title"] == "Dune"

    db.refresh(book)
    assert book.available_copies == 1
    assert book.total_borrowed == 1


def test_borrow_with_custom_loan_period(client: TestClient, db: Session):
    reader = make_user(db, "reader")
    book = make_book(db, "Dune")

    too_long = client.post(
        "/api/checkouts/borrow",
        json={"bookId": book.id, "loanPeriodDays": 45},
        headers=auth_headers(reader),
    )
    assert too_long.status_code == 400

    response = client.post(
        "/api/checkouts/borrow",
        json={"bookId": book.id, "loanPeriodDays": 7},
        headers=auth_headers(reader),
    )
    assert response.status_code == 201


def test_borrow_unavailable_book_changes_nothing(client: TestClient, db: Session):
    reader = make_user(db, "reader")
    book = make_book(db, "Emma", copies=1, available=0)

    response = client.post("/api/checkouts/borrow", json={"bookId": book.id}, headers=auth_headers(reader))
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "not_available"

    db.refresh(book)
    assert book.available_copies == 0
    assert book.total_borrowed == 0
    assert db.scalars(select(Checkout)).all() == []


def test_borrow_missing_or_retired_book(client: TestClient, db: Session):
    reader = make_user(db, "reader")
    retired = make_book(db, "Old", is_active=False)

    missing = client.post("/api/checkouts/borrow", json={"bookId": 999}, headers=auth_headers(reader))
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "book_not_found"

    response = client.post("/api/checkouts/borrow", json={"bookId": retired.id}, headers=auth_headers(reader))
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "book_retired"


def test_cannot_borrow_same_book_twice(client: TestClient, db: Session):
    reader = make_user(db, "reader")
    book = make_book(db, "Dune", copies=3)
    headers = auth_headers(reader)

    assert client.post("/api/checkouts/borrow", json={"bookId": book.id}, headers=headers).status_code == 201
    second = client.post("/api/checkouts/borrow", json={"bookId": book.id}, headers=headers)
    assert second.status_code == 409
    assert second.json()["detail"]["code"] == "already_borrowed"

    db.refresh(book)
    assert book.available_copies == 2


def test_checkout_limit(client: TestClient, db: Session):
    reader = make_user(db, "reader")
    for index in range(5):
        make_checkout(db, reader, make_book(db, f"Book {index}"))
    extra = make_book(db, "One Too Many")

    response = client.post("/api/checkouts/borrow", json={"bookId": extra.id}, headers=auth_headers(reader))
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "checkout_limit_reached"


def test_borrow_locks_borrower_before_book(db: Session):
    reader = make_user(db, "reader")
    book = make_book(db, "Dune")
    locked_tables = []

    def capture(state):
        sql = str(state.statement.compile(dialect=mysql.dialect()))
        if sql.endswith("FOR UPDATE"):
            locked_tables.append(sql.split(" FROM ")[1].split()[0])

    event.listen(db, "do_orm_execute", capture)
    try:
        CirculationService(db, get_library_settings()).borrow_book(BorrowRequest(book_id=book.id), reader)
    finally:
        event.remove(db, "do_orm_execute", capture)

    assert locked_tables == ["users", "books"]


def test_staff_borrows_on_behalf_of_reader(client: TestClient, db: Session):
    reader = make_user(db, "reader")
    other = make_user(db, "other")
    staff = make_user(db, "librarian", UserRole.STAFF)
    book = make_book(db, "Dune")

    denied = client.post(
        "/api/checkouts/borrow",
        json={"bookId": book.id, "userId": reader.id},
        headers=auth_headers(other),
    )
    assert denied.status_code == 403

    response = client.post(
        "/api/checkouts/borrow",
        json={"bookId": book.id, "userId": reader.id},
        headers=auth_headers(staff),
    )
    assert response.status_code == 201
    assert response.json()["checkout"]["userId"] == reader.id

    log = db.scalars(select(StaffLog)).one()
    assert log.staff_id == staff.id
    assert log.action_type == StaffAction.CHECKOUT_BOOK
    assert log.target_id == book.id


def test_return_restores_exactly_one_copy(client: TestClient, db: Session):
    reader = make_user(db, "reader")
    book = make_book(db, "Dune", copies=2)
    checkout = make_checkout(db, reader, book)
    headers = auth_headers(reader)

    response = client.put(f"/api/checkouts/{checkout.id}/return", headers=headers)
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Book returned successfully"
    assert body["checkout"]["isReturned"] is True
    assert body["checkout"]["isLate"] is False
    assert body["checkout"]["returnDate"] is not None

    db.refresh(book)
    assert book.available_copies == 2

    again = client.put(f"/api/checkouts/{checkout.id}/return", headers=headers)
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "already_returned"
    db.refresh(book)
    assert book.available_copies == 2


def test_late_return_charges_fee(client: TestClient, db: Session):
    reader = make_user(db, "reader")
    book = make_book(db, "Dune")
    checkout = make_checkout(db, reader, book, days_ago=20, due_in_days=14)

    response = client.put(
        f"/api/checkouts/{checkout.id}/return",
        json={"notes": "cover slightly worn"},
        headers=auth_headers(reader),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["checkout"]["isLate"] is True
    assert body["checkout"]["lateFee"] == 6.0
    assert body["checkout"]["notes"] == "cover slightly worn"
    assert "Late fee: 6.00" in body["message"]


def test_only_owner_or_staff_can_return(client: TestClient, db: Session):
    owner = make_user(db, "owner")
    stranger = make_user(db, "stranger")
    staff = make_user(db, "librarian", UserRole.STAFF)
    checkout = make_checkout(db, owner, make_book(db, "Dune"))

    denied = client.put(f"/api/checkouts/{checkout.id}/return", headers=auth_headers(stranger))
    assert denied.status_code == 403
    assert denied.json()["detail"]["code"] == "ownership_required"

    missing = client.put("/api/checkouts/999/return", headers=auth_headers(staff))
    assert missing.status_code == 404

    allowed = client.put(f"/api/checkouts/{checkout.id}/return", headers=auth_headers(staff))
    assert allowed.status_code == 200


def test_user_checkout_history(client: TestClient, db: Session):
    reader = make_user(db, "reader")
    stranger = make_user(db, "stranger")
    make_checkout(db, reader, make_book(db, "Open Loan"))
    make_checkout(db, reader, make_book(db, "Finished"), days_ago=10, returned=True)
    headers = auth_headers(reader)

    everything = client.get(f"/api/checkouts/user/{reader.id}", headers=headers).json()
    assert everything["pagination"]["totalItems"] == 2
    assert everything["checkouts"][0]["book"]["title"] == "Open Loan"

    active = client.get(f"/api/checkouts/user/{reader.id}", params={"status": "active"}, headers=headers).json()
    assert [row["book"]["title"] for row in active["checkouts"]] == ["Open Loan"]

    forbidden = client.get(f"/api/checkouts/user/{reader.id}", headers=auth_headers(stranger))
    assert forbidden.status_code == 403


def test_checkout_detail(client: TestClient, db: Session):
    reader = make_user(db, "reader")
    checkout = make_checkout(db, reader, make_book(db, "Dune"), days_ago=17, due_in_days=14)

    response = client.get(f"/api/checkouts/{checkout.id}", headers=auth_headers(reader))
    assert response.status_code == 200
    body = response.json()
    assert body["borrowerName"] == "Reader Tester"
    assert body["borrowerEmail"] == "reader@example.com"
    assert body["daysOverdue"] == 3


def test_overdue_listing_and_statistics(client: TestClient, db: Session):
    staff = make_user(db, "librarian", UserRole.STAFF)
    reader = make_user(db, "reader")
    late = make_book(db, "Late Book")
    on_time = make_book(db, "On Time Book")
    make_checkout(db, reader, late, days_ago=20, due_in_days=14)
    make_checkout(db, reader, on_time, days_ago=1)
    headers = auth_headers(staff)

    overdue = client.get("/api/checkouts/overdue", headers=headers)
    assert overdue.status_code == 200
    rows = overdue.json()["overdueCheckouts"]
    assert len(rows) == 1
    assert rows[0]["title"] == "Late Book"
    assert rows[0]["daysOverdue"] == 6
    assert rows[0]["currentLateFee"] == 6.0

    stats = client.get("/api/checkouts/statistics", headers=headers)
    assert stats.status_code == 200
    body = stats.json()
    assert body["totalCheckouts"] == 2
    assert body["activeCheckouts"] == 2
    assert body["overdueCheckouts"] == 1
    assert len(body["monthlyTrend"]) == 12
    assert {row["title"] for row in body["mostBorrowed"]} == {"Late Book", "On Time Book"}
