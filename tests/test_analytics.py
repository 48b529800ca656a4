from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from factories import auth_headers, make_book, make_user
from smart_library.models import UserRole
from smart_library.services.analytics_pipelines import top_books_by_reading_time
from smart_library.services.analytics_service import duration_minutes, engagement_level

SESSION = {
    "bookId": 7,
    "deviceType": "tablet",
    "sessionStart": "2024-03-05T19:00:00Z",
    "sessionEnd": "2024-03-05T19:45:00Z",
    "pagesRead": [10, 11, 12],
    "highlights": [
        {"page": 11, "text": "It was a pleasure to burn.", "color": "yellow", "timestamp": "2024-03-05T19:10:00Z"},
    ],
    "bookmarks": [{"page": 12, "timestamp": "2024-03-05T19:44:00Z"}],
    "readingProgress": {"currentPage": 12, "totalPages": 200, "percentageComplete": 6},
}


def _session(user_id, book_id, device, start, minutes, highlights=(), pages=1, bookmarks=0):
    return {
        "user_id": user_id,
        "book_id": book_id,
        "device_type": device,
        "session_start": start,
        "session_end": start + timedelta(minutes=minutes) if minutes is not None else None,
        "session_duration_minutes": minutes,
        "pages_read": list(range(1, pages + 1)),
        "highlights": [
            {"page": page, "text": text, "color": "yellow", "timestamp": start, "note": None}
            for page, text in highlights
        ],
        "bookmarks": [{"page": 1, "timestamp": start} for _ in range(bookmarks)],
        "reading_progress": {},
    }


@pytest.mark.parametrize(
    ("score", "level"),
    [(150, "High"), (100, "High"), (99, "Medium"), (50, "Medium"), (20, "Low"), (19, "Very Low"), (0, "Very Low")],
)
def test_engagement_level_thresholds(score, level):
    assert engagement_level(score) == level


def test_duration_minutes():
    start = datetime(2024, 1, 1, 10, 0)
    assert duration_minutes(start, start + timedelta(minutes=31, seconds=40)) == 32
    assert duration_minutes(start, None) is None


def test_log_reading_session(client: TestClient, db: Session, reading_sessions):
    reader = make_user(db, "reader")

    response = client.post("/api/analytics/reading-sessions", json=SESSION, headers=auth_headers(reader))
    assert response.status_code == 201
    session = response.json()["session"]
    assert session["userId"] == reader.id
    assert session["sessionDurationMinutes"] == 45
    assert session["readingProgress"]["percentage_complete"] == 6
    assert reading_sessions.count_documents({"user_id": reader.id}) == 1


def test_log_session_validation(client: TestClient, db: Session):
    reader = make_user(db, "reader")
    headers = auth_headers(reader)

    anonymous = client.post("/api/analytics/reading-sessions", json=SESSION)
    assert anonymous.status_code == 401

    bad_device = client.post("/api/analytics/reading-sessions", json={**SESSION, "deviceType": "toaster"}, headers=headers)
    assert bad_device.status_code == 400

    backwards = client.post(
        "/api/analytics/reading-sessions",
        json={**SESSION, "sessionEnd": "2024-03-05T18:00:00Z"},
        headers=headers,
    )
    assert backwards.status_code == 400

    mixed_backwards = client.post(
        "/api/analytics/reading-sessions",
        json={**SESSION, "sessionStart": "2024-03-05T19:00:00", "sessionEnd": "2024-03-05T18:30:00Z"},
        headers=headers,
    )
    assert mixed_backwards.status_code == 400
    assert mixed_backwards.json()["detail"]["code"] == "validation_error"


def test_log_session_with_naive_start_and_aware_end(client: TestClient, db: Session, reading_sessions):
    reader = make_user(db, "reader")

    response = client.post(
        "/api/analytics/reading-sessions",
        json={**SESSION, "sessionStart": "2024-03-05T19:00:00", "sessionEnd": "2024-03-05T19:45:00Z"},
        headers=auth_headers(reader),
    )
    assert response.status_code == 201
    assert response.json()["session"]["sessionDurationMinutes"] == 45


def test_update_reading_session(client: TestClient, db: Session):
    owner = make_user(db, "owner")
    stranger = make_user(db, "stranger")
    open_session = {key: value for key, value in SESSION.items() if key != "sessionEnd"}
    created = client.post("/api/analytics/reading-sessions", json=open_session, headers=auth_headers(owner))
    session_id = created.json()["session"]["id"]
    assert created.json()["session"]["sessionDurationMinutes"] is None

    forbidden = client.put(
        f"/api/analytics/reading-sessions/{session_id}",
        json={"sessionEnd": "2024-03-05T20:00:00Z"},
        headers=auth_headers(stranger),
    )
    assert forbidden.status_code == 403

    updated = client.put(
        f"/api/analytics/reading-sessions/{session_id}",
        json={"sessionEnd": "2024-03-05T20:00:00Z", "pagesRead": [10, 11, 12, 13]},
        headers=auth_headers(owner),
    )
    assert updated.status_code == 200
    body = updated.json()["session"]
    assert body["sessionDurationMinutes"] == 60
    assert body["pagesRead"] == [10, 11, 12, 13]

    invalid = client.put(
        "/api/analytics/reading-sessions/not-an-object-id",
        json={"pagesRead": [1]},
        headers=auth_headers(owner),
    )
    assert invalid.status_code == 400
    assert invalid.json()["detail"]["code"] == "invalid_session_id"

    missing = client.put(
        "/api/analytics/reading-sessions/65f0c0ffee0000000000beef",
        json={"pagesRead": [1]},
        headers=auth_headers(owner),
    )
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "session_not_found"


def test_reports_require_staff(client: TestClient, db: Session):
    reader = make_user(db, "reader")

    response = client.get("/api/analytics/user-engagement", headers=auth_headers(reader))
    assert response.status_code == 403


def test_user_engagement(client: TestClient, db: Session, reading_sessions):
    staff = make_user(db, "librarian", UserRole.STAFF)
    start = datetime(2024, 3, 1, 9, 0)
    reading_sessions.insert_many(
        [
            _session(1, 10, "mobile", start, 30, highlights=[(3, "a"), (4, "b")], pages=5, bookmarks=1),
            _session(1, 11, "tablet", start + timedelta(days=1), 60, pages=8),
            _session(2, 10, "mobile", start, 15),
            _session(2, 10, "mobile", start + timedelta(days=2), None),
        ]
    )

    response = client.get("/api/analytics/user-engagement", headers=auth_headers(staff))
    assert response.status_code == 200
    rows = response.json()["userEngagement"]
    assert [row["userId"] for row in rows] == [1, 2]

    top = rows[0]
    # 2 sessions * 2 + 2 books * 5 + 2 highlights * 3 + 1 bookmark * 2
    assert top["engagementScore"] == 22
    assert top["engagementLevel"] == "Low"
    assert top["totalReadingTimeMinutes"] == 90
    assert top["averageSessionDurationMinutes"] == 45.0
    assert top["totalPagesRead"] == 13
    assert top["deviceDistribution"] == {"mobile": 1, "tablet": 1}
    assert rows[1]["totalSessions"] == 1


def test_book_popularity_and_top_books(client: TestClient, reading_sessions):
    start = datetime(2024, 3, 1, 9, 0)
    reading_sessions.insert_many(
        [
            _session(1, 10, "mobile", start, 30),
            _session(2, 10, "desktop", start, 20),
            _session(3, 10, "desktop", start, 10),
            _session(1, 11, "tablet", start, 90),
        ]
    )

    by_time = client.get("/api/analytics/book-popularity", params={"metric": "reading_time"}).json()
    assert by_time["metricUsed"] == "reading_time"
    assert [row["bookId"] for row in by_time["bookPopularity"]] == [11, 10]
    assert by_time["bookPopularity"][0]["hoursRead"] == 1.5

    by_readers = client.get("/api/analytics/book-popularity", params={"metric": "unique_readers"}).json()
    first = by_readers["bookPopularity"][0]
    assert first["bookId"] == 10
    assert first["uniqueReadersCount"] == 3
    assert first["deviceDistribution"] == {"mobile": 1, "desktop": 2}

    top = client.get("/api/analytics/top-books", params={"limit": 1}).json()
    assert [row["bookId"] for row in top["topBooks"]] == [11]


def test_top_books_pipeline_orders_by_reading_time():
    stages = top_books_by_reading_time(3)
    assert stages[-2] == {"$sort": {"total_reading_time": -1, "_id": 1}}
    assert stages[-1] == {"$limit": 3}


def test_reading_patterns(client: TestClient, db: Session, reading_sessions):
    staff = make_user(db, "librarian", UserRole.STAFF)
    headers = auth_headers(staff)
    monday_evening = datetime(2024, 3, 4, 20, 15)
    reading_sessions.insert_many(
        [
            _session(1, 10, "mobile", monday_evening, 30),
            _session(2, 10, "mobile", monday_evening, 10),
            _session(1, 11, "e-reader", monday_evening - timedelta(hours=12), 50),
        ]
    )

    devices = client.get("/api/analytics/reading-patterns", params={"type": "device_usage"}, headers=headers).json()
    assert devices["patternType"] == "device_usage"
    assert [(row["key"], row["totalSessions"]) for row in devices["readingPatterns"]] == [("mobile", 2), ("e-reader", 1)]
    assert devices["readingPatterns"][0]["uniqueUsersCount"] == 2

    hours = client.get("/api/analytics/reading-patterns", params={"type": "time_of_day"}, headers=headers).json()
    assert [row["label"] for row in hours["readingPatterns"]] == ["08:00", "20:00"]

    weekdays = client.get("/api/analytics/reading-patterns", params={"type": "day_of_week"}, headers=headers).json()
    assert [row["label"] for row in weekdays["readingPatterns"]] == ["Monday"]

    invalid = client.get("/api/analytics/reading-patterns", params={"type": "lunar"}, headers=headers)
    assert invalid.status_code == 400


def test_highlight_reports(client: TestClient, db: Session, reading_sessions):
    staff = make_user(db, "librarian", UserRole.STAFF)
    headers = auth_headers(staff)
    start = datetime(2024, 3, 1, 9, 0)
    quote = "So it goes."
    reading_sessions.insert_many(
        [
            _session(1, 10, "mobile", start, 30, highlights=[(5, quote), (9, "Listen:")]),
            _session(2, 10, "mobile", start, 30, highlights=[(5, quote)]),
            _session(3, 11, "tablet", start, 30, highlights=[(2, "Call me Ishmael.")]),
        ]
    )

    most = client.get("/api/analytics/most-highlighted", headers=headers).json()["mostHighlightedBooks"]
    assert most[0]["bookId"] == 10
    assert most[0]["totalHighlights"] == 3
    assert most[0]["uniqueUsersCount"] == 2
    assert most[0]["highlightsPerUser"] == 1.5
    assert len(most[0]["topHighlights"]) == 3

    popular = client.get("/api/analytics/highlights", params={"bookId": 10}, headers=headers).json()
    assert popular["bookFilter"] == 10
    first = popular["popularHighlights"][0]
    assert first["highlightText"] == quote
    assert first["highlightCount"] == 2
    assert first["popularityScore"] == 4
    assert {row["bookId"] for row in popular["popularHighlights"]} == {10}


def test_session_averages(client: TestClient, db: Session, reading_sessions):
    staff = make_user(db, "librarian", UserRole.STAFF)
    start = datetime(2024, 3, 1, 9, 0)
    reading_sessions.insert_many(
        [
            _session(1, 10, "mobile", start, 30),
            _session(1, 11, "mobile", start + timedelta(days=1), 90),
            _session(1, 11, "mobile", start + timedelta(days=2), None),
        ]
    )

    response = client.get("/api/analytics/session-averages", params={"userId": 1}, headers=auth_headers(staff))
    rows = response.json()["sessionAverages"]
    assert len(rows) == 1
    assert rows[0]["totalSessions"] == 2
    assert rows[0]["averageSessionDurationMinutes"] == 60.0
    assert rows[0]["longestSessionMinutes"] == 90
    assert rows[0]["shortestSessionMinutes"] == 30
    assert rows[0]["uniqueBooksCount"] == 2


def test_dashboard(client: TestClient, db: Session, reading_sessions):
    staff = make_user(db, "librarian", UserRole.STAFF)
    reader = make_user(db, "reader")
    today_session = {key: value for key, value in SESSION.items() if key not in {"sessionStart", "sessionEnd"}}
    client.post("/api/analytics/reading-sessions", json=today_session, headers=auth_headers(reader))
    reading_sessions.insert_one(_session(9, 3, "desktop", datetime(2023, 1, 1, 12, 0), 20))

    response = client.get("/api/analytics/dashboard", headers=auth_headers(staff))
    assert response.status_code == 200
    body = response.json()
    assert body["summary"]["totalSessions"] == 2
    assert body["summary"]["activeSessions"] == 1
    assert body["summary"]["sessionsToday"] == 1
    assert body["summary"]["uniqueUsersToday"] == 1
    assert body["deviceDistribution"] == {"tablet": 1, "desktop": 1}
    assert body["recentHighlights"][0]["highlightText"] == "It was a pleasure to burn."


def test_reading_history(client: TestClient, db: Session, reading_sessions):
    reader = make_user(db, "reader")
    stranger = make_user(db, "stranger")
    book = make_book(db, "Fahrenheit 451")
    start = datetime(2024, 3, 1, 9, 0)
    first = _session(reader.id, book.id, "mobile", start, 20, pages=4)
    first["reading_progress"] = {"current_page": 4, "percentage_complete": 10}
    second = _session(reader.id, book.id, "mobile", start + timedelta(days=1), 40, pages=6)
    second["reading_progress"] = {"current_page": 10, "percentage_complete": 25}
    reading_sessions.insert_many([second, first])

    response = client.get(f"/api/users/{reader.id}/reading-history", headers=auth_headers(reader))
    assert response.status_code == 200
    body = response.json()
    assert body["books"] == [
        {
            "bookId": book.id,
            "title": "Fahrenheit 451",
            "totalSessions": 2,
            "totalReadingTimeMinutes": 60,
            "totalPagesRead": 10,
            "totalHighlights": 0,
            "lastSession": "2024-03-02T09:00:00Z",
            "latestProgress": 25.0,
        }
    ]
    assert [session["sessionDurationMinutes"] for session in body["recentSessions"]] == [40, 20]

    forbidden = client.get(f"/api/users/{reader.id}/reading-history", headers=auth_headers(stranger))
    assert forbidden.status_code == 403
