from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from bson import ObjectId
from fastapi import Depends, HTTPException, status
from pymongo import ReturnDocument
from pymongo.collection import Collection

from smart_library.db.mongo import get_reading_sessions_collection
from smart_library.models.user import User
from smart_library.schemas.analytics import (
    AnalyticsDashboard,
    BookReadingTime,
    DashboardSummary,
    HighlightedBook,
    HighlightSample,
    PatternType,
    PopularHighlight,
    PopularityMetric,
    ReadingHistoryBook,
    ReadingHistoryResponse,
    ReadingPattern,
    ReadingSessionCreate,
    ReadingSessionOut,
    ReadingSessionUpdate,
    RecentHighlight,
    UserEngagement,
    UserSessionAverages,
)
from smart_library.services import analytics_pipelines as pipelines

logger = logging.getLogger(__name__)

WEEKDAYS = {1: "Sunday", 2: "Monday", 3: "Tuesday", 4: "Wednesday", 5: "Thursday", 6: "Friday", 7: "Saturday"}
ENGAGEMENT_LEVELS = ((100, "High"), (50, "Medium"), (20, "Low"))
TOP_HIGHLIGHT_SAMPLES = 3


def _hour_label(key: int) -> str:
    return f"{key:02d}:00"


def _weekday_label(key: int) -> str:
    return WEEKDAYS.get(key, str(key))


_PATTERNS = {
    "time_of_day": (pipelines.reading_patterns_by_hour, _hour_label),
    "day_of_week": (pipelines.reading_patterns_by_weekday, _weekday_label),
    "device_usage": (pipelines.reading_patterns_by_device, str),
}


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _round(value: Optional[float], digits: int = 2) -> float:
    return round(float(value or 0), digits)


def _int(value: Any) -> int:
    return int(value or 0)


def engagement_level(score: int) -> str:
    for threshold, label in ENGAGEMENT_LEVELS:
        if score >= threshold:
            return label
    return "Very Low"


def duration_minutes(start: datetime, end: Optional[datetime]) -> Optional[int]:
    if end is None:
        return None
    seconds = (_as_utc(end) - _as_utc(start)).total_seconds()
    return max(0, round(seconds / 60))


def _with_utc_timestamps(items: list[dict]) -> list[dict]:
    return [{**item, "timestamp": _as_utc(item.get("timestamp"))} for item in items or []]


def _session_out(doc: dict) -> ReadingSessionOut:
    return ReadingSessionOut(
        id=str(doc["_id"]),
        user_id=doc["user_id"],
        book_id=doc["book_id"],
        device_type=doc["device_type"],
        session_start=_as_utc(doc["session_start"]),
        session_end=_as_utc(doc.get("session_end")),
        session_duration_minutes=doc.get("session_duration_minutes"),
        device_info=doc.get("device_info") or {},
        pages_read=doc.get("pages_read") or [],
        highlights=_with_utc_timestamps(doc.get("highlights")),
        bookmarks=_with_utc_timestamps(doc.get("bookmarks")),
        reading_progress=doc.get("reading_progress") or {},
        location=doc.get("location") or {},
        quality_metrics=doc.get("quality_metrics") or {},
        created_at=_as_utc(doc.get("created_at")),
        updated_at=_as_utc(doc.get("updated_at")),
    )


class AnalyticsService:
    """Reading-session capture and the aggregation reports built on it.

    Pipelines live in :mod:`analytics_pipelines`; this class runs them and
    shapes the raw group documents into response models.
    """

    def __init__(self, collection: Collection):
        self.collection = collection

    def _aggregate(self, pipeline: list[dict]) -> list[dict]:
        return list(self.collection.aggregate(pipeline))

    # ---------------------------------------------------------------------- #
    # Sessions
    # ---------------------------------------------------------------------- #
    def log_session(self, payload: ReadingSessionCreate, user: User) -> ReadingSessionOut:
        now = datetime.now(timezone.utc)
        start = _as_utc(payload.session_start) or now
        end = _as_utc(payload.session_end)
        doc = {
            "user_id": user.id,
            "book_id": payload.book_id,
            "device_type": payload.device_type,
            "session_start": start,
            "session_end": end,
            "session_duration_minutes": duration_minutes(start, end),
            "device_info": payload.device_info,
            "pages_read": payload.pages_read,
            "highlights": [highlight.model_dump() for highlight in payload.highlights],
            "bookmarks": [bookmark.model_dump() for bookmark in payload.bookmarks],
            "reading_progress": payload.reading_progress.model_dump() if payload.reading_progress else {},
            "location": payload.location,
            "quality_metrics": payload.quality_metrics,
            "created_at": now,
            "updated_at": now,
        }
        result = self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        logger.info("Reading session %s logged for user id=%s book id=%s", result.inserted_id, user.id, payload.book_id)
        return _session_out(doc)

    def update_session(self, session_id: str, payload: ReadingSessionUpdate, user: User) -> ReadingSessionOut:
        if not ObjectId.is_valid(session_id):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "invalid_session_id", "message": "Session id is not valid."},
            )
        object_id = ObjectId(session_id)
        existing = self.collection.find_one({"_id": object_id})
        if not existing:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "session_not_found", "message": "Reading session not found."},
            )
        if existing["user_id"] != user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": "ownership_required", "message": "You can only update your own reading sessions."},
            )

        changes = {key: value for key, value in payload.model_dump(exclude_unset=True).items() if value is not None}
        if not changes:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "no_changes", "message": "No session fields to update."},
            )
        if "session_end" in changes:
            end = _as_utc(changes["session_end"])
            if end < _as_utc(existing["session_start"]):
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail={"code": "invalid_session_window", "message": "sessionEnd must not be earlier than sessionStart."},
                )
            changes["session_end"] = end
            changes["session_duration_minutes"] = duration_minutes(existing["session_start"], end)
        changes["updated_at"] = datetime.now(timezone.utc)

        updated = self.collection.find_one_and_update(
            {"_id": object_id},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        logger.info("Reading session %s updated by user id=%s", session_id, user.id)
        return _session_out(updated)

    # ---------------------------------------------------------------------- #
    # Reports
    # ---------------------------------------------------------------------- #
    def session_averages(self, user_id: Optional[int] = None) -> list[UserSessionAverages]:
        return [
            UserSessionAverages(
                user_id=row["_id"],
                total_sessions=row["total_sessions"],
                total_reading_time_minutes=_int(row["total_reading_time"]),
                hours_read=_round(_int(row["total_reading_time"]) / 60),
                average_session_duration_minutes=_round(row["average_session_duration"]),
                longest_session_minutes=_int(row["longest_session"]),
                shortest_session_minutes=_int(row["shortest_session"]),
                unique_books_count=row["unique_books_count"],
                total_pages_read=_int(row["total_pages_read"]),
                last_reading_session=_as_utc(row.get("last_reading_session")),
            )
            for row in self._aggregate(pipelines.average_session_time_per_user(user_id))
        ]

    def most_highlighted_books(self, limit: Optional[int] = None) -> list[HighlightedBook]:
        books = []
        for row in self._aggregate(pipelines.most_highlighted_books(limit)):
            samples = zip(row["sample_texts"], row["sample_pages"], row["sample_colors"], row["sample_users"])
            books.append(
                HighlightedBook(
                    book_id=row["_id"],
                    total_highlights=row["total_highlights"],
                    unique_users_count=row["unique_users_count"],
                    highlights_per_user=_round(row["total_highlights"] / max(row["unique_users_count"], 1)),
                    highlight_colors=sorted(color for color in row["highlight_colors"] if color),
                    avg_highlight_page=_round(row["avg_highlight_page"], 1) if row.get("avg_highlight_page") else None,
                    latest_highlight=_as_utc(row.get("latest_highlight")),
                    top_highlights=[
                        HighlightSample(text=text, page=page, color=color, user_id=user_id)
                        for text, page, color, user_id in list(samples)[:TOP_HIGHLIGHT_SAMPLES]
                    ],
                )
            )
        return books

    def book_popularity(self, metric: PopularityMetric = "reading_time", limit: int = 10) -> list[BookReadingTime]:
        return self._book_reading_time(pipelines.book_reading_time(metric, limit))

    def top_books(self, limit: int = 10) -> list[BookReadingTime]:
        return self._book_reading_time(pipelines.top_books_by_reading_time(limit))

    def _book_reading_time(self, pipeline: pipelines.Pipeline) -> list[BookReadingTime]:
        results = []
        for row in self._aggregate(pipeline):
            rates = [float(rate) for rate in row.get("completion_rates", []) if rate is not None]
            total_time = _int(row["total_reading_time"])
            results.append(
                BookReadingTime(
                    book_id=row["_id"],
                    total_reading_time_minutes=total_time,
                    hours_read=_round(total_time / 60),
                    total_sessions=row["total_sessions"],
                    unique_readers_count=row["unique_readers_count"],
                    average_session_duration_minutes=_round(row["average_session_duration"]),
                    total_pages_read=_int(row["total_pages_read"]),
                    total_highlights=_int(row["total_highlights"]),
                    device_distribution=dict(Counter(device for device in row["device_usage"] if device)),
                    avg_completion_rate=_round(sum(rates) / len(rates)) if rates else None,
                    first_session=_as_utc(row.get("first_session")),
                    last_session=_as_utc(row.get("last_session")),
                )
            )
        return results

    def user_engagement(self, user_id: Optional[int] = None, limit: int = 20) -> list[UserEngagement]:
        results = []
        for row in self._aggregate(pipelines.user_engagement(user_id, limit)):
            score = _int(row["engagement_score"])
            total_time = _int(row["total_reading_time"])
            results.append(
                UserEngagement(
                    user_id=row["_id"],
                    total_sessions=row["total_sessions"],
                    total_reading_time_minutes=total_time,
                    hours_read=_round(total_time / 60),
                    average_session_duration_minutes=_round(row["average_session_duration"]),
                    unique_books_count=row["unique_books_count"],
                    total_pages_read=_int(row["total_pages_read"]),
                    total_highlights=_int(row["total_highlights"]),
                    total_bookmarks=_int(row["total_bookmarks"]),
                    engagement_score=score,
                    engagement_level=engagement_level(score),
                    device_distribution=dict(Counter(device for device in row["device_usage"] if device)),
                    last_reading_session=_as_utc(row.get("last_reading_session")),
                )
            )
        return results

    def reading_patterns(self, pattern_type: PatternType) -> list[ReadingPattern]:
        builder, label = _PATTERNS[pattern_type]
        rows = self._aggregate(builder())
        return [
            ReadingPattern(
                key=str(row["_id"]),
                label=label(row["_id"]),
                total_sessions=row["total_sessions"],
                total_reading_time=_int(row["total_reading_time"]),
                unique_users_count=len(row["unique_users"]),
                average_session_duration=_round(row["average_session_duration"]),
            )
            for row in rows
            if row["_id"] is not None
        ]

    def popular_highlights(self, book_id: Optional[int] = None, limit: int = 20) -> list[PopularHighlight]:
        return [
            PopularHighlight(
                book_id=row["_id"]["book_id"],
                highlight_text=row["_id"]["text"],
                highlight_count=row["highlight_count"],
                unique_users_count=row["unique_users_count"],
                colors_used=sorted(color for color in row["colors_used"] if color),
                pages=sorted(page for page in row["pages"] if page is not None),
                popularity_score=_int(row["popularity_score"]),
                latest_highlight=_as_utc(row.get("latest_highlight")),
                sample_notes=[note for note in row["notes"] if note][:TOP_HIGHLIGHT_SAMPLES],
            )
            for row in self._aggregate(pipelines.popular_highlights(book_id, limit))
        ]

    def dashboard(self) -> AnalyticsDashboard:
        now = datetime.now(timezone.utc)
        # stored datetimes come back naive from the driver, so compare naive UTC
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None)
        today = self._aggregate(pipelines.activity_between(day_start, day_start + timedelta(days=1)))
        activity = today[0] if today else {}

        summary = DashboardSummary(
            total_sessions=self.collection.count_documents({}),
            active_sessions=self.collection.count_documents({"session_end": None}),
            sessions_today=_int(activity.get("sessions")),
            unique_users_today=len(activity.get("unique_users", [])),
            unique_books_today=len(activity.get("unique_books", [])),
            total_reading_time_today=_int(activity.get("total_reading_time")),
        )
        devices = {
            row["_id"]: row["count"] for row in self._aggregate(pipelines.device_distribution()) if row["_id"]
        }
        highlights = [
            RecentHighlight(
                user_id=row["user_id"],
                book_id=row["book_id"],
                highlight_text=row["highlights"].get("text", ""),
                highlight_page=row["highlights"].get("page"),
                highlight_color=row["highlights"].get("color"),
                highlight_timestamp=_as_utc(row["highlights"].get("timestamp")),
            )
            for row in self._aggregate(pipelines.recent_highlights())
        ]
        return AnalyticsDashboard(
            summary=summary,
            device_distribution=devices,
            recent_highlights=highlights,
            generated_at=now,
        )

    def reading_history(self, user_id: int, recent_limit: int = 10) -> ReadingHistoryResponse:
        books = []
        for row in self._aggregate(pipelines.reading_history(user_id)):
            progress = [value for value in row.get("progress", []) if value is not None]
            books.append(
                ReadingHistoryBook(
                    book_id=row["_id"],
                    total_sessions=row["total_sessions"],
                    total_reading_time_minutes=_int(row["total_reading_time"]),
                    total_pages_read=_int(row["total_pages_read"]),
                    total_highlights=_int(row["total_highlights"]),
                    last_session=_as_utc(row.get("last_session")),
                    latest_progress=float(progress[-1]) if progress else None,
                )
            )
        recent = self.collection.find({"user_id": user_id}).sort("session_start", -1).limit(recent_limit)
        return ReadingHistoryResponse(
            user_id=user_id,
            books=books,
            recent_sessions=[_session_out(doc) for doc in recent],
        )


def get_analytics_service(
    collection: Collection = Depends(get_reading_sessions_collection),
) -> AnalyticsService:
    return AnalyticsService(collection)
