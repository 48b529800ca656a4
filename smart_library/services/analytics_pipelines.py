"""Aggregation pipelines over the ``reading_sessions`` collection.

Each builder returns a plain list of stages. Counts derived from embedded
arrays are materialised with ``$addFields`` before grouping so every
accumulator works on scalar fields. Rounding and label formatting happen in
:mod:`smart_library.services.analytics_service`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

Pipeline = list[dict[str, Any]]

COMPLETED_SESSION = {"session_end": {"$ne": None}, "session_duration_minutes": {"$gt": 0}}
TIMED_SESSION = {"session_duration_minutes": {"$gt": 0}}
HAS_HIGHLIGHTS = {"highlights": {"$exists": True, "$ne": []}}

SORT_FIELDS = {
    "reading_time": "total_reading_time",
    "sessions": "total_sessions",
    "highlights": "total_highlights",
    "unique_readers": "unique_readers_count",
}


def _array_counts() -> dict[str, Any]:
    return {
        "$addFields": {
            "pages_count": {"$size": {"$ifNull": ["$pages_read", []]}},
            "highlights_count": {"$size": {"$ifNull": ["$highlights", []]}},
            "bookmarks_count": {"$size": {"$ifNull": ["$bookmarks", []]}},
        }
    }


def average_session_time_per_user(user_id: Optional[int] = None) -> Pipeline:
    match: dict[str, Any] = dict(COMPLETED_SESSION)
    if user_id is not None:
        match["user_id"] = user_id
    return [
        {"$match": match},
        _array_counts(),
        {
            "$group": {
                "_id": "$user_id",
                "total_sessions": {"$sum": 1},
                "total_reading_time": {"$sum": "$session_duration_minutes"},
                "average_session_duration": {"$avg": "$session_duration_minutes"},
                "longest_session": {"$max": "$session_duration_minutes"},
                "shortest_session": {"$min": "$session_duration_minutes"},
                "unique_books_read": {"$addToSet": "$book_id"},
                "last_reading_session": {"$max": "$session_start"},
                "total_pages_read": {"$sum": "$pages_count"},
            }
        },
        {"$addFields": {"unique_books_count": {"$size": "$unique_books_read"}}},
        {"$sort": {"average_session_duration": -1, "_id": 1}},
    ]


def most_highlighted_books(limit: Optional[int] = None) -> Pipeline:
    pipeline: Pipeline = [
        {"$match": dict(HAS_HIGHLIGHTS)},
        {"$unwind": "$highlights"},
        {
            "$group": {
                "_id": "$book_id",
                "total_highlights": {"$sum": 1},
                "unique_users": {"$addToSet": "$user_id"},
                "highlight_colors": {"$addToSet": "$highlights.color"},
                # parallel arrays, zipped back into samples by the service
                "sample_texts": {"$push": "$highlights.text"},
                "sample_pages": {"$push": "$highlights.page"},
                "sample_colors": {"$push": "$highlights.color"},
                "sample_users": {"$push": "$user_id"},
                "avg_highlight_page": {"$avg": "$highlights.page"},
                "latest_highlight": {"$max": "$highlights.timestamp"},
            }
        },
        {"$addFields": {"unique_users_count": {"$size": "$unique_users"}}},
        {"$sort": {"total_highlights": -1, "_id": 1}},
    ]
    if limit:
        pipeline.append({"$limit": limit})
    return pipeline


def book_reading_time(metric: str = "reading_time", limit: int = 10) -> Pipeline:
    """Per-book reading totals, ordered by ``metric`` and cut to ``limit``."""
    return [
        {"$match": dict(TIMED_SESSION)},
        _array_counts(),
        {
            "$group": {
                "_id": "$book_id",
                "total_reading_time": {"$sum": "$session_duration_minutes"},
                "total_sessions": {"$sum": 1},
                "unique_readers": {"$addToSet": "$user_id"},
                "average_session_duration": {"$avg": "$session_duration_minutes"},
                "total_pages_read": {"$sum": "$pages_count"},
                "total_highlights": {"$sum": "$highlights_count"},
                "device_usage": {"$push": "$device_type"},
                "completion_rates": {"$push": "$reading_progress.percentage_complete"},
                "first_session": {"$min": "$session_start"},
                "last_session": {"$max": "$session_start"},
            }
        },
        {"$addFields": {"unique_readers_count": {"$size": "$unique_readers"}}},
        {"$sort": {SORT_FIELDS[metric]: -1, "_id": 1}},
        {"$limit": limit},
    ]


def top_books_by_reading_time(limit: int = 10) -> Pipeline:
    return book_reading_time("reading_time", limit)


def user_engagement(user_id: Optional[int] = None, limit: int = 20) -> Pipeline:
    match: dict[str, Any] = dict(COMPLETED_SESSION)
    if user_id is not None:
        match["user_id"] = user_id
    return [
        {"$match": match},
        _array_counts(),
        {
            "$group": {
                "_id": "$user_id",
                "total_sessions": {"$sum": 1},
                "total_reading_time": {"$sum": "$session_duration_minutes"},
                "average_session_duration": {"$avg": "$session_duration_minutes"},
                "unique_books_read": {"$addToSet": "$book_id"},
                "last_reading_session": {"$max": "$session_start"},
                "total_pages_read": {"$sum": "$pages_count"},
                "total_highlights": {"$sum": "$highlights_count"},
                "total_bookmarks": {"$sum": "$bookmarks_count"},
                "device_usage": {"$push": "$device_type"},
            }
        },
        {"$addFields": {"unique_books_count": {"$size": "$unique_books_read"}}},
        {
            "$addFields": {
                "engagement_score": {
                    "$add": [
                        {"$multiply": ["$total_sessions", 2]},
                        {"$multiply": ["$unique_books_count", 5]},
                        {"$multiply": ["$total_highlights", 3]},
                        {"$multiply": ["$total_bookmarks", 2]},
                    ]
                }
            }
        },
        {"$sort": {"engagement_score": -1, "_id": 1}},
        {"$limit": limit},
    ]


def reading_patterns_by_hour() -> Pipeline:
    return [
        {"$match": {"session_start": {"$ne": None}}},
        {"$addFields": {"bucket": {"$hour": "$session_start"}}},
        _pattern_group(),
        {"$sort": {"_id": 1}},
    ]


def reading_patterns_by_weekday() -> Pipeline:
    return [
        {"$match": {"session_start": {"$ne": None}}},
        {"$addFields": {"bucket": {"$dayOfWeek": "$session_start"}}},
        _pattern_group(),
        {"$sort": {"_id": 1}},
    ]


def reading_patterns_by_device() -> Pipeline:
    return [
        {"$addFields": {"bucket": "$device_type"}},
        _pattern_group(),
        {"$sort": {"total_sessions": -1, "_id": 1}},
    ]


def _pattern_group() -> dict[str, Any]:
    return {
        "$group": {
            "_id": "$bucket",
            "total_sessions": {"$sum": 1},
            "total_reading_time": {"$sum": "$session_duration_minutes"},
            "unique_users": {"$addToSet": "$user_id"},
            "average_session_duration": {"$avg": "$session_duration_minutes"},
        }
    }


def popular_highlights(book_id: Optional[int] = None, limit: int = 20) -> Pipeline:
    match: dict[str, Any] = dict(HAS_HIGHLIGHTS)
    if book_id is not None:
        match["book_id"] = book_id
    return [
        {"$match": match},
        {"$unwind": "$highlights"},
        {
            "$group": {
                "_id": {"book_id": "$book_id", "text": "$highlights.text"},
                "highlight_count": {"$sum": 1},
                "unique_users": {"$addToSet": "$user_id"},
                "colors_used": {"$addToSet": "$highlights.color"},
                "pages": {"$addToSet": "$highlights.page"},
                "latest_highlight": {"$max": "$highlights.timestamp"},
                "notes": {"$push": "$highlights.note"},
            }
        },
        {"$addFields": {"unique_users_count": {"$size": "$unique_users"}}},
        {
            "$addFields": {
                "popularity_score": {"$multiply": ["$highlight_count", "$unique_users_count"]},
            }
        },
        {"$sort": {"popularity_score": -1, "highlight_count": -1}},
        {"$limit": limit},
    ]


def activity_between(start: datetime, end: datetime) -> Pipeline:
    return [
        {"$match": {"session_start": {"$gte": start, "$lt": end}}},
        {
            "$group": {
                "_id": None,
                "sessions": {"$sum": 1},
                "unique_users": {"$addToSet": "$user_id"},
                "unique_books": {"$addToSet": "$book_id"},
                "total_reading_time": {"$sum": "$session_duration_minutes"},
            }
        },
    ]


def device_distribution() -> Pipeline:
    return [
        {"$group": {"_id": "$device_type", "count": {"$sum": 1}}},
        {"$sort": {"count": -1, "_id": 1}},
    ]


def recent_highlights(limit: int = 5) -> Pipeline:
    return [
        {"$match": dict(HAS_HIGHLIGHTS)},
        {"$unwind": "$highlights"},
        {"$sort": {"highlights.timestamp": -1}},
        {"$limit": limit},
    ]


def reading_history(user_id: int) -> Pipeline:
    """Per-book totals for one reader; ``progress`` keeps session order."""
    return [
        {"$match": {"user_id": user_id}},
        _array_counts(),
        {"$sort": {"session_start": 1}},
        {
            "$group": {
                "_id": "$book_id",
                "total_sessions": {"$sum": 1},
                "total_reading_time": {"$sum": "$session_duration_minutes"},
                "total_pages_read": {"$sum": "$pages_count"},
                "total_highlights": {"$sum": "$highlights_count"},
                "last_session": {"$max": "$session_start"},
                "progress": {"$push": "$reading_progress.percentage_complete"},
            }
        },
        {"$sort": {"last_session": -1, "_id": 1}},
    ]
