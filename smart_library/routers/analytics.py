from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from smart_library.models.user import User
from smart_library.schemas.analytics import (
    AnalyticsDashboard,
    BookPopularityResponse,
    HighlightedBooksResponse,
    PatternType,
    PopularHighlightsResponse,
    PopularityMetric,
    ReadingPatternsResponse,
    ReadingSessionCreate,
    ReadingSessionResult,
    ReadingSessionUpdate,
    SessionAveragesResponse,
    TopBooksResponse,
    UserEngagementResponse,
)
from smart_library.security.dependencies import get_current_user, require_staff
from smart_library.services.analytics_service import AnalyticsService, get_analytics_service

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


def _now() -> datetime:
    return datetime.now(timezone.utc)


@router.post(
    "/reading-sessions",
    status_code=status.HTTP_201_CREATED,
    response_model=ReadingSessionResult,
)
def log_reading_session(
    payload: ReadingSessionCreate,
    current_user: User = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ReadingSessionResult:
    """Record a reading session for the caller."""
    session = service.log_session(payload, current_user)
    return ReadingSessionResult(message="Reading session logged successfully", session=session)


@router.put("/reading-sessions/{session_id}", response_model=ReadingSessionResult)
def update_reading_session(
    session_id: str,
    payload: ReadingSessionUpdate,
    current_user: User = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ReadingSessionResult:
    session = service.update_session(session_id, payload, current_user)
    return ReadingSessionResult(message="Reading session updated successfully", session=session)


@router.get("/user-engagement", response_model=UserEngagementResponse)
def user_engagement(
    user_id: Optional[int] = Query(default=None, alias="userId"),
    limit: int = Query(20, ge=1, le=100),
    _: User = Depends(require_staff),
    service: AnalyticsService = Depends(get_analytics_service),
) -> UserEngagementResponse:
    return UserEngagementResponse(user_engagement=service.user_engagement(user_id, limit), generated_at=_now())


@router.get("/book-popularity", response_model=BookPopularityResponse)
def book_popularity(
    metric: PopularityMetric = Query(default="reading_time"),
    limit: int = Query(10, ge=1, le=50),
    service: AnalyticsService = Depends(get_analytics_service),
) -> BookPopularityResponse:
    return BookPopularityResponse(
        book_popularity=service.book_popularity(metric, limit),
        metric_used=metric,
        generated_at=_now(),
    )


@router.get("/reading-patterns", response_model=ReadingPatternsResponse)
def reading_patterns(
    pattern_type: PatternType = Query(default="time_of_day", alias="type"),
    _: User = Depends(require_staff),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ReadingPatternsResponse:
    """Sessions bucketed by hour of day, day of week or device."""
    return ReadingPatternsResponse(
        reading_patterns=service.reading_patterns(pattern_type),
        pattern_type=pattern_type,
        generated_at=_now(),
    )


@router.get("/highlights", response_model=PopularHighlightsResponse)
def popular_highlights(
    book_id: Optional[int] = Query(default=None, alias="bookId"),
    limit: int = Query(20, ge=1, le=100),
    _: User = Depends(require_staff),
    service: AnalyticsService = Depends(get_analytics_service),
) -> PopularHighlightsResponse:
    return PopularHighlightsResponse(
        popular_highlights=service.popular_highlights(book_id, limit),
        book_filter=book_id,
        generated_at=_now(),
    )


@router.get("/dashboard", response_model=AnalyticsDashboard)
def analytics_dashboard(
    _: User = Depends(require_staff),
    service: AnalyticsService = Depends(get_analytics_service),
) -> AnalyticsDashboard:
    return service.dashboard()


@router.get("/session-averages", response_model=SessionAveragesResponse)
def session_averages(
    user_id: Optional[int] = Query(default=None, alias="userId"),
    _: User = Depends(require_staff),
    service: AnalyticsService = Depends(get_analytics_service),
) -> SessionAveragesResponse:
    return SessionAveragesResponse(session_averages=service.session_averages(user_id), generated_at=_now())


@router.get("/most-highlighted", response_model=HighlightedBooksResponse)
def most_highlighted(
    limit: int = Query(10, ge=1, le=50),
    _: User = Depends(require_staff),
    service: AnalyticsService = Depends(get_analytics_service),
) -> HighlightedBooksResponse:
    return HighlightedBooksResponse(most_highlighted_books=service.most_highlighted_books(limit), generated_at=_now())


@router.get("/top-books", response_model=TopBooksResponse)
def top_books(
    limit: int = Query(10, ge=1, le=50),
    service: AnalyticsService = Depends(get_analytics_service),
) -> TopBooksResponse:
    return TopBooksResponse(top_books=service.top_books(limit), generated_at=_now())
