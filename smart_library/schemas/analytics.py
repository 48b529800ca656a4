from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from smart_library.schemas.common import CamelModel

DeviceType = Literal["mobile", "tablet", "desktop", "e-reader"]
PopularityMetric = Literal["reading_time", "sessions", "highlights", "unique_readers"]
PatternType = Literal["time_of_day", "day_of_week", "device_usage"]


class _StrictCamelModel(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class Highlight(_StrictCamelModel):
    page: int = Field(ge=1)
    text: str = Field(min_length=1, max_length=1000)
    color: str = Field(default="yellow", max_length=20)
    timestamp: datetime
    note: Optional[str] = Field(default=None, max_length=1000)


class Bookmark(_StrictCamelModel):
    page: int = Field(ge=1)
    timestamp: datetime
    note: Optional[str] = Field(default=None, max_length=1000)


class ReadingProgress(_StrictCamelModel):
    current_page: int = Field(ge=0)
    total_pages: Optional[int] = Field(default=None, ge=1)
    percentage_complete: float = Field(ge=0, le=100)


class ReadingSessionCreate(_StrictCamelModel):
    book_id: int = Field(gt=0)
    device_type: DeviceType
    session_start: Optional[datetime] = None
    session_end: Optional[datetime] = None
    device_info: dict[str, Any] = Field(default_factory=dict)
    pages_read: list[int] = Field(default_factory=list)
    highlights: list[Highlight] = Field(default_factory=list)
    bookmarks: list[Bookmark] = Field(default_factory=list)
    reading_progress: Optional[ReadingProgress] = None
    location: dict[str, Any] = Field(default_factory=dict)
    quality_metrics: dict[str, Any] = Field(default_factory=dict)

    @field_validator("session_start", "session_end")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Naive timestamps are taken as UTC
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @model_validator(mode="after")
    def check_session_window(self) -> "ReadingSessionCreate":
        if self.session_start and self.session_end and self.session_end < self.session_start:
            raise ValueError("sessionEnd must not be earlier than sessionStart")
        return self


class ReadingSessionUpdate(_StrictCamelModel):
    session_end: Optional[datetime] = None
    pages_read: Optional[list[int]] = None
    highlights: Optional[list[Highlight]] = None
    bookmarks: Optional[list[Bookmark]] = None
    reading_progress: Optional[ReadingProgress] = None
    quality_metrics: Optional[dict[str, Any]] = None


class ReadingSessionOut(CamelModel):
    id: str
    user_id: int
    book_id: int
    device_type: str
    session_start: datetime
    session_end: Optional[datetime] = None
    session_duration_minutes: Optional[int] = None
    device_info: dict[str, Any] = Field(default_factory=dict)
    pages_read: list[int] = Field(default_factory=list)
    highlights: list[dict[str, Any]] = Field(default_factory=list)
    bookmarks: list[dict[str, Any]] = Field(default_factory=list)
    reading_progress: dict[str, Any] = Field(default_factory=dict)
    location: dict[str, Any] = Field(default_factory=dict)
    quality_metrics: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ReadingSessionResult(CamelModel):
    message: str
    session: ReadingSessionOut


class UserSessionAverages(CamelModel):
    user_id: int
    total_sessions: int
    total_reading_time_minutes: int
    hours_read: float
    average_session_duration_minutes: float
    longest_session_minutes: int
    shortest_session_minutes: int
    unique_books_count: int
    total_pages_read: int
    last_reading_session: Optional[datetime] = None


class HighlightSample(CamelModel):
    text: str
    page: Optional[int] = None
    color: Optional[str] = None
    user_id: int


class HighlightedBook(CamelModel):
    book_id: int
    total_highlights: int
    unique_users_count: int
    highlights_per_user: float
    highlight_colors: list[str]
    avg_highlight_page: Optional[float] = None
    latest_highlight: Optional[datetime] = None
    top_highlights: list[HighlightSample]


class BookReadingTime(CamelModel):
    book_id: int
    total_reading_time_minutes: int
    hours_read: float
    total_sessions: int
    unique_readers_count: int
    average_session_duration_minutes: float
    total_pages_read: int
    total_highlights: int = 0
    device_distribution: dict[str, int]
    avg_completion_rate: Optional[float] = None
    first_session: Optional[datetime] = None
    last_session: Optional[datetime] = None


class UserEngagement(CamelModel):
    user_id: int
    total_sessions: int
    total_reading_time_minutes: int
    hours_read: float
    average_session_duration_minutes: float
    unique_books_count: int
    total_pages_read: int
    total_highlights: int
    total_bookmarks: int
    engagement_score: int
    engagement_level: str
    device_distribution: dict[str, int]
    last_reading_session: Optional[datetime] = None


class UserEngagementResponse(CamelModel):
    user_engagement: list[UserEngagement]
    generated_at: datetime


class BookPopularityResponse(CamelModel):
    book_popularity: list[BookReadingTime]
    metric_used: PopularityMetric
    generated_at: datetime


class ReadingPattern(CamelModel):
    key: str
    label: str
    total_sessions: int
    total_reading_time: int
    unique_users_count: int
    average_session_duration: float


class ReadingPatternsResponse(CamelModel):
    reading_patterns: list[ReadingPattern]
    pattern_type: PatternType
    generated_at: datetime


class PopularHighlight(CamelModel):
    book_id: int
    highlight_text: str
    highlight_count: int
    unique_users_count: int
    colors_used: list[str]
    pages: list[int]
    popularity_score: int
    latest_highlight: Optional[datetime] = None
    sample_notes: list[str]


class PopularHighlightsResponse(CamelModel):
    popular_highlights: list[PopularHighlight]
    book_filter: Optional[int] = None
    generated_at: datetime


class RecentHighlight(CamelModel):
    user_id: int
    book_id: int
    highlight_text: str
    highlight_page: Optional[int] = None
    highlight_color: Optional[str] = None
    highlight_timestamp: Optional[datetime] = None


class DashboardSummary(CamelModel):
    total_sessions: int
    active_sessions: int
    sessions_today: int
    unique_users_today: int
    unique_books_today: int
    total_reading_time_today: int


class AnalyticsDashboard(CamelModel):
    summary: DashboardSummary
    device_distribution: dict[str, int]
    recent_highlights: list[RecentHighlight]
    generated_at: datetime


class SessionAveragesResponse(CamelModel):
    session_averages: list[UserSessionAverages]
    generated_at: datetime


class HighlightedBooksResponse(CamelModel):
    most_highlighted_books: list[HighlightedBook]
    generated_at: datetime


class TopBooksResponse(CamelModel):
    top_books: list[BookReadingTime]
    generated_at: datetime


class ReadingHistoryBook(CamelModel):
    book_id: int
    title: Optional[str] = None
    total_sessions: int
    total_reading_time_minutes: int
    total_pages_read: int
    total_highlights: int
    last_session: Optional[datetime] = None
    latest_progress: Optional[float] = None


class ReadingHistoryResponse(CamelModel):
    user_id: int
    books: list[ReadingHistoryBook]
    recent_sessions: list[ReadingSessionOut]
