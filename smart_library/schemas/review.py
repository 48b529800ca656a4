from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from smart_library.schemas.common import CamelModel, ORMModel, Pagination

ReviewSort = Literal["date", "rating", "helpful"]


def _strip_comment(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class ReviewCreate(CamelModel):
    book_id: int = Field(gt=0)
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=1000)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    @field_validator("comment")
    @classmethod
    def normalize_comment(cls, value: Optional[str]) -> Optional[str]:
        return _strip_comment(value)


class ReviewUpdate(CamelModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=1000)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    @field_validator("comment")
    @classmethod
    def normalize_comment(cls, value: Optional[str]) -> Optional[str]:
        return _strip_comment(value)

    @model_validator(mode="after")
    def require_change(self) -> "ReviewUpdate":
        if not self.model_fields_set:
            raise ValueError("at least one of rating or comment must be provided")
        return self


class ReviewOut(ORMModel):
    id: int
    user_id: int
    book_id: int
    rating: int
    comment: Optional[str] = None
    review_date: datetime
    is_verified: bool
    helpful_votes: int
    reviewer_name: str
    book_title: str


class ReviewResult(CamelModel):
    message: str
    review: ReviewOut
    book_average_rating: float
    book_total_reviews: int


class RatingBucket(CamelModel):
    rating: int
    count: int


class BookReviewsResponse(CamelModel):
    book_id: int
    average_rating: float
    total_reviews: int
    rating_distribution: list[RatingBucket]
    reviews: list[ReviewOut]
    pagination: Pagination


class ReviewListResponse(CamelModel):
    reviews: list[ReviewOut]
    pagination: Pagination


class HelpfulVoteResult(CamelModel):
    message: str
    review_id: int
    helpful_votes: int


class RecentReview(ReviewOut):
    cover_image_url: Optional[str] = None
    authors: list[str] = Field(default_factory=list)


class RecentReviewsResponse(CamelModel):
    recent_reviews: list[RecentReview]


class ReviewDeleted(CamelModel):
    message: str
    book_average_rating: float
    book_total_reviews: int
