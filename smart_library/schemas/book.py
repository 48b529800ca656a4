from __future__ import annotations

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from smart_library.schemas.common import CamelModel, ORMModel, Pagination

SortColumn = Literal["title", "publication_date", "average_rating", "total_borrowed"]


class BookBase(CamelModel):
    title: str = Field(min_length=1, max_length=200)
    isbn: Optional[str] = Field(default=None, max_length=20)
    publisher: Optional[str] = Field(default=None, max_length=100)
    publication_date: Optional[date] = None
    genre: Optional[str] = Field(default=None, max_length=50)
    language: str = Field(default="English", max_length=30)
    pages: Optional[int] = None
    description: Optional[str] = None
    is_ebook: bool = False
    cover_image_url: Optional[str] = Field(default=None, max_length=500)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    @field_validator("pages")
    @classmethod
    def validate_pages(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value <= 0:
            raise ValueError("pages must be a positive integer")
        return value

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be blank")
        return value


class BookCreate(BookBase):
    total_copies: int = Field(gt=0)
    authors: list[str] = Field(min_length=1)

    @field_validator("authors")
    @classmethod
    def validate_authors(cls, value: list[str]) -> list[str]:
        names = [name.strip() for name in value]
        if any(not name for name in names):
            raise ValueError("author names must not be blank")
        return names


class BookUpdate(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    isbn: Optional[str] = Field(default=None, max_length=20)
    publisher: Optional[str] = Field(default=None, max_length=100)
    publication_date: Optional[date] = None
    genre: Optional[str] = Field(default=None, max_length=50)
    language: Optional[str] = Field(default=None, max_length=30)
    pages: Optional[int] = None
    description: Optional[str] = None
    is_ebook: Optional[bool] = None
    cover_image_url: Optional[str] = Field(default=None, max_length=500)
    authors: Optional[list[str]] = Field(default=None, min_length=1)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    @field_validator("pages")
    @classmethod
    def validate_pages(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value <= 0:
            raise ValueError("pages must be a positive integer")
        return value


class InventoryUpdate(CamelModel):
    total_copies: int = Field(gt=0)


class BookSummary(ORMModel):
    id: int
    title: str
    isbn: Optional[str] = None
    genre: Optional[str] = None
    cover_image_url: Optional[str] = None
    authors: list[str] = Field(default_factory=list)


class BookOut(ORMModel):
    id: int
    title: str
    isbn: Optional[str] = None
    publisher: Optional[str] = None
    publication_date: Optional[date] = None
    genre: Optional[str] = None
    language: str
    pages: Optional[int] = None
    description: Optional[str] = None
    total_copies: int
    available_copies: int
    is_ebook: bool
    cover_image_url: Optional[str] = None
    average_rating: float
    total_reviews: int
    total_borrowed: int
    is_active: bool
    is_available: bool
    availability_status: str
    authors: list[str] = Field(default_factory=list)

    @field_validator("average_rating")
    @classmethod
    def round_rating(cls, value: float) -> float:
        return round(value or 0.0, 2)


class BookFilters(CamelModel):
    available_genres: list[str]


class BookListResponse(CamelModel):
    books: list[BookOut]
    pagination: Pagination
    filters: BookFilters


class PopularBook(CamelModel):
    id: int
    title: str
    cover_image_url: Optional[str] = None
    average_rating: float
    total_reviews: int
    recent_checkouts: int
    authors: list[str]


class PopularBooksResponse(CamelModel):
    popular_books: list[PopularBook]
    time_period: str


class ReviewPreview(CamelModel):
    id: int
    rating: int
    comment: Optional[str] = None
    reviewer_name: str
    review_date: Optional[datetime] = None


class BookDetail(BookOut):
    checked_out_copies: int
    recent_reviews: list[ReviewPreview] = Field(default_factory=list)


class BookMutationResponse(CamelModel):
    message: str
    book: BookOut
