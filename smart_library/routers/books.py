from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query

from smart_library.models.user import User
from smart_library.routers.reviews import book_reviews_response
from smart_library.schemas.book import (
    BookDetail,
    BookFilters,
    BookListResponse,
    BookOut,
    PopularBooksResponse,
    SortColumn,
)
from smart_library.schemas.common import Pagination
from smart_library.schemas.review import BookReviewsResponse, ReviewSort
from smart_library.security.dependencies import get_optional_user
from smart_library.services.book_service import BookService, PopularPeriod, get_book_service
from smart_library.services.review_service import ReviewService, get_review_service

router = APIRouter(prefix="/api/books", tags=["books"])


@router.get("", response_model=BookListResponse)
def list_books(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(default=None, min_length=1),
    genre: Optional[str] = Query(default=None),
    author: Optional[str] = Query(default=None),
    publisher: Optional[str] = Query(default=None),
    available_only: bool = Query(default=False, alias="availableOnly"),
    sort_by: SortColumn = Query(default="title", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query(default="asc", alias="sortOrder"),
    service: BookService = Depends(get_book_service),
) -> BookListResponse:
    """Browse the active catalog with search, filters and sorting."""
    books, total = service.list_books(
        page=page,
        limit=limit,
        search=search,
        genre=genre,
        author=author,
        publisher=publisher,
        available_only=available_only,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return BookListResponse(
        books=[BookOut.model_validate(book) for book in books],
        pagination=Pagination.build(page=page, per_page=limit, total=total),
        filters=BookFilters(available_genres=service.available_genres()),
    )


@router.get("/popular", response_model=PopularBooksResponse)
def popular_books(
    period: PopularPeriod = Query(default="month"),
    limit: int = Query(10, ge=1, le=50),
    service: BookService = Depends(get_book_service),
) -> PopularBooksResponse:
    return PopularBooksResponse(popular_books=service.popular_books(period, limit), time_period=period)


@router.get("/{book_id}", response_model=BookDetail)
def get_book(
    book_id: int,
    viewer: Optional[User] = Depends(get_optional_user),
    service: BookService = Depends(get_book_service),
) -> BookDetail:
    """Book detail with authors, availability and the latest reviews."""
    return service.get_book_detail(book_id, viewer=viewer)


@router.get("/{book_id}/reviews", response_model=BookReviewsResponse)
def list_book_reviews(
    book_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    sort: ReviewSort = Query(default="date"),
    service: ReviewService = Depends(get_review_service),
) -> BookReviewsResponse:
    return book_reviews_response(service, book_id, sort, page, limit)
