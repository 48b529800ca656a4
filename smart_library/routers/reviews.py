from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from smart_library.models.book import Book
from smart_library.models.review import Review
from smart_library.models.user import User
from smart_library.schemas.common import Pagination
from smart_library.schemas.review import (
    BookReviewsResponse,
    HelpfulVoteResult,
    RecentReviewsResponse,
    ReviewCreate,
    ReviewDeleted,
    ReviewListResponse,
    ReviewOut,
    ReviewResult,
    ReviewSort,
    ReviewUpdate,
)
from smart_library.security.dependencies import ensure_owner_or_staff, get_current_user
from smart_library.services.review_service import ReviewService, get_review_service

router = APIRouter(prefix="/api/reviews", tags=["reviews"])


def _review_result(message: str, review: Review, book: Book) -> ReviewResult:
    return ReviewResult(
        message=message,
        review=ReviewOut.model_validate(review),
        book_average_rating=round(book.average_rating or 0.0, 2),
        book_total_reviews=book.total_reviews,
    )


def _review_list(reviews: list[Review], total: int, page: int, limit: int) -> ReviewListResponse:
    return ReviewListResponse(
        reviews=[ReviewOut.model_validate(review) for review in reviews],
        pagination=Pagination.build(page=page, per_page=limit, total=total),
    )


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=ReviewResult,
)
def create_review(
    payload: ReviewCreate,
    current_user: User = Depends(get_current_user),
    service: ReviewService = Depends(get_review_service),
) -> ReviewResult:
    """Review a book the caller has borrowed at least once."""
    review, book = service.create_review(payload, current_user)
    return _review_result("Review created successfully", review, book)


def book_reviews_response(
    service: ReviewService, book_id: int, sort: ReviewSort, page: int, limit: int
) -> BookReviewsResponse:
    book, reviews, total, distribution = service.list_book_reviews(book_id, sort=sort, page=page, limit=limit)
    return BookReviewsResponse(
        book_id=book.id,
        average_rating=round(book.average_rating or 0.0, 2),
        total_reviews=book.total_reviews,
        rating_distribution=distribution,
        reviews=[ReviewOut.model_validate(review) for review in reviews],
        pagination=Pagination.build(page=page, per_page=limit, total=total),
    )


@router.get("/book/{book_id}", response_model=BookReviewsResponse)
def list_book_reviews(
    book_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    sort: ReviewSort = Query(default="date"),
    service: ReviewService = Depends(get_review_service),
) -> BookReviewsResponse:
    return book_reviews_response(service, book_id, sort, page, limit)


@router.get("/user", response_model=ReviewListResponse)
def list_my_reviews(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    service: ReviewService = Depends(get_review_service),
) -> ReviewListResponse:
    reviews, total = service.list_user_reviews(current_user.id, page=page, limit=limit)
    return _review_list(reviews, total, page, limit)


@router.get("/user/{user_id}", response_model=ReviewListResponse)
def list_user_reviews(
    user_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    service: ReviewService = Depends(get_review_service),
) -> ReviewListResponse:
    ensure_owner_or_staff(current_user, user_id)
    reviews, total = service.list_user_reviews(user_id, page=page, limit=limit)
    return _review_list(reviews, total, page, limit)


@router.get("/recent", response_model=RecentReviewsResponse)
def recent_reviews(
    limit: int = Query(10, ge=1, le=50),
    service: ReviewService = Depends(get_review_service),
) -> RecentReviewsResponse:
    return RecentReviewsResponse(recent_reviews=service.recent_reviews(limit))


@router.put("/{review_id}", response_model=ReviewResult)
def update_review(
    review_id: int,
    payload: ReviewUpdate,
    current_user: User = Depends(get_current_user),
    service: ReviewService = Depends(get_review_service),
) -> ReviewResult:
    review, book = service.update_review(review_id, payload, current_user)
    return _review_result("Review updated successfully", review, book)


@router.delete("/{review_id}", response_model=ReviewDeleted)
def delete_review(
    review_id: int,
    current_user: User = Depends(get_current_user),
    service: ReviewService = Depends(get_review_service),
) -> ReviewDeleted:
    book = service.delete_review(review_id, current_user)
    return ReviewDeleted(
        message="Review deleted successfully",
        book_average_rating=round(book.average_rating or 0.0, 2),
        book_total_reviews=book.total_reviews,
    )


@router.post("/{review_id}/helpful", response_model=HelpfulVoteResult)
def mark_helpful(
    review_id: int,
    current_user: User = Depends(get_current_user),
    service: ReviewService = Depends(get_review_service),
) -> HelpfulVoteResult:
    review = service.mark_helpful(review_id, current_user)
    return HelpfulVoteResult(
        message="Review marked as helpful",
        review_id=review.id,
        helpful_votes=review.helpful_votes,
    )
