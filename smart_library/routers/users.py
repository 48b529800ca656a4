from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from smart_library.models.user import User
from smart_library.schemas.analytics import ReadingHistoryResponse
from smart_library.schemas.checkout import CheckoutOut, CheckoutStatusFilter, UserCheckoutsResponse
from smart_library.schemas.common import Pagination
from smart_library.schemas.review import ReviewListResponse, ReviewOut
from smart_library.schemas.user import ProfileOut, RecommendationsResponse, UserDashboard
from smart_library.security.dependencies import ensure_owner_or_staff, get_current_user
from smart_library.services.analytics_service import AnalyticsService, get_analytics_service
from smart_library.services.auth_service import AuthService, get_auth_service
from smart_library.services.book_service import BookService, get_book_service
from smart_library.services.circulation_service import CirculationService, get_circulation_service
from smart_library.services.review_service import ReviewService, get_review_service
from smart_library.services.user_service import UserService, get_user_service

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/profile", response_model=ProfileOut)
def read_profile(
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> ProfileOut:
    return service.get_profile(current_user)


@router.get("/{user_id}/checkouts", response_model=UserCheckoutsResponse)
def list_checkouts(
    user_id: int,
    status_filter: CheckoutStatusFilter = Query(default="all", alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    service: CirculationService = Depends(get_circulation_service),
) -> UserCheckoutsResponse:
    ensure_owner_or_staff(current_user, user_id)
    checkouts, total = service.list_user_checkouts(user_id, status_filter=status_filter, page=page, limit=limit)
    return UserCheckoutsResponse(
        checkouts=[CheckoutOut.model_validate(checkout) for checkout in checkouts],
        pagination=Pagination.build(page=page, per_page=limit, total=total),
    )


@router.get("/{user_id}/reviews", response_model=ReviewListResponse)
def list_reviews(
    user_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    service: ReviewService = Depends(get_review_service),
) -> ReviewListResponse:
    ensure_owner_or_staff(current_user, user_id)
    reviews, total = service.list_user_reviews(user_id, page=page, limit=limit)
    return ReviewListResponse(
        reviews=[ReviewOut.model_validate(review) for review in reviews],
        pagination=Pagination.build(page=page, per_page=limit, total=total),
    )


@router.get("/{user_id}/reading-history", response_model=ReadingHistoryResponse)
def reading_history(
    user_id: int,
    limit: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    analytics: AnalyticsService = Depends(get_analytics_service),
    books: BookService = Depends(get_book_service),
) -> ReadingHistoryResponse:
    """Per-book reading totals from logged sessions plus the latest sessions."""
    ensure_owner_or_staff(current_user, user_id)
    history = analytics.reading_history(user_id, recent_limit=limit)
    titles = books.titles_for([entry.book_id for entry in history.books])
    for entry in history.books:
        entry.title = titles.get(entry.book_id)
    return history


@router.get("/{user_id}/dashboard", response_model=UserDashboard)
def dashboard(
    user_id: int,
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
) -> UserDashboard:
    ensure_owner_or_staff(current_user, user_id)
    return service.dashboard(user_id)


@router.get("/{user_id}/recommendations", response_model=RecommendationsResponse)
def recommendations(
    user_id: int,
    limit: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
) -> RecommendationsResponse:
    """Favourite-genre picks first, then highly rated titles not yet borrowed."""
    ensure_owner_or_staff(current_user, user_id)
    return service.recommendations(user_id, limit=limit)
