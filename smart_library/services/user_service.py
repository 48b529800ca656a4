from __future__ import annotations

import math
from datetime import datetime, timezone

from fastapi import Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from smart_library.crud.user import get_user_statistics
from smart_library.db.session import get_session
from smart_library.models.book import Book
from smart_library.models.checkout import Checkout
from smart_library.models.review import Review
from smart_library.models.user import User
from smart_library.schemas.book import BookOut
from smart_library.schemas.checkout import CheckoutOut
from smart_library.schemas.review import ReviewOut
from smart_library.schemas.user import (
    GenreCount,
    Recommendation,
    RecommendationsResponse,
    UserDashboard,
    user_to_schema,
)

HIGHLY_RATED_MIN_RATING = 4.0
HIGHLY_RATED_MIN_REVIEWS = 5
FAVORITE_GENRE_LIMIT = 3
GENRE_SHARE = 0.7


class UserService:
    """Per-user reading overview: dashboard and recommendations."""

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> User:
        user = self.db.get(User, user_id)
        if not user:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "user_not_found", "message": "User not found."},
            )
        return user

    def favorite_genres(self, user_id: int, limit: int = FAVORITE_GENRE_LIMIT) -> list[GenreCount]:
        read_count = func.count(Checkout.id).label("read_count")
        rows = self.db.execute(
            select(Book.genre, read_count)
            .join(Checkout, Checkout.book_id == Book.id)
            .where(Checkout.user_id == user_id, Book.genre.is_not(None))
            .group_by(Book.genre)
            .order_by(read_count.desc(), Book.genre.asc())
            .limit(limit)
        ).all()
        return [GenreCount(genre=genre, count=count) for genre, count in rows]

    def dashboard(self, user_id: int) -> UserDashboard:
        user = self.get_user(user_id)
        today = datetime.now(timezone.utc).date()

        active = (
            self.db.execute(
                select(Checkout)
                .where(Checkout.user_id == user_id, Checkout.is_returned.is_(False))
                .options(joinedload(Checkout.book))
                .order_by(Checkout.due_date.asc())
            )
            .scalars()
            .all()
        )
        recent_reviews = (
            self.db.execute(
                select(Review)
                .where(Review.user_id == user_id)
                .options(joinedload(Review.user), joinedload(Review.book))
                .order_by(Review.review_date.desc(), Review.id.desc())
                .limit(5)
            )
            .scalars()
            .all()
        )
        total_fees = self.db.scalar(
            select(func.coalesce(func.sum(Checkout.late_fee), 0)).where(Checkout.user_id == user_id)
        )

        return UserDashboard(
            user=user_to_schema(user),
            statistics=get_user_statistics(user_id, self.db),
            current_checkouts=[CheckoutOut.model_validate(checkout) for checkout in active],
            overdue_count=sum(1 for checkout in active if checkout.due_date < today),
            total_late_fees=float(total_fees or 0),
            recent_reviews=[ReviewOut.model_validate(review) for review in recent_reviews],
            favorite_genres=self.favorite_genres(user_id),
        )

    def recommendations(self, user_id: int, limit: int = 10) -> RecommendationsResponse:
        self.get_user(user_id)
        genres = [row.genre for row in self.favorite_genres(user_id)]
        borrowed = select(Checkout.book_id).where(Checkout.user_id == user_id)
        candidates = select(Book).where(
            Book.is_active.is_(True),
            Book.available_copies > 0,
            Book.id.not_in(borrowed),
        )
        ordering = (Book.average_rating.desc(), Book.total_reviews.desc(), Book.id.asc())

        picks: list[Recommendation] = []
        if genres:
            genre_books = (
                self.db.execute(
                    candidates.where(Book.genre.in_(genres))
                    .order_by(*ordering)
                    .limit(math.ceil(limit * GENRE_SHARE))
                )
                .scalars()
                .all()
            )
            picks.extend(Recommendation(book=BookOut.model_validate(book), reason="favorite_genre") for book in genre_books)

        remaining = limit - len(picks)
        if remaining > 0:
            chosen = [pick.book.id for pick in picks]
            stmt = candidates.where(
                Book.average_rating >= HIGHLY_RATED_MIN_RATING,
                Book.total_reviews >= HIGHLY_RATED_MIN_REVIEWS,
            )
            if chosen:
                stmt = stmt.where(Book.id.not_in(chosen))
            rated_books = self.db.execute(stmt.order_by(*ordering).limit(remaining)).scalars().all()
            picks.extend(Recommendation(book=BookOut.model_validate(book), reason="highly_rated") for book in rated_books)

        return RecommendationsResponse(recommendations=picks, favorite_genres=genres)


def get_user_service(db: Session = Depends(get_session)) -> UserService:
    return UserService(db)
