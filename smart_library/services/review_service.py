from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from smart_library.core.errors import describe_integrity_error
from smart_library.db.session import get_session
from smart_library.models.book import Book
from smart_library.models.checkout import Checkout
from smart_library.models.review import Review
from smart_library.models.user import User
from smart_library.schemas.review import (
    RatingBucket,
    RecentReview,
    ReviewCreate,
    ReviewOut,
    ReviewSort,
    ReviewUpdate,
)

logger = logging.getLogger(__name__)

_SORTS = {
    "date": (Review.review_date.desc(), Review.id.desc()),
    "rating": (Review.rating.desc(), Review.review_date.desc()),
    "helpful": (Review.helpful_votes.desc(), Review.review_date.desc()),
}


class ReviewService:
    """Reviews and the rating aggregates they maintain on each book.

    Every write recomputes ``Book.average_rating`` and ``Book.total_reviews``
    from the remaining review rows inside the same transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def _handle_integrity_error(self, exc: IntegrityError) -> None:
        self.db.rollback()
        status_code, code, message = describe_integrity_error(exc)
        raise HTTPException(status_code=status_code, detail={"code": code, "message": message}) from exc

    def _lock_book(self, book_id: int) -> Optional[Book]:
        return self.db.execute(select(Book).where(Book.id == book_id).with_for_update()).scalar_one_or_none()

    def _get_review(self, review_id: int) -> Review:
        review = self.db.get(Review, review_id)
        if not review:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "review_not_found", "message": "Review not found."},
            )
        return review

    def _refresh_book_rating(self, book: Book) -> None:
        self.db.flush()
        average, count = self.db.execute(
            select(func.avg(Review.rating), func.count(Review.id)).where(Review.book_id == book.id)
        ).one()
        book.total_reviews = count or 0
        book.average_rating = float(average) if count else 0.0

    def _commit(self) -> None:
        try:
            self.db.commit()
        except IntegrityError as exc:
            self._handle_integrity_error(exc)

    # ---------------------------------------------------------------------- #
    # Writes
    # ---------------------------------------------------------------------- #
    def create_review(self, payload: ReviewCreate, user: User) -> tuple[Review, Book]:
        try:
            book = self._lock_book(payload.book_id)
            if not book or not book.is_active:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail={"code": "book_not_found", "message": "Book not found."},
                )

            has_borrowed = self.db.scalar(
                select(Checkout.id).where(Checkout.user_id == user.id, Checkout.book_id == book.id).limit(1)
            )
            if not has_borrowed:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail={"code": "must_borrow_first", "message": "You must borrow this book before reviewing it."},
                )

            existing = self.db.scalar(
                select(Review.id).where(Review.user_id == user.id, Review.book_id == book.id)
            )
            if existing:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail={"code": "already_reviewed", "message": "You have already reviewed this book."},
                )

            review = Review(
                user_id=user.id,
                book_id=book.id,
                rating=payload.rating,
                comment=payload.comment,
                review_date=datetime.now(timezone.utc),
                is_verified=True,
                helpful_votes=0,
            )
            self.db.add(review)
            self._refresh_book_rating(book)
        except HTTPException:
            self.db.rollback()
            raise
        except IntegrityError as exc:
            self._handle_integrity_error(exc)

        self._commit()
        logger.info("Review id=%s created for book id=%s by user id=%s", review.id, book.id, user.id)
        return review, book

    def update_review(self, review_id: int, payload: ReviewUpdate, user: User) -> tuple[Review, Book]:
        review = self._get_review(review_id)
        if review.user_id != user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": "ownership_required", "message": "You can only edit your own reviews."},
            )

        book = self._lock_book(review.book_id)
        update_data = payload.model_dump(exclude_unset=True)
        if "rating" in update_data and update_data["rating"] is not None:
            review.rating = update_data["rating"]
        if "comment" in update_data:
            review.comment = update_data["comment"]
        review.review_date = datetime.now(timezone.utc)
        self._refresh_book_rating(book)
        self._commit()
        return review, book

    def delete_review(self, review_id: int, user: User) -> Book:
        review = self._get_review(review_id)
        if review.user_id != user.id and not user.is_staff:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": "ownership_required", "message": "You can only delete your own reviews."},
            )

        book = self._lock_book(review.book_id)
        self.db.delete(review)
        self._refresh_book_rating(book)
        self._commit()
        logger.info("Review id=%s deleted by user id=%s", review_id, user.id)
        return book

    def mark_helpful(self, review_id: int, user: User) -> Review:
        review = self._get_review(review_id)
        if review.user_id == user.id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "cannot_mark_own_review", "message": "You cannot mark your own review as helpful."},
            )
        review.helpful_votes = Review.helpful_votes + 1
        self._commit()
        self.db.refresh(review)
        return review

    # ---------------------------------------------------------------------- #
    # Reads
    # ---------------------------------------------------------------------- #
    def list_book_reviews(
        self,
        book_id: int,
        *,
        sort: ReviewSort = "date",
        page: int = 1,
        limit: int = 10,
    ) -> tuple[Book, list[Review], int, list[RatingBucket]]:
        book = self.db.get(Book, book_id)
        if not book:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "book_not_found", "message": "Book not found."},
            )

        base = select(Review).where(Review.book_id == book_id)
        total = self.db.scalar(select(func.count()).select_from(base.subquery())) or 0
        reviews = (
            self.db.execute(
                base.options(joinedload(Review.user), joinedload(Review.book))
                .order_by(*_SORTS[sort])
                .offset((page - 1) * limit)
                .limit(limit)
            )
            .scalars()
            .all()
        )

        counts = dict(
            self.db.execute(
                select(Review.rating, func.count(Review.id))
                .where(Review.book_id == book_id)
                .group_by(Review.rating)
            ).all()
        )
        distribution = [RatingBucket(rating=rating, count=counts.get(rating, 0)) for rating in range(5, 0, -1)]
        return book, list(reviews), total, distribution

    def list_user_reviews(self, user_id: int, *, page: int = 1, limit: int = 10) -> tuple[list[Review], int]:
        base = select(Review).where(Review.user_id == user_id)
        total = self.db.scalar(select(func.count()).select_from(base.subquery())) or 0
        reviews = (
            self.db.execute(
                base.options(joinedload(Review.user), joinedload(Review.book))
                .order_by(Review.review_date.desc(), Review.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            .scalars()
            .all()
        )
        return list(reviews), total

    def recent_reviews(self, limit: int = 10) -> list[RecentReview]:
        reviews = (
            self.db.execute(
                select(Review)
                .join(Book, Book.id == Review.book_id)
                .where(Book.is_active.is_(True))
                .options(joinedload(Review.user), joinedload(Review.book))
                .order_by(Review.review_date.desc(), Review.id.desc())
                .limit(limit)
            )
            .scalars()
            .all()
        )
        return [
            RecentReview(
                **ReviewOut.model_validate(review).model_dump(),
                cover_image_url=review.book.cover_image_url,
                authors=review.book.authors,
            )
            for review in reviews
        ]


def get_review_service(db: Session = Depends(get_session)) -> ReviewService:
    return ReviewService(db)
