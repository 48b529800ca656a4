from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

from fastapi import Depends, HTTPException, status
from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from smart_library.db.session import get_session
from smart_library.models.book import Author, Book, BookAuthor
from smart_library.models.checkout import Checkout
from smart_library.models.review import Review
from smart_library.models.user import User
from smart_library.schemas.book import BookDetail, BookOut, PopularBook, ReviewPreview, SortColumn

PopularPeriod = Literal["week", "month", "year", "all"]

_PERIOD_DAYS = {"week": 7, "month": 30, "year": 365}

_SORT_COLUMNS = {
    "title": Book.title,
    "publication_date": Book.publication_date,
    "average_rating": Book.average_rating,
    "total_borrowed": Book.total_borrowed,
}


def _author_matches(pattern: str):
    return Book.author_links.any(BookAuthor.author.has(Author.name.ilike(pattern)))


class BookService:
    """Read-side catalog queries: browsing, popularity and book detail."""

    def __init__(self, db: Session):
        self.db = db

    def get_book_by_id(self, book_id: int, include_retired: bool = False) -> Book:
        book = self.db.get(Book, book_id)
        if not book or (not book.is_active and not include_retired):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "book_not_found", "message": "Book not found."},
            )
        return book

    def list_books(
        self,
        *,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
        genre: Optional[str] = None,
        author: Optional[str] = None,
        publisher: Optional[str] = None,
        available_only: bool = False,
        sort_by: SortColumn = "title",
        sort_order: Literal["asc", "desc"] = "asc",
    ) -> tuple[list[Book], int]:
        stmt = select(Book).where(Book.is_active.is_(True))

        if available_only:
            stmt = stmt.where(Book.available_copies > 0)
        if genre:
            stmt = stmt.where(Book.genre == genre)
        if publisher:
            stmt = stmt.where(Book.publisher.ilike(f"%{publisher.strip()}%"))
        if author:
            stmt = stmt.where(_author_matches(f"%{author.strip()}%"))
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(
                or_(
                    Book.title.ilike(pattern),
                    Book.description.ilike(pattern),
                    _author_matches(pattern),
                )
            )

        total = self.db.scalar(select(func.count()).select_from(stmt.subquery())) or 0

        column = _SORT_COLUMNS[sort_by]
        ordering = column.desc() if sort_order == "desc" else column.asc()
        books = (
            self.db.execute(stmt.order_by(ordering, Book.id.asc()).offset((page - 1) * limit).limit(limit))
            .scalars()
            .all()
        )
        return list(books), total

    def available_genres(self) -> list[str]:
        stmt = (
            select(Book.genre)
            .where(Book.is_active.is_(True), Book.genre.is_not(None))
            .distinct()
            .order_by(Book.genre)
        )
        return list(self.db.execute(stmt).scalars().all())

    def popular_books(self, period: PopularPeriod = "month", limit: int = 10) -> list[PopularBook]:
        join_condition = Checkout.book_id == Book.id
        if period in _PERIOD_DAYS:
            cutoff = datetime.now(timezone.utc) - timedelta(days=_PERIOD_DAYS[period])
            join_condition = and_(join_condition, Checkout.checkout_date >= cutoff)

        recent = func.count(Checkout.id).label("recent_checkouts")
        rows = self.db.execute(
            select(Book, recent)
            .outerjoin(Checkout, join_condition)
            .where(Book.is_active.is_(True))
            .group_by(Book.id)
            .order_by(recent.desc(), Book.average_rating.desc(), Book.id.asc())
            .limit(limit)
        ).all()

        return [
            PopularBook(
                id=book.id,
                title=book.title,
                cover_image_url=book.cover_image_url,
                average_rating=round(book.average_rating or 0.0, 2),
                total_reviews=book.total_reviews,
                recent_checkouts=count,
                authors=book.authors,
            )
            for book, count in rows
        ]

    def get_book_detail(self, book_id: int, viewer: Optional[User] = None) -> BookDetail:
        book = self.get_book_by_id(book_id, include_retired=bool(viewer and viewer.is_staff))
        reviews = (
            self.db.execute(
                select(Review)
                .where(Review.book_id == book.id)
                .order_by(Review.review_date.desc(), Review.id.desc())
                .limit(5)
            )
            .scalars()
            .all()
        )
        base = BookOut.model_validate(book).model_dump()
        return BookDetail(
            **base,
            checked_out_copies=book.checked_out_copies,
            recent_reviews=[
                ReviewPreview(
                    id=review.id,
                    rating=review.rating,
                    comment=review.comment,
                    reviewer_name=review.reviewer_name,
                    review_date=review.review_date,
                )
                for review in reviews
            ],
        )

    def titles_for(self, book_ids: list[int]) -> dict[int, str]:
        if not book_ids:
            return {}
        rows = self.db.execute(select(Book.id, Book.title).where(Book.id.in_(book_ids))).all()
        return {book_id: title for book_id, title in rows}


def get_book_service(db: Session = Depends(get_session)) -> BookService:
    return BookService(db)
