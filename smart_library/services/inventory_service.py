from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional

from fastapi import Depends, HTTPException, status
from sqlalchemy import and_, case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from smart_library.core.errors import describe_integrity_error
from smart_library.db.session import get_session
from smart_library.models.book import Author, Book, BookAuthor
from smart_library.models.checkout import Checkout
from smart_library.models.staff_log import LogTarget, StaffAction, StaffLog
from smart_library.models.user import User, UserRole
from smart_library.schemas.admin import (
    LowAvailabilityRow,
    MostBorrowedRow,
    ReportRow,
    ReportType,
    TopReaderRow,
)
from smart_library.schemas.book import BookCreate, BookUpdate
from smart_library.services.audit import ClientInfo, record_staff_action

logger = logging.getLogger(__name__)

LOW_AVAILABILITY_RATIO = 0.2

_SNAPSHOT_FIELDS = (
    "title",
    "isbn",
    "publisher",
    "publication_date",
    "genre",
    "language",
    "pages",
    "description",
    "is_ebook",
    "cover_image_url",
)


def _snapshot(book: Book, fields: tuple[str, ...] = _SNAPSHOT_FIELDS) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for field in fields:
        value = getattr(book, field)
        values[field] = value.isoformat() if isinstance(value, date) else value
    return values


class InventoryService:
    """Staff-side catalog maintenance, reports and the audit trail."""

    def __init__(self, db: Session):
        self.db = db

    def _handle_integrity_error(self, exc: IntegrityError) -> None:
        self.db.rollback()
        status_code, code, message = describe_integrity_error(exc)
        raise HTTPException(status_code=status_code, detail={"code": code, "message": message}) from exc

    def _commit(self) -> None:
        try:
            self.db.commit()
        except IntegrityError as exc:
            self._handle_integrity_error(exc)

    def _lock_active_book(self, book_id: int) -> Book:
        book = self.db.execute(select(Book).where(Book.id == book_id).with_for_update()).scalar_one_or_none()
        if not book or not book.is_active:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "book_not_found", "message": "Book not found or already retired."},
            )
        return book

    def _get_or_create_author(self, name: str) -> Author:
        author = self.db.execute(select(Author).where(Author.name == name).limit(1)).scalar_one_or_none()
        if author is None:
            author = Author(name=name)
            self.db.add(author)
            self.db.flush()
        return author

    def _set_authors(self, book: Book, names: list[str]) -> None:
        book.author_links.clear()
        self.db.flush()
        seen: set[int] = set()
        for name in names:
            author = self._get_or_create_author(name)
            if author.id in seen:
                continue
            seen.add(author.id)
            book.author_links.append(BookAuthor(author=author, author_order=len(seen)))

    # ---------------------------------------------------------------------- #
    # Book maintenance
    # ---------------------------------------------------------------------- #
    def add_book(
        self,
        payload: BookCreate,
        staff: User,
        client: Optional[ClientInfo] = None,
    ) -> tuple[Book, bool]:
        """Insert a new book, or grow the inventory of the book holding the same ISBN.

        Returns the book and whether a new row was created.
        """
        try:
            if payload.isbn:
                existing = self.db.execute(
                    select(Book).where(Book.isbn == payload.isbn).with_for_update()
                ).scalar_one_or_none()
                if existing is not None:
                    old = {"total_copies": existing.total_copies, "available_copies": existing.available_copies}
                    existing.total_copies += payload.total_copies
                    existing.available_copies += payload.total_copies
                    record_staff_action(
                        self.db,
                        staff=staff,
                        action=StaffAction.UPDATE_INVENTORY,
                        target_type=LogTarget.BOOK,
                        target_id=existing.id,
                        description="Inventory increased for duplicate ISBN",
                        old_values=old,
                        new_values={
                            "total_copies": existing.total_copies,
                            "available_copies": existing.available_copies,
                        },
                        client=client,
                    )
                    self.db.commit()
                    return existing, False

            data = payload.model_dump(exclude={"authors"})
            book = Book(
                **data,
                available_copies=payload.total_copies,
                average_rating=0.0,
                total_reviews=0,
                total_borrowed=0,
                is_active=True,
            )
            self.db.add(book)
            self.db.flush()
            self._set_authors(book, payload.authors)
            record_staff_action(
                self.db,
                staff=staff,
                action=StaffAction.ADD_BOOK,
                target_type=LogTarget.BOOK,
                target_id=book.id,
                description=f"Book added: {book.title}",
                new_values={**_snapshot(book), "total_copies": book.total_copies, "authors": payload.authors},
                client=client,
            )
            self.db.commit()
        except IntegrityError as exc:
            self._handle_integrity_error(exc)

        self.db.refresh(book)
        return book, True

    def update_book(
        self,
        book_id: int,
        payload: BookUpdate,
        staff: User,
        client: Optional[ClientInfo] = None,
    ) -> Book:
        book = self._lock_active_book(book_id)
        update_data = payload.model_dump(exclude_unset=True)
        authors = update_data.pop("authors", None)
        for required in ("title", "language", "is_ebook"):
            if required in update_data and update_data[required] is None:
                update_data.pop(required)
        if not update_data and authors is None:
            self.db.rollback()
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "no_changes", "message": "No valid fields to update."},
            )

        old_values = _snapshot(book, tuple(update_data))
        for field, value in update_data.items():
            setattr(book, field, value)
        if authors is not None:
            old_values["authors"] = book.authors
            self._set_authors(book, [name.strip() for name in authors if name.strip()])

        new_values = _snapshot(book, tuple(update_data))
        if authors is not None:
            new_values["authors"] = authors
        record_staff_action(
            self.db,
            staff=staff,
            action=StaffAction.UPDATE_BOOK,
            target_type=LogTarget.BOOK,
            target_id=book.id,
            description=f"Book updated: {book.title}",
            old_values=old_values,
            new_values=new_values,
            client=client,
        )
        self._commit()
        self.db.refresh(book)
        return book

    def update_inventory(
        self,
        book_id: int,
        new_total: int,
        staff: User,
        client: Optional[ClientInfo] = None,
    ) -> tuple[Book, int, int]:
        book = self._lock_active_book(book_id)
        checked_out = book.total_copies - book.available_copies
        if new_total < checked_out:
            self.db.rollback()
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={
                    "code": "copies_checked_out",
                    "message": f"Cannot reduce total copies below {checked_out}; that many copies are checked out.",
                },
            )

        old_total, old_available = book.total_copies, book.available_copies
        book.total_copies = new_total
        book.available_copies = old_available + (new_total - old_total)
        record_staff_action(
            self.db,
            staff=staff,
            action=StaffAction.UPDATE_INVENTORY,
            target_type=LogTarget.BOOK,
            target_id=book.id,
            description=f"Inventory updated for {book.title}",
            old_values={"total_copies": old_total, "available_copies": old_available},
            new_values={"total_copies": book.total_copies, "available_copies": book.available_copies},
            client=client,
        )
        self._commit()
        logger.info("Book id=%s inventory %s -> %s", book.id, old_total, new_total)
        return book, old_total, old_available

    def retire_book(self, book_id: int, staff: User, client: Optional[ClientInfo] = None) -> Book:
        book = self._lock_active_book(book_id)
        active = self.db.scalar(
            select(func.count(Checkout.id)).where(
                Checkout.book_id == book.id,
                Checkout.is_returned.is_(False),
            )
        )
        if active:
            self.db.rollback()
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"code": "active_checkouts", "message": "Cannot retire a book with active checkouts."},
            )

        old_values = {"is_active": book.is_active, "available_copies": book.available_copies}
        book.is_active = False
        book.available_copies = 0
        record_staff_action(
            self.db,
            staff=staff,
            action=StaffAction.RETIRE_BOOK,
            target_type=LogTarget.BOOK,
            target_id=book.id,
            description=f"Book retired: {book.title}",
            old_values=old_values,
            new_values={"is_active": False, "available_copies": 0},
            client=client,
        )
        self._commit()
        logger.info("Book id=%s retired by user id=%s", book.id, staff.id)
        return book

    # ---------------------------------------------------------------------- #
    # Reports
    # ---------------------------------------------------------------------- #
    def report(
        self,
        report_type: ReportType,
        start: date,
        end: date,
        limit: int = 10,
    ) -> list[ReportRow]:
        if end < start:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "invalid_date_range", "message": "endDate must not be before startDate."},
            )
        window_start = datetime.combine(start, time.min, tzinfo=timezone.utc)
        window_end = datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc)

        if report_type == "most_borrowed":
            return self._most_borrowed(window_start, window_end, limit)
        if report_type == "top_readers":
            return self._top_readers(window_start, window_end, limit)
        return self._low_availability(limit)

    def _most_borrowed(self, window_start: datetime, window_end: datetime, limit: int) -> list[ReportRow]:
        count = func.count(Checkout.id).label("checkout_count")
        rows = self.db.execute(
            select(Book, count)
            .outerjoin(
                Checkout,
                and_(
                    Checkout.book_id == Book.id,
                    Checkout.checkout_date >= window_start,
                    Checkout.checkout_date < window_end,
                ),
            )
            .where(Book.is_active.is_(True))
            .group_by(Book.id)
            .order_by(count.desc(), Book.average_rating.desc(), Book.id.asc())
            .limit(limit)
        ).all()
        return [
            MostBorrowedRow(
                book_id=book.id,
                title=book.title,
                authors=book.authors,
                checkout_count=checkouts,
                total_borrowed=book.total_borrowed,
                average_rating=round(book.average_rating or 0.0, 2),
            )
            for book, checkouts in rows
        ]

    def _top_readers(self, window_start: datetime, window_end: datetime, limit: int) -> list[ReportRow]:
        total = func.count(Checkout.id).label("total_checkouts")
        active = func.sum(case((Checkout.is_returned.is_(False), 1), else_=0)).label("active_checkouts")
        rows = self.db.execute(
            select(User, total, active)
            .join(Checkout, Checkout.user_id == User.id)
            .where(
                User.role == UserRole.READER,
                User.is_active.is_(True),
                Checkout.checkout_date >= window_start,
                Checkout.checkout_date < window_end,
            )
            .group_by(User.id)
            .order_by(total.desc(), User.id.asc())
            .limit(limit)
        ).all()
        return [
            TopReaderRow(
                user_id=user.id,
                username=user.username,
                name=user.full_name,
                total_checkouts=checkouts,
                active_checkouts=int(active_count or 0),
            )
            for user, checkouts, active_count in rows
        ]

    def _low_availability(self, limit: int) -> list[ReportRow]:
        books = (
            self.db.execute(
                select(Book).where(
                    Book.is_active.is_(True),
                    Book.total_copies > 0,
                    Book.available_copies < Book.total_copies * LOW_AVAILABILITY_RATIO,
                )
            )
            .scalars()
            .all()
        )
        rows = [
            LowAvailabilityRow(
                book_id=book.id,
                title=book.title,
                genre=book.genre,
                authors=book.authors,
                total_copies=book.total_copies,
                available_copies=book.available_copies,
                availability_percentage=round(book.available_copies / book.total_copies * 100, 2),
            )
            for book in books
        ]
        rows.sort(key=lambda row: (row.availability_percentage, row.book_id))
        return rows[:limit]

    # ---------------------------------------------------------------------- #
    # Audit trail
    # ---------------------------------------------------------------------- #
    def list_staff_logs(
        self,
        *,
        page: int = 1,
        limit: int = 20,
        action_type: Optional[StaffAction] = None,
        staff_id: Optional[int] = None,
        target_type: Optional[LogTarget] = None,
        target_id: Optional[int] = None,
    ) -> tuple[list[StaffLog], int]:
        stmt = select(StaffLog)
        if action_type is not None:
            stmt = stmt.where(StaffLog.action_type == action_type)
        if staff_id is not None:
            stmt = stmt.where(StaffLog.staff_id == staff_id)
        if target_type is not None:
            stmt = stmt.where(StaffLog.target_type == target_type)
        if target_id is not None:
            stmt = stmt.where(StaffLog.target_id == target_id)

        total = self.db.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        logs = (
            self.db.execute(
                stmt.options(joinedload(StaffLog.staff))
                .order_by(StaffLog.action_date.desc(), StaffLog.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            .scalars()
            .all()
        )
        return list(logs), total


def get_inventory_service(db: Session = Depends(get_session)) -> InventoryService:
    return InventoryService(db)
