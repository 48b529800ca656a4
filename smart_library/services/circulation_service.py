from __future__ import annotations

import logging
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from fastapi import Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from smart_library.core.errors import describe_integrity_error
from smart_library.core.settings import LibrarySettings, get_library_settings
from smart_library.db.session import get_session
from smart_library.models.book import Book
from smart_library.models.checkout import Checkout
from smart_library.models.staff_log import LogTarget, StaffAction
from smart_library.models.user import User
from smart_library.schemas.checkout import (
    BorrowRequest,
    CheckoutDetail,
    CheckoutOut,
    CheckoutStatistics,
    CheckoutStatusFilter,
    CirculationBook,
    MonthlyCirculation,
    OverdueCheckout,
)
from smart_library.services.audit import ClientInfo, record_staff_action

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CirculationService:
    """Borrow and return workflows plus circulation reporting.

    Borrow and return each run as one transaction that locks the book row
    with ``SELECT ... FOR UPDATE`` before touching its copy counts, so
    concurrent requests for the last copy are serialised by the database.
    """

    def __init__(self, db: Session, settings: LibrarySettings):
        self.db = db
        self.settings = settings

    # ---------------------------------------------------------------------- #
    # Helpers
    # ---------------------------------------------------------------------- #
    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _handle_integrity_error(self, exc: IntegrityError) -> None:
        self.db.rollback()
        status_code, code, message = describe_integrity_error(exc)
        raise HTTPException(status_code=status_code, detail={"code": code, "message": message}) from exc

    def _lock_book(self, book_id: int) -> Book:
        stmt = select(Book).where(Book.id == book_id).with_for_update()
        book = self.db.execute(stmt).scalar_one_or_none()
        if not book:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "book_not_found", "message": "Book not found."},
            )
        return book

    def _get_checkout(self, checkout_id: int, lock: bool = False) -> Checkout:
        stmt = select(Checkout).where(Checkout.id == checkout_id)
        if lock:
            stmt = stmt.with_for_update()
        checkout = self.db.execute(stmt).scalar_one_or_none()
        if not checkout:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "checkout_not_found", "message": "Checkout not found."},
            )
        return checkout

    def _ensure_can_access(self, checkout: Checkout, actor: User) -> None:
        if actor.is_staff or checkout.user_id == actor.id:
            return
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "ownership_required", "message": "You do not have permission to access this checkout."},
        )

    def _resolve_borrower(self, payload: BorrowRequest, actor: User) -> User:
        borrower_id = actor.id if payload.user_id is None else payload.user_id
        if borrower_id != actor.id and not actor.is_staff:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": "insufficient_permissions", "message": "Only staff can borrow on behalf of another user."},
            )
        # Row lock keeps the open checkout count stable until commit
        stmt = (
            select(User)
            .where(User.id == borrower_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        borrower = self.db.execute(stmt).scalar_one_or_none()
        if not borrower:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "user_not_found", "message": "User not found."},
            )
        return borrower

    def _loan_period(self, requested: Optional[int]) -> int:
        period = requested or self.settings.loan_period_days
        if period < 1 or period > self.settings.max_loan_period_days:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "code": "invalid_loan_period",
                    "message": f"Loan period must be between 1 and {self.settings.max_loan_period_days} days.",
                },
            )
        return period

    def late_fee_for(self, days_late: int) -> Decimal:
        return (Decimal(days_late) * self.settings.late_fee_per_day).quantize(_CENT, rounding=ROUND_HALF_UP)

    # ---------------------------------------------------------------------- #
    # Borrow / return
    # ---------------------------------------------------------------------- #
    def borrow_book(
        self,
        payload: BorrowRequest,
        actor: User,
        client: Optional[ClientInfo] = None,
    ) -> Checkout:
        try:
            checkout = self._borrow(payload, actor, client)
            self.db.commit()
        except HTTPException:
            self.db.rollback()
            raise
        except IntegrityError as exc:
            self._handle_integrity_error(exc)

        logger.info(
            "Checkout id=%s: book id=%s borrowed by user id=%s, due %s",
            checkout.id,
            checkout.book_id,
            checkout.user_id,
            checkout.due_date,
        )
        return checkout

    def _borrow(self, payload: BorrowRequest, actor: User, client: Optional[ClientInfo]) -> Checkout:
        borrower = self._resolve_borrower(payload, actor)
        if not borrower.is_active:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"code": "user_inactive", "message": "User account is not active."},
            )
        period = self._loan_period(payload.loan_period_days)

        book = self._lock_book(payload.book_id)
        if not book.is_active:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"code": "book_retired", "message": "This book is no longer in circulation."},
            )
        if book.available_copies <= 0:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"code": "not_available", "message": "No copies of this book are currently available."},
            )

        open_checkouts = self.db.execute(
            select(Checkout.book_id).where(
                Checkout.user_id == borrower.id,
                Checkout.is_returned.is_(False),
            )
        ).scalars().all()
        if book.id in open_checkouts:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"code": "already_borrowed", "message": "User already has this book checked out."},
            )
        if len(open_checkouts) >= self.settings.max_active_checkouts:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={
                    "code": "checkout_limit_reached",
                    "message": f"User already has {self.settings.max_active_checkouts} books checked out.",
                },
            )

        now = self._now()
        checkout = Checkout(
            user_id=borrower.id,
            book_id=book.id,
            checkout_date=now,
            due_date=now.date() + timedelta(days=period),
            staff_checkout_id=actor.id if actor.is_staff else None,
            notes=payload.notes,
        )
        book.available_copies -= 1
        book.total_borrowed += 1
        self.db.add(checkout)
        self.db.flush()

        record_staff_action(
            self.db,
            staff=actor,
            action=StaffAction.CHECKOUT_BOOK,
            target_type=LogTarget.BOOK,
            target_id=book.id,
            description=f"Book checked out: {book.title} to user {borrower.username}",
            new_values={
                "checkout_id": checkout.id,
                "user_id": borrower.id,
                "due_date": checkout.due_date.isoformat(),
                "available_copies": book.available_copies,
            },
            client=client,
        )
        return checkout

    def return_book(
        self,
        checkout_id: int,
        actor: User,
        notes: Optional[str] = None,
        client: Optional[ClientInfo] = None,
    ) -> Checkout:
        try:
            checkout = self._return(checkout_id, actor, notes, client)
            self.db.commit()
        except HTTPException:
            self.db.rollback()
            raise
        except IntegrityError as exc:
            self._handle_integrity_error(exc)

        logger.info(
            "Checkout id=%s returned (late=%s, fee=%s)",
            checkout.id,
            checkout.is_late,
            checkout.late_fee,
        )
        return checkout

    def _return(
        self,
        checkout_id: int,
        actor: User,
        notes: Optional[str],
        client: Optional[ClientInfo],
    ) -> Checkout:
        checkout = self._get_checkout(checkout_id, lock=True)
        self._ensure_can_access(checkout, actor)
        if checkout.is_returned:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"code": "already_returned", "message": "This book has already been returned."},
            )

        book = self._lock_book(checkout.book_id)
        now = self._now()
        days_late = max(0, (now.date() - checkout.due_date).days)

        checkout.is_returned = True
        checkout.return_date = now
        checkout.is_late = days_late > 0
        checkout.late_fee = self.late_fee_for(days_late)
        checkout.staff_return_id = actor.id if actor.is_staff else None
        if notes:
            checkout.notes = f"{checkout.notes}\n{notes}" if checkout.notes else notes

        book.available_copies = min(book.total_copies, book.available_copies + 1)

        record_staff_action(
            self.db,
            staff=actor,
            action=StaffAction.RETURN_BOOK,
            target_type=LogTarget.BOOK,
            target_id=book.id,
            description=f"Book returned: {book.title}",
            new_values={
                "checkout_id": checkout.id,
                "days_late": days_late,
                "late_fee": str(checkout.late_fee),
                "available_copies": book.available_copies,
            },
            client=client,
        )
        return checkout

    # ---------------------------------------------------------------------- #
    # Queries
    # ---------------------------------------------------------------------- #
    def list_user_checkouts(
        self,
        user_id: int,
        *,
        status_filter: CheckoutStatusFilter = "all",
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Checkout], int]:
        stmt = select(Checkout).where(Checkout.user_id == user_id)
        if status_filter == "active":
            stmt = stmt.where(Checkout.is_returned.is_(False))
        elif status_filter == "returned":
            stmt = stmt.where(Checkout.is_returned.is_(True))

        total = self.db.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        checkouts = (
            self.db.execute(
                stmt.options(joinedload(Checkout.book))
                .order_by(Checkout.checkout_date.desc(), Checkout.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            .scalars()
            .all()
        )
        return list(checkouts), total

    def get_checkout_detail(self, checkout_id: int, actor: User) -> CheckoutDetail:
        checkout = self._get_checkout(checkout_id)
        self._ensure_can_access(checkout, actor)
        base = CheckoutOut.model_validate(checkout).model_dump()
        return CheckoutDetail(
            **base,
            borrower_name=checkout.user.full_name,
            borrower_email=checkout.user.email,
            days_overdue=checkout.days_overdue(self._now().date()),
        )

    def list_overdue(self, *, page: int = 1, limit: int = 20) -> tuple[list[OverdueCheckout], int]:
        today = self._now().date()
        stmt = select(Checkout).where(Checkout.is_returned.is_(False), Checkout.due_date < today)
        total = self.db.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        rows = (
            self.db.execute(
                stmt.options(joinedload(Checkout.book), joinedload(Checkout.user))
                .order_by(Checkout.due_date.asc(), Checkout.id.asc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            .scalars()
            .all()
        )

        overdue = []
        for checkout in rows:
            days = checkout.days_overdue(today)
            overdue.append(
                OverdueCheckout(
                    id=checkout.id,
                    user_id=checkout.user_id,
                    book_id=checkout.book_id,
                    title=checkout.book.title,
                    borrower_name=checkout.user.full_name,
                    borrower_email=checkout.user.email,
                    checkout_date=checkout.checkout_date,
                    due_date=checkout.due_date,
                    days_overdue=days,
                    current_late_fee=float(self.late_fee_for(days)),
                )
            )
        return overdue, total

    def statistics(self) -> CheckoutStatistics:
        today = self._now().date()
        total = self.db.scalar(select(func.count(Checkout.id))) or 0
        active = self.db.scalar(select(func.count(Checkout.id)).where(Checkout.is_returned.is_(False))) or 0
        overdue = (
            self.db.scalar(
                select(func.count(Checkout.id)).where(
                    Checkout.is_returned.is_(False),
                    Checkout.due_date < today,
                )
            )
            or 0
        )
        late_returns = self.db.scalar(select(func.count(Checkout.id)).where(Checkout.is_late.is_(True))) or 0
        total_fees = self.db.scalar(select(func.coalesce(func.sum(Checkout.late_fee), 0))) or 0

        returned = self.db.execute(
            select(Checkout.checkout_date, Checkout.return_date).where(
                Checkout.is_returned.is_(True),
                Checkout.return_date.is_not(None),
            )
        ).all()
        loan_days = [
            (_as_utc(returned_at) - _as_utc(checked_out)).total_seconds() / 86400
            for checked_out, returned_at in returned
        ]
        average_loan_days = round(sum(loan_days) / len(loan_days), 1) if loan_days else 0.0

        most_borrowed_rows = self.db.execute(
            select(Book.id, Book.title, func.count(Checkout.id).label("checkout_count"))
            .join(Checkout, Checkout.book_id == Book.id)
            .group_by(Book.id, Book.title)
            .order_by(func.count(Checkout.id).desc(), Book.title.asc())
            .limit(5)
        ).all()

        return CheckoutStatistics(
            total_checkouts=total,
            active_checkouts=active,
            overdue_checkouts=overdue,
            late_returns=late_returns,
            average_loan_days=average_loan_days,
            total_late_fees=float(total_fees),
            monthly_trend=self._monthly_trend(today),
            most_borrowed=[
                CirculationBook(id=row.id, title=row.title, checkout_count=row.checkout_count)
                for row in most_borrowed_rows
            ],
        )

    def _monthly_trend(self, today: date) -> list[MonthlyCirculation]:
        months: list[str] = []
        year, month = today.year, today.month
        for _ in range(12):
            months.append(f"{year:04d}-{month:02d}")
            month -= 1
            if month == 0:
                year, month = year - 1, 12
        months.reverse()

        window_start = datetime(int(months[0][:4]), int(months[0][5:]), 1, tzinfo=timezone.utc)
        checkout_dates = self.db.execute(
            select(Checkout.checkout_date).where(Checkout.checkout_date >= window_start)
        ).scalars()
        return_dates = self.db.execute(
            select(Checkout.return_date).where(Checkout.return_date >= window_start)
        ).scalars()
        checkouts = Counter(_as_utc(value).strftime("%Y-%m") for value in checkout_dates)
        returns = Counter(_as_utc(value).strftime("%Y-%m") for value in return_dates)
        return [
            MonthlyCirculation(month=key, checkouts=checkouts.get(key, 0), returns=returns.get(key, 0))
            for key in months
        ]


def get_circulation_service(
    db: Session = Depends(get_session),
    settings: LibrarySettings = Depends(get_library_settings),
) -> CirculationService:
    return CirculationService(db, settings)
