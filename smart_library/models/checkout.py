from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from smart_library.models.book import Book
from smart_library.models.user import Base, User


class Checkout(Base):
    """A single loan of one book copy to one user."""

    __tablename__ = "checkouts"
    __table_args__ = (
        Index("ix_checkouts_user_book", "user_id", "book_id"),
        Index("ix_checkouts_returned_due", "is_returned", "due_date"),
        Index("ix_checkouts_book_date", "book_id", "checkout_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    book_id: Mapped[int] = mapped_column(ForeignKey("books.id", ondelete="CASCADE"), nullable=False)
    checkout_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    return_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_returned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    is_late: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    late_fee: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00"),
        server_default="0",
    )
    staff_checkout_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    staff_return_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    user: Mapped[User] = relationship("User", back_populates="checkouts", foreign_keys=[user_id])
    book: Mapped[Book] = relationship("Book")

    def days_overdue(self, today: date) -> int:
        if self.is_returned:
            return 0
        return max(0, (today - self.due_date).days)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return (
            f"Checkout(id={self.id!r}, user_id={self.user_id!r}, book_id={self.book_id!r}, "
            f"is_returned={self.is_returned!r})"
        )
