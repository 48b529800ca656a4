from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from smart_library.models.user import Base


class Author(Base):
    __tablename__ = "authors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"Author(id={self.id!r}, name={self.name!r})"


class BookAuthor(Base):
    """Ordered link between a book and one of its authors."""

    __tablename__ = "book_authors"

    book_id: Mapped[int] = mapped_column(ForeignKey("books.id", ondelete="CASCADE"), primary_key=True)
    author_id: Mapped[int] = mapped_column(ForeignKey("authors.id", ondelete="CASCADE"), primary_key=True)
    author_order: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    book: Mapped["Book"] = relationship("Book", back_populates="author_links")
    author: Mapped[Author] = relationship("Author", lazy="joined")


class Book(Base):
    """Catalog entry with copy counts and aggregated review statistics."""

    __tablename__ = "books"
    __table_args__ = (
        CheckConstraint(
            "available_copies >= 0 AND available_copies <= total_copies",
            name="ck_books_copies",
        ),
        CheckConstraint("average_rating >= 0 AND average_rating <= 5", name="ck_books_rating"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    isbn: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, unique=True)
    publisher: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    publication_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    genre: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    language: Mapped[str] = mapped_column(String(30), nullable=False, default="English", server_default="English")
    pages: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    total_copies: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    available_copies: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    is_ebook: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    cover_image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    average_rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default="0")
    total_reviews: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_borrowed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    author_links: Mapped[list[BookAuthor]] = relationship(
        "BookAuthor",
        back_populates="book",
        order_by="BookAuthor.author_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def authors(self) -> list[str]:
        return [link.author.name for link in self.author_links]

    @property
    def is_available(self) -> bool:
        return self.is_active and self.available_copies > 0

    @property
    def availability_status(self) -> str:
        if not self.is_active:
            return "retired"
        return "available" if self.available_copies > 0 else "unavailable"

    @property
    def checked_out_copies(self) -> int:
        return self.total_copies - self.available_copies

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"Book(id={self.id!r}, title={self.title!r})"
