from __future__ import annotations

from typing import Any, Mapping, Optional

from pydantic import BaseModel, EmailStr, Field, ValidationError
from sqlalchemy import case, func, select, text
from sqlalchemy.orm import Session

from smart_library.models.checkout import Checkout
from smart_library.models.review import Review
from smart_library.models.user import User
from smart_library.schemas.user import UserStatistics


class _EmailLookup(BaseModel):
    """Internal schema used to validate inbound email lookups."""

    email: EmailStr = Field(max_length=100)


def _validated_email(email: str) -> str:
    """Validate and normalise an email string before use in queries."""
    try:
        payload = _EmailLookup(email=email)
    except ValidationError as exc:
        raise ValueError("Invalid email address provided.") from exc
    return payload.email


def get_user_by_email(email: str, db: Session) -> Optional[User]:
    """
    Fetch a User using a parameterised ORM query.

    Parameters
    ----------
    email:
        Lookup email captured from user input.
    db:
        Active SQLAlchemy session.
    """

    validated_email = _validated_email(email)
    stmt = select(User).where(User.email == validated_email)
    return db.execute(stmt).scalar_one_or_none()


def get_user_by_username(username: str, db: Session) -> Optional[User]:
    stmt = select(User).where(User.username == username)
    return db.execute(stmt).scalar_one_or_none()


def get_user_by_login(login: str, db: Session) -> Optional[User]:
    """Resolve a login identifier that may be either a username or an email."""
    login = login.strip()
    if "@" in login:
        return get_user_by_email(login, db)
    return get_user_by_username(login, db)


def get_user_credentials_raw(email: str, db: Session) -> Optional[Mapping[str, Any]]:
    """
    Fetch minimal user credentials using a parameterised raw SQL statement.

    The query uses SQLAlchemy's ``text`` construct with named parameters so user input
    is always bound safely and cannot mutate the SQL structure.
    """

    validated_email = _validated_email(email)
    stmt = text(
        "SELECT id, username, email, password_hash, role, is_active "
        "FROM users "
        "WHERE email = :email"
    )

    return db.execute(stmt, {"email": validated_email}).mappings().one_or_none()


def get_user_statistics(user_id: int, db: Session) -> UserStatistics:
    """Aggregate checkout and review counts for a single user."""
    checkout_stmt = select(
        func.count(Checkout.id),
        func.coalesce(func.sum(case((Checkout.is_returned.is_(False), 1), else_=0)), 0),
        func.coalesce(func.sum(case((Checkout.is_late.is_(True), 1), else_=0)), 0),
    ).where(Checkout.user_id == user_id)
    total, active, late = db.execute(checkout_stmt).one()
    total_reviews = db.scalar(select(func.count(Review.id)).where(Review.user_id == user_id))
    return UserStatistics(
        total_checkouts=total or 0,
        active_checkouts=int(active or 0),
        late_returns=int(late or 0),
        total_reviews=total_reviews or 0,
    )
