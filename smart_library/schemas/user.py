from __future__ import annotations

import re
from datetime import datetime
from typing import Literal, Optional

from pydantic import ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from smart_library.models.user import User, UserRole
from smart_library.schemas.book import BookOut
from smart_library.schemas.checkout import CheckoutOut
from smart_library.schemas.common import CamelModel, ORMModel
from smart_library.schemas.review import ReviewOut

_USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{3,50}$")


def _check_password_strength(value: str) -> str:
    if len(value) < 8:
        raise ValueError("password must be at least 8 characters long")
    if not re.search(r"[A-Za-z]", value) or not re.search(r"\d", value):
        raise ValueError("password must contain both letters and digits")
    return value


class UserBase(CamelModel):
    username: str
    email: EmailStr
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    phone: Optional[str] = Field(default=None, max_length=20)
    address: Optional[str] = None

    @field_validator("username")
    @classmethod
    def validate_username(cls, value: str) -> str:
        if not _USERNAME_PATTERN.match(value):
            raise ValueError("username must be 3-50 characters of letters, digits, '_', '.' or '-'")
        return value


class UserCreate(UserBase):
    password: str = Field(repr=False)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        return _check_password_strength(value)


class UserLogin(CamelModel):
    username: str = Field(min_length=1, description="Username or email address")
    password: str = Field(min_length=1, repr=False)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class RefreshRequest(CamelModel):
    refresh_token: str


class PasswordChange(CamelModel):
    current_password: str = Field(repr=False)
    new_password: str = Field(repr=False)

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, value: str) -> str:
        return _check_password_strength(value)


class ProfileUpdate(CamelModel):
    email: Optional[EmailStr] = None
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    phone: Optional[str] = Field(default=None, max_length=20)
    address: Optional[str] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class UserAdminUpdate(CamelModel):
    role: Optional[Literal["reader", "staff", "admin"]] = None
    is_active: Optional[bool] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class UserOut(ORMModel):
    id: int
    username: str
    email: EmailStr
    first_name: str
    last_name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    role: UserRole
    is_active: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        use_enum_values=True,
    )


class UserStatistics(CamelModel):
    total_checkouts: int = 0
    active_checkouts: int = 0
    late_returns: int = 0
    total_reviews: int = 0


class ProfileOut(UserOut):
    statistics: UserStatistics


class TokenOut(CamelModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: int


class AuthResponse(CamelModel):
    message: str
    user: UserOut
    token: TokenOut


def user_to_schema(user: User) -> UserOut:
    """Convert a SQLAlchemy User instance to a UserOut schema."""
    return UserOut.model_validate(user)


def create_user_model(payload: UserCreate, password_hash: str) -> User:
    """Instantiate a User ORM object from a validated UserCreate payload."""
    return User(
        username=payload.username,
        email=payload.email,
        password_hash=password_hash,
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        address=payload.address,
        role=UserRole.READER,
    )


class GenreCount(CamelModel):
    genre: str
    count: int


class UserDashboard(CamelModel):
    user: UserOut
    statistics: UserStatistics
    current_checkouts: list[CheckoutOut]
    overdue_count: int
    total_late_fees: float
    recent_reviews: list[ReviewOut]
    favorite_genres: list[GenreCount]


class Recommendation(CamelModel):
    book: BookOut
    reason: str


class RecommendationsResponse(CamelModel):
    recommendations: list[Recommendation]
    favorite_genres: list[str]
