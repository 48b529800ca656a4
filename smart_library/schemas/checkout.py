from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

from smart_library.schemas.common import CamelModel, ORMModel, Pagination

CheckoutStatusFilter = Literal["active", "returned", "all"]


class BorrowRequest(CamelModel):
    book_id: int = Field(gt=0)
    loan_period_days: Optional[int] = Field(default=None, ge=1, le=30)
    user_id: Optional[int] = Field(default=None, gt=0)
    notes: Optional[str] = Field(default=None, max_length=1000)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class ReturnRequest(CamelModel):
    notes: Optional[str] = Field(default=None, max_length=1000)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class BookLite(ORMModel):
    id: int
    title: str
    isbn: Optional[str] = None
    cover_image_url: Optional[str] = None
    authors: list[str] = Field(default_factory=list)


class CheckoutOut(ORMModel):
    id: int
    user_id: int
    book_id: int
    checkout_date: datetime
    due_date: date
    return_date: Optional[datetime] = None
    is_returned: bool
    is_late: bool
    late_fee: Decimal
    notes: Optional[str] = None
    book: Optional[BookLite] = None

    @field_serializer("late_fee")
    def serialize_late_fee(self, value: Decimal) -> float:
        return float(value)


class CheckoutResult(CamelModel):
    message: str
    checkout: CheckoutOut


class CheckoutDetail(CheckoutOut):
    borrower_name: str
    borrower_email: str
    days_overdue: int = 0


class UserCheckoutsResponse(CamelModel):
    checkouts: list[CheckoutOut]
    pagination: Pagination


class OverdueCheckout(CamelModel):
    id: int
    user_id: int
    book_id: int
    title: str
    borrower_name: str
    borrower_email: str
    checkout_date: datetime
    due_date: date
    days_overdue: int
    current_late_fee: float


class OverdueResponse(CamelModel):
    overdue_checkouts: list[OverdueCheckout]
    pagination: Pagination


class MonthlyCirculation(CamelModel):
    month: str
    checkouts: int
    returns: int


class CirculationBook(CamelModel):
    id: int
    title: str
    checkout_count: int


class CheckoutStatistics(CamelModel):
    total_checkouts: int
    active_checkouts: int
    overdue_checkouts: int
    late_returns: int
    average_loan_days: float
    total_late_fees: float
    monthly_trend: list[MonthlyCirculation]
    most_borrowed: list[CirculationBook]
