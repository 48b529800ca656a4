from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal, Optional, Union

from pydantic import Field

from smart_library.schemas.book import BookOut
from smart_library.schemas.common import CamelModel, ORMModel, Pagination
from smart_library.schemas.user import UserOut

ReportType = Literal["most_borrowed", "top_readers", "low_availability"]


class MostBorrowedRow(CamelModel):
    book_id: int
    title: str
    authors: list[str]
    checkout_count: int
    total_borrowed: int
    average_rating: float


class TopReaderRow(CamelModel):
    user_id: int
    username: str
    name: str
    total_checkouts: int
    active_checkouts: int


class LowAvailabilityRow(CamelModel):
    book_id: int
    title: str
    genre: Optional[str] = None
    authors: list[str]
    total_copies: int
    available_copies: int
    availability_percentage: float


ReportRow = Union[MostBorrowedRow, TopReaderRow, LowAvailabilityRow]


class ReportResponse(CamelModel):
    report_type: ReportType
    start_date: date
    end_date: date
    results: list[ReportRow]
    generated_at: datetime


class StaffLogOut(ORMModel):
    id: int
    staff_id: int
    staff_name: str
    action_type: str
    target_type: str
    target_id: Optional[int] = None
    action_description: str
    old_values: Optional[dict[str, Any]] = None
    new_values: Optional[dict[str, Any]] = None
    action_date: datetime
    ip_address: Optional[str] = None


class StaffLogListResponse(CamelModel):
    logs: list[StaffLogOut]
    pagination: Pagination


class InventoryResult(CamelModel):
    message: str
    book: BookOut
    previous_total_copies: int
    previous_available_copies: int


class UserListResponse(CamelModel):
    users: list[UserOut]
    pagination: Pagination


class UserAdminResult(CamelModel):
    message: str
    user: UserOut
    changes: dict[str, Any] = Field(default_factory=dict)
