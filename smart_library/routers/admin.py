from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from smart_library.models.staff_log import LogTarget, StaffAction, StaffLog
from smart_library.models.user import User
from smart_library.schemas.admin import (
    InventoryResult,
    ReportResponse,
    ReportType,
    StaffLogListResponse,
    StaffLogOut,
)
from smart_library.schemas.book import BookCreate, BookMutationResponse, BookOut, BookUpdate, InventoryUpdate
from smart_library.schemas.common import Pagination
from smart_library.security.dependencies import require_staff
from smart_library.services.audit import ClientInfo, get_client_info
from smart_library.services.inventory_service import InventoryService, get_inventory_service

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _log_to_schema(log: StaffLog) -> StaffLogOut:
    return StaffLogOut(
        id=log.id,
        staff_id=log.staff_id,
        staff_name=log.staff.full_name if log.staff else "",
        action_type=log.action_type.value,
        target_type=log.target_type.value,
        target_id=log.target_id,
        action_description=log.action_description,
        old_values=log.old_values,
        new_values=log.new_values,
        action_date=log.action_date,
        ip_address=log.ip_address,
    )


@router.post(
    "/books",
    status_code=status.HTTP_201_CREATED,
    response_model=BookMutationResponse,
)
def add_book(
    payload: BookCreate,
    response: Response,
    staff: User = Depends(require_staff),
    client: ClientInfo = Depends(get_client_info),
    service: InventoryService = Depends(get_inventory_service),
) -> BookMutationResponse:
    """Add a title, or add copies when the ISBN is already catalogued."""
    book, created = service.add_book(payload, staff, client)
    if not created:
        response.status_code = status.HTTP_200_OK
        return BookMutationResponse(message="Existing book inventory increased", book=BookOut.model_validate(book))
    return BookMutationResponse(message="Book added successfully", book=BookOut.model_validate(book))


@router.put("/books/{book_id}", response_model=BookMutationResponse)
def update_book(
    book_id: int,
    payload: BookUpdate,
    staff: User = Depends(require_staff),
    client: ClientInfo = Depends(get_client_info),
    service: InventoryService = Depends(get_inventory_service),
) -> BookMutationResponse:
    book = service.update_book(book_id, payload, staff, client)
    return BookMutationResponse(message="Book updated successfully", book=BookOut.model_validate(book))


@router.put("/books/{book_id}/inventory", response_model=InventoryResult)
def update_inventory(
    book_id: int,
    payload: InventoryUpdate,
    staff: User = Depends(require_staff),
    client: ClientInfo = Depends(get_client_info),
    service: InventoryService = Depends(get_inventory_service),
) -> InventoryResult:
    book, old_total, old_available = service.update_inventory(book_id, payload.total_copies, staff, client)
    return InventoryResult(
        message="Inventory updated successfully",
        book=BookOut.model_validate(book),
        previous_total_copies=old_total,
        previous_available_copies=old_available,
    )


@router.put("/books/{book_id}/retire", response_model=BookMutationResponse)
def retire_book(
    book_id: int,
    staff: User = Depends(require_staff),
    client: ClientInfo = Depends(get_client_info),
    service: InventoryService = Depends(get_inventory_service),
) -> BookMutationResponse:
    book = service.retire_book(book_id, staff, client)
    return BookMutationResponse(message="Book retired successfully", book=BookOut.model_validate(book))


@router.delete("/books/{book_id}", response_model=BookMutationResponse)
def delete_book(
    book_id: int,
    staff: User = Depends(require_staff),
    client: ClientInfo = Depends(get_client_info),
    service: InventoryService = Depends(get_inventory_service),
) -> BookMutationResponse:
    """Books are never removed; deleting retires the title."""
    book = service.retire_book(book_id, staff, client)
    return BookMutationResponse(message="Book retired successfully", book=BookOut.model_validate(book))


@router.get("/reports", response_model=ReportResponse)
def generate_report(
    report_type: ReportType = Query(default="most_borrowed", alias="type"),
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    limit: int = Query(10, ge=1, le=50),
    _: User = Depends(require_staff),
    service: InventoryService = Depends(get_inventory_service),
) -> ReportResponse:
    """Circulation reports over a date range, defaulting to the current year."""
    now = datetime.now(timezone.utc)
    start = start_date or date(now.year, 1, 1)
    end = end_date or date(now.year, 12, 31)
    return ReportResponse(
        report_type=report_type,
        start_date=start,
        end_date=end,
        results=service.report(report_type, start, end, limit),
        generated_at=now,
    )


@router.get("/logs", response_model=StaffLogListResponse)
def list_staff_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    action_type: Optional[StaffAction] = Query(default=None, alias="actionType"),
    staff_id: Optional[int] = Query(default=None, alias="staffId"),
    target_type: Optional[LogTarget] = Query(default=None, alias="targetType"),
    target_id: Optional[int] = Query(default=None, alias="targetId"),
    _: User = Depends(require_staff),
    service: InventoryService = Depends(get_inventory_service),
) -> StaffLogListResponse:
    logs, total = service.list_staff_logs(
        page=page,
        limit=limit,
        action_type=action_type,
        staff_id=staff_id,
        target_type=target_type,
        target_id=target_id,
    )
    return StaffLogListResponse(
        logs=[_log_to_schema(log) for log in logs],
        pagination=Pagination.build(page=page, per_page=limit, total=total),
    )
