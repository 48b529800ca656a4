from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, status

from smart_library.models.user import User
from smart_library.schemas.checkout import (
    BorrowRequest,
    CheckoutDetail,
    CheckoutOut,
    CheckoutResult,
    CheckoutStatistics,
    CheckoutStatusFilter,
    OverdueResponse,
    ReturnRequest,
    UserCheckoutsResponse,
)
from smart_library.schemas.common import Pagination
from smart_library.security.dependencies import ensure_owner_or_staff, get_current_user, require_staff
from smart_library.services.audit import ClientInfo, get_client_info
from smart_library.services.circulation_service import CirculationService, get_circulation_service

router = APIRouter(prefix="/api/checkouts", tags=["checkouts"])


@router.post(
    "/borrow",
    status_code=status.HTTP_201_CREATED,
    response_model=CheckoutResult,
)
def borrow_book(
    payload: BorrowRequest,
    current_user: User = Depends(get_current_user),
    client: ClientInfo = Depends(get_client_info),
    service: CirculationService = Depends(get_circulation_service),
) -> CheckoutResult:
    """Borrow a copy. Staff may borrow on behalf of another user via ``userId``."""
    checkout = service.borrow_book(payload, current_user, client)
    return CheckoutResult(message="Book borrowed successfully", checkout=CheckoutOut.model_validate(checkout))


@router.put("/{checkout_id}/return", response_model=CheckoutResult)
def return_book(
    checkout_id: int,
    payload: Optional[ReturnRequest] = Body(default=None),
    current_user: User = Depends(get_current_user),
    client: ClientInfo = Depends(get_client_info),
    service: CirculationService = Depends(get_circulation_service),
) -> CheckoutResult:
    notes = payload.notes if payload else None
    checkout = service.return_book(checkout_id, current_user, notes=notes, client=client)
    message = "Book returned successfully"
    if checkout.is_late:
        message = f"Book returned late. Late fee: {checkout.late_fee:.2f}"
    return CheckoutResult(message=message, checkout=CheckoutOut.model_validate(checkout))


@router.get("/user/{user_id}", response_model=UserCheckoutsResponse)
def list_user_checkouts(
    user_id: int,
    status_filter: CheckoutStatusFilter = Query(default="all", alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    service: CirculationService = Depends(get_circulation_service),
) -> UserCheckoutsResponse:
    ensure_owner_or_staff(current_user, user_id)
    checkouts, total = service.list_user_checkouts(user_id, status_filter=status_filter, page=page, limit=limit)
    return UserCheckoutsResponse(
        checkouts=[CheckoutOut.model_validate(checkout) for checkout in checkouts],
        pagination=Pagination.build(page=page, per_page=limit, total=total),
    )


@router.get("/overdue", response_model=OverdueResponse)
def list_overdue(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    _: User = Depends(require_staff),
    service: CirculationService = Depends(get_circulation_service),
) -> OverdueResponse:
    """Open checkouts past their due date, with the fee accrued so far."""
    overdue, total = service.list_overdue(page=page, limit=limit)
    return OverdueResponse(
        overdue_checkouts=overdue,
        pagination=Pagination.build(page=page, per_page=limit, total=total),
    )


@router.get("/statistics", response_model=CheckoutStatistics)
def circulation_statistics(
    _: User = Depends(require_staff),
    service: CirculationService = Depends(get_circulation_service),
) -> CheckoutStatistics:
    return service.statistics()


@router.get("/{checkout_id}", response_model=CheckoutDetail)
def get_checkout(
    checkout_id: int,
    current_user: User = Depends(get_current_user),
    service: CirculationService = Depends(get_circulation_service),
) -> CheckoutDetail:
    return service.get_checkout_detail(checkout_id, current_user)
