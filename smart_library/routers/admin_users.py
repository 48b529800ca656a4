from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from smart_library.models.user import User, UserRole
from smart_library.schemas.admin import UserAdminResult, UserListResponse
from smart_library.schemas.common import Pagination
from smart_library.schemas.user import UserAdminUpdate, UserOut
from smart_library.security.dependencies import require_admin
from smart_library.services.audit import ClientInfo, get_client_info
from smart_library.services.user_admin_service import UserAdminService, get_user_admin_service

router = APIRouter(prefix="/api/admin/users", tags=["admin", "users"])


@router.get("", response_model=UserListResponse)
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(default=None),
    role: Optional[UserRole] = Query(default=None),
    is_active: Optional[bool] = Query(default=None, alias="isActive"),
    _: User = Depends(require_admin),
    service: UserAdminService = Depends(get_user_admin_service),
) -> UserListResponse:
    users, total = service.list_users(page=page, limit=limit, search=search, role=role, is_active=is_active)
    return UserListResponse(users=users, pagination=Pagination.build(page=page, per_page=limit, total=total))


@router.get("/{user_id}", response_model=UserOut)
def get_user(
    user_id: int,
    _: User = Depends(require_admin),
    service: UserAdminService = Depends(get_user_admin_service),
) -> UserOut:
    return service.get_user_by_id(user_id)


@router.put("/{user_id}", response_model=UserAdminResult)
def update_user(
    user_id: int,
    payload: UserAdminUpdate,
    admin: User = Depends(require_admin),
    client: ClientInfo = Depends(get_client_info),
    service: UserAdminService = Depends(get_user_admin_service),
) -> UserAdminResult:
    """Change a user's role or active flag."""
    user, changes = service.update_user(user_id, payload, admin, client)
    return UserAdminResult(message="User updated successfully", user=user, changes=changes)
