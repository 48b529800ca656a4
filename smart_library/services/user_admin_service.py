from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from smart_library.db.session import get_session
from smart_library.models.staff_log import LogTarget, StaffAction
from smart_library.models.user import User, UserRole
from smart_library.schemas.user import UserAdminUpdate, UserOut, user_to_schema
from smart_library.services.audit import ClientInfo, record_staff_action

logger = logging.getLogger(__name__)


class UserAdminService:
    """Business logic for administrative user management."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def list_users(
        self,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
        role: Optional[UserRole] = None,
        is_active: Optional[bool] = None,
    ) -> tuple[list[UserOut], int]:
        stmt = select(User)

        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(
                or_(
                    User.username.ilike(pattern),
                    User.email.ilike(pattern),
                    User.first_name.ilike(pattern),
                    User.last_name.ilike(pattern),
                )
            )
        if role is not None:
            stmt = stmt.where(User.role == role)
        if is_active is not None:
            stmt = stmt.where(User.is_active.is_(is_active))

        total = self.session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        stmt = stmt.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit)

        users = self.session.execute(stmt).scalars().all()
        return [user_to_schema(user) for user in users], total

    def get_user_by_id(self, user_id: int) -> UserOut:
        return user_to_schema(self._get_user(user_id))

    def _get_user(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "user_not_found", "message": "User not found."},
            )
        return user

    def update_user(
        self,
        user_id: int,
        payload: UserAdminUpdate,
        admin: User,
        client: Optional[ClientInfo] = None,
    ) -> tuple[UserOut, dict]:
        user = self._get_user(user_id)
        update_data = {key: value for key, value in payload.model_dump(exclude_unset=True).items() if value is not None}
        if not update_data:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "no_changes", "message": "Provide a role or an active flag to change."},
            )
        if user.id == admin.id:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"code": "cannot_modify_self", "message": "Administrators cannot change their own role or status."},
            )

        old_values = {"role": user.role.value, "is_active": user.is_active}
        if "role" in update_data:
            user.role = UserRole(update_data["role"])
        if "is_active" in update_data:
            user.is_active = update_data["is_active"]
        new_values = {"role": user.role.value, "is_active": user.is_active}
        changes = {key: new_values[key] for key in new_values if new_values[key] != old_values[key]}

        record_staff_action(
            self.session,
            staff=admin,
            action=StaffAction.MANAGE_USER,
            target_type=LogTarget.USER,
            target_id=user.id,
            description=f"User updated: {user.username}",
            old_values=old_values,
            new_values=new_values,
            client=client,
        )
        self.session.commit()
        self.session.refresh(user)
        logger.info("User id=%s updated by admin id=%s: %s", user.id, admin.id, changes)
        return user_to_schema(user), changes


def get_user_admin_service(session: Session = Depends(get_session)) -> UserAdminService:
    return UserAdminService(session=session)
