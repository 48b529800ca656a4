from __future__ import annotations

from collections.abc import Callable
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from smart_library.db.session import get_session
from smart_library.models.user import STAFF_ROLES, User, UserRole
from smart_library.security.jwt import (
    InvalidTokenError,
    JWTSettings,
    TokenType,
    decode_token,
    get_jwt_settings,
)

bearer_scheme = HTTPBearer(auto_error=False)


def _resolve_user(token: str, db: Session, settings: JWTSettings) -> User:
    try:
        payload = decode_token(token, settings)
    except InvalidTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "invalid_token", "message": "Invalid or expired token."},
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    if payload.token_type != TokenType.ACCESS:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "invalid_token_type", "message": "Access token required."},
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = db.get(User, payload.user_id)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "user_not_found", "message": "User not found or inactive."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_session),
    settings: JWTSettings = Depends(get_jwt_settings),
) -> User:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "not_authenticated", "message": "Access denied. No token provided."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _resolve_user(credentials.credentials, db, settings)


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_session),
    settings: JWTSettings = Depends(get_jwt_settings),
) -> Optional[User]:
    """Resolve the caller when a token is sent; anonymous callers get ``None``."""
    if credentials is None:
        return None
    try:
        return _resolve_user(credentials.credentials, db, settings)
    except HTTPException:
        return None


def require_roles(*roles: UserRole) -> Callable[[User], User]:
    allowed = frozenset(roles)

    def _dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "code": "insufficient_permissions",
                    "message": "Insufficient permissions.",
                    "required": sorted(role.value for role in allowed),
                    "current": current_user.role.value,
                },
            )
        return current_user

    return _dependency


require_staff = require_roles(*STAFF_ROLES)
require_admin = require_roles(UserRole.ADMIN)


def ensure_owner_or_staff(current_user: User, user_id: int) -> None:
    """Readers may only touch their own resources; staff may touch any."""
    if current_user.is_staff or current_user.id == user_id:
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "code": "ownership_required",
            "message": "Access denied. You can only access your own resources.",
        },
    )
