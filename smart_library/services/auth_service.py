from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from smart_library.crud.user import (
    get_user_by_email,
    get_user_by_login,
    get_user_by_username,
    get_user_statistics,
)
from smart_library.db.session import get_session
from smart_library.models.user import User
from smart_library.schemas.user import (
    PasswordChange,
    ProfileOut,
    ProfileUpdate,
    UserCreate,
    UserOut,
    create_user_model,
    user_to_schema,
)
from smart_library.security.hash import hash_password, verify_password
from smart_library.security.jwt import (
    EncodedTokens,
    InvalidTokenError,
    JWTSettings,
    TokenType,
    decode_token,
    get_jwt_settings,
    issue_tokens,
)

logger = logging.getLogger(__name__)


@dataclass
class AuthResult:
    user: UserOut
    tokens: EncodedTokens


class AuthService:
    """Business logic for authentication and the user's own account."""

    def __init__(self, session: Session, settings: JWTSettings) -> None:
        self.session = session
        self.settings = settings

    def register_user(self, data: UserCreate) -> AuthResult:
        if get_user_by_username(data.username, self.session):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"code": "username_exists", "message": "Username already taken."},
            )
        if get_user_by_email(data.email, self.session):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"code": "email_exists", "message": "Email already registered."},
            )

        user = create_user_model(data, password_hash=hash_password(data.password))
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"code": "user_exists", "message": "Username or email already registered."},
            ) from exc
        self.session.refresh(user)

        logger.info("Registered user id=%s username=%s", user.id, user.username)
        return AuthResult(user=user_to_schema(user), tokens=issue_tokens(user, self.settings))

    def authenticate(self, login: str, password: str) -> AuthResult:
        try:
            user = get_user_by_login(login, self.session)
        except ValueError:
            user = None

        if not user or not verify_password(password, user.password_hash):
            logger.warning("Failed login attempt for %r", login)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "invalid_credentials", "message": "Invalid username or password."},
            )
        if not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "account_inactive", "message": "Account is deactivated."},
            )

        return AuthResult(user=user_to_schema(user), tokens=issue_tokens(user, self.settings))

    def refresh(self, refresh_token: str) -> AuthResult:
        try:
            payload = decode_token(refresh_token, self.settings)
        except InvalidTokenError as exc:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "invalid_token", "message": "Unable to validate token."},
            ) from exc

        if payload.token_type != TokenType.REFRESH:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "invalid_token_type", "message": "Refresh token required."},
            )

        user = self.session.get(User, payload.user_id)
        if not user or not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "user_not_found", "message": "User not found or inactive."},
            )
        return AuthResult(user=user_to_schema(user), tokens=issue_tokens(user, self.settings))

    def get_profile(self, user: User) -> ProfileOut:
        statistics = get_user_statistics(user.id, self.session)
        return ProfileOut.model_validate({**user_to_schema(user).model_dump(), "statistics": statistics})

    def update_profile(self, user: User, payload: ProfileUpdate) -> UserOut:
        update_data = payload.model_dump(exclude_unset=True)
        if not update_data:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "no_changes", "message": "No valid fields to update."},
            )

        new_email = update_data.get("email")
        if new_email and new_email != user.email:
            existing = get_user_by_email(new_email, self.session)
            if existing and existing.id != user.id:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail={"code": "email_exists", "message": "Email already in use."},
                )

        for field, value in update_data.items():
            if field in {"first_name", "last_name", "email"} and value is None:
                continue
            setattr(user, field, value)

        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"code": "email_exists", "message": "Email already in use."},
            ) from exc
        self.session.refresh(user)
        return user_to_schema(user)

    def change_password(self, user: User, payload: PasswordChange) -> None:
        if not verify_password(payload.current_password, user.password_hash):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "invalid_password", "message": "Current password is incorrect."},
            )
        if payload.current_password == payload.new_password:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "password_unchanged", "message": "New password must differ from the current one."},
            )

        user.password_hash = hash_password(payload.new_password)
        self.session.commit()
        logger.info("Password changed for user id=%s", user.id)


def get_auth_service(
    session: Session = Depends(get_session),
    settings: JWTSettings = Depends(get_jwt_settings),
) -> AuthService:
    return AuthService(session=session, settings=settings)
