from fastapi import APIRouter, Depends, Request, status

from smart_library.core.rate_limit import auth_rate_limit, limiter
from smart_library.models.user import User
from smart_library.schemas.common import MessageOut
from smart_library.schemas.user import (
    AuthResponse,
    PasswordChange,
    ProfileOut,
    ProfileUpdate,
    RefreshRequest,
    TokenOut,
    UserCreate,
    UserLogin,
    UserOut,
)
from smart_library.security.dependencies import get_current_user
from smart_library.services.auth_service import AuthResult, AuthService, get_auth_service

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _auth_response(message: str, result: AuthResult) -> AuthResponse:
    tokens = result.tokens
    return AuthResponse(
        message=message,
        user=result.user,
        token=TokenOut(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_type=tokens.token_type,
            expires_in=tokens.expires_in,
        ),
    )


@router.post(
    "/register",
    status_code=status.HTTP_201_CREATED,
    response_model=AuthResponse,
)
def register(payload: UserCreate, service: AuthService = Depends(get_auth_service)) -> AuthResponse:
    """Register a reader account and return a token pair."""
    return _auth_response("User registered successfully", service.register_user(payload))


@router.post("/login", response_model=AuthResponse)
@limiter.limit(auth_rate_limit)
def login(
    request: Request,
    payload: UserLogin,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Authenticate with username or email and a password."""
    return _auth_response("Login successful", service.authenticate(payload.username, payload.password))


@router.post("/refresh", response_model=AuthResponse)
def refresh(payload: RefreshRequest, service: AuthService = Depends(get_auth_service)) -> AuthResponse:
    return _auth_response("Token refreshed", service.refresh(payload.refresh_token))


@router.get("/profile", response_model=ProfileOut)
def read_profile(
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> ProfileOut:
    """Return the caller's profile with borrowing statistics."""
    return service.get_profile(current_user)


@router.put("/profile", response_model=UserOut)
def update_profile(
    payload: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> UserOut:
    return service.update_profile(current_user, payload)


@router.post("/change-password", response_model=MessageOut)
def change_password(
    payload: PasswordChange,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> MessageOut:
    service.change_password(current_user, payload)
    return MessageOut(message="Password changed successfully")


@router.post("/logout", response_model=MessageOut)
def logout(current_user: User = Depends(get_current_user)) -> MessageOut:
    """Tokens are stateless; clients discard them on logout."""
    return MessageOut(message="Logged out successfully")
