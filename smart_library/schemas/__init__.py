from .common import CamelModel, MessageOut, ORMModel, Pagination
from .user import (
    AuthResponse,
    ProfileOut,
    UserCreate,
    UserLogin,
    UserOut,
    create_user_model,
    user_to_schema,
)
from .book import BookCreate, BookDetail, BookOut, BookUpdate, InventoryUpdate
from .checkout import BorrowRequest, CheckoutOut
from .review import ReviewCreate, ReviewOut, ReviewUpdate
from .analytics import ReadingSessionCreate, ReadingSessionOut, ReadingSessionUpdate

__all__ = [
    "CamelModel",
    "MessageOut",
    "ORMModel",
    "Pagination",
    "AuthResponse",
    "ProfileOut",
    "UserCreate",
    "UserLogin",
    "UserOut",
    "create_user_model",
    "user_to_schema",
    "BookCreate",
    "BookDetail",
    "BookOut",
    "BookUpdate",
    "InventoryUpdate",
    "BorrowRequest",
    "CheckoutOut",
    "ReviewCreate",
    "ReviewOut",
    "ReviewUpdate",
    "ReadingSessionCreate",
    "ReadingSessionOut",
    "ReadingSessionUpdate",
]
