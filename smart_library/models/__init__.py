from .user import Base, STAFF_ROLES, User, UserRole
from .book import Author, Book, BookAuthor
from .checkout import Checkout
from .review import Review
from .staff_log import LogTarget, StaffAction, StaffLog

__all__ = [
    "Base",
    "STAFF_ROLES",
    "User",
    "UserRole",
    "Author",
    "Book",
    "BookAuthor",
    "Checkout",
    "Review",
    "LogTarget",
    "StaffAction",
    "StaffLog",
]
