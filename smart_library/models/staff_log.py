from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, Enum as SAEnum, ForeignKey, Index, Integer, JSON, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from smart_library.models.user import Base, User


class StaffAction(str, enum.Enum):
    ADD_BOOK = "add_book"
    UPDATE_BOOK = "update_book"
    UPDATE_INVENTORY = "update_inventory"
    RETIRE_BOOK = "retire_book"
    MANAGE_USER = "manage_user"
    CHECKOUT_BOOK = "checkout_book"
    RETURN_BOOK = "return_book"


class LogTarget(str, enum.Enum):
    BOOK = "book"
    USER = "user"
    SYSTEM = "system"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class StaffLog(Base):
    """Append-only audit record of a staff action."""

    __tablename__ = "staff_logs"
    __table_args__ = (
        Index("ix_staff_logs_staff_action", "staff_id", "action_type"),
        Index("ix_staff_logs_target", "target_type", "target_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    staff_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    action_type: Mapped[StaffAction] = mapped_column(
        SAEnum(StaffAction, name="staff_action", values_callable=_enum_values),
        nullable=False,
    )
    target_type: Mapped[LogTarget] = mapped_column(
        SAEnum(LogTarget, name="log_target", values_callable=_enum_values),
        nullable=False,
    )
    target_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    action_description: Mapped[str] = mapped_column(Text, nullable=False)
    old_values: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    new_values: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    action_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        index=True,
    )
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    staff: Mapped[User] = relationship("User")
