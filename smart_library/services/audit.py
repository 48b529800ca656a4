from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from smart_library.models.staff_log import LogTarget, StaffAction, StaffLog
from smart_library.models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientInfo:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


def get_client_info(request: Request) -> ClientInfo:
    """Capture the caller's address and user agent for audit records."""
    return ClientInfo(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def record_staff_action(
    db: Session,
    *,
    staff: User,
    action: StaffAction,
    target_type: LogTarget,
    target_id: Optional[int],
    description: str,
    old_values: Optional[dict[str, Any]] = None,
    new_values: Optional[dict[str, Any]] = None,
    client: Optional[ClientInfo] = None,
) -> StaffLog:
    """Add an audit entry to the current transaction; the caller commits."""
    client = client or ClientInfo()
    entry = StaffLog(
        staff_id=staff.id,
        action_type=action,
        target_type=target_type,
        target_id=target_id,
        action_description=description,
        old_values=old_values,
        new_values=new_values,
        action_date=datetime.now(timezone.utc),
        ip_address=client.ip_address,
        user_agent=client.user_agent,
    )
    db.add(entry)
    logger.info(
        "staff action %s on %s:%s by user id=%s",
        action.value,
        target_type.value,
        target_id,
        staff.id,
    )
    return entry
