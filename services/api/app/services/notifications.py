from __future__ import annotations

import logging
from uuid import uuid4

from services.api.app.db.models import Notification
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def notify_user(
    db: Session,
    *,
    user_id: str | None,
    type: str,
    message: str,
    target_type: str | None = None,
    target_id: str | None = None,
) -> None:
    """Record an in-app notification.

    Best-effort: call it after the triggering state change has been committed. A
    failure here is logged and rolled back on its own. Rows are only recorded, delivery
    happens elsewhere.
    """

    if not user_id:
        return

    try:
        db.add(
            Notification(
                id=uuid4().hex,
                user_id=user_id,
                type=type,
                message=message,
                target_type=target_type,
                target_id=target_id,
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("failed to record %s notification for user %s", type, user_id)
