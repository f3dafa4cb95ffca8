from __future__ import annotations

import hmac
import os
from collections.abc import Generator

from fastapi import Depends, Header, HTTPException, Request
from services.api.app.db.database import db_session
from services.api.app.db.models import User
from sqlalchemy.orm import Session


def get_db() -> Generator[Session, None, None]:
    db = db_session()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    x_user_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the caller from the gateway-supplied ``X-User-Id`` header."""

    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Authentication required")

    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    return user


def require_admin(authorization: str | None = Header(default=None)) -> str:
    expected = os.getenv("MANACITY_ADMIN_TOKEN", "").strip()
    if not expected:
        raise HTTPException(status_code=503, detail="Admin access is not configured")

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip(), expected):
        raise HTTPException(status_code=401, detail="Admin token required")
    return token.strip()


def get_trace_id(request: Request) -> str:
    return getattr(request.state, "trace_id", "") or ""
