from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Header, Query, Response
from packages.shared.schemas.envelope_v1 import EnvelopeV1, envelope
from services.api.app.db.deps import get_current_user, get_db, get_trace_id
from services.api.app.db.models import User
from services.api.app.errors import raise_http_error
from services.api.app.models.order import (
    CheckoutRequest,
    OrderCancelRequest,
    OrderNoteRequest,
    OrderRateRequest,
    OrderStatusUpdateRequest,
)
from services.api.app.services import orders as order_service
from sqlalchemy.orm import Session

router = APIRouter(tags=["orders"])


@router.post("/api/orders/checkout", response_model=EnvelopeV1[dict[str, Any]], status_code=201)
def checkout(
    payload: CheckoutRequest,
    response: Response,
    idempotency_key: str | None = Header(default=None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    try:
        documents, any_new = order_service.checkout(
            db, user, payload, idempotency_key=idempotency_key
        )
    except Exception as e:
        raise_http_error(e)

    if not any_new:
        response.status_code = 200
    return envelope({"orders": documents}, trace_id)


@router.get("/orders/my", response_model=EnvelopeV1[dict[str, Any]])
def my_orders(
    status: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, alias="pageSize"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    try:
        data = order_service.list_orders(
            db, user, scope="mine", status=status, page=page, page_size=page_size
        )
    except Exception as e:
        raise_http_error(e)
    return envelope(data, trace_id)


@router.get("/orders/received", response_model=EnvelopeV1[dict[str, Any]])
def received_orders(
    status: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, alias="pageSize"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    try:
        data = order_service.list_orders(
            db, user, scope="received", status=status, page=page, page_size=page_size
        )
    except Exception as e:
        raise_http_error(e)
    return envelope(data, trace_id)


@router.post("/orders/accept/{order_id}", response_model=EnvelopeV1[dict[str, Any]])
def accept_order(
    order_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    try:
        order = order_service.accept_order(db, user, order_id)
    except Exception as e:
        raise_http_error(e)
    return envelope({"order": order}, trace_id)


@router.post("/orders/reject/{order_id}", response_model=EnvelopeV1[dict[str, Any]])
def reject_order(
    order_id: str,
    payload: OrderNoteRequest | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    try:
        order = order_service.reject_order(db, user, order_id, payload.note if payload else None)
    except Exception as e:
        raise_http_error(e)
    return envelope({"order": order}, trace_id)


@router.post("/orders/cancel/{order_id}", response_model=EnvelopeV1[dict[str, Any]])
def cancel_order(
    order_id: str,
    payload: OrderCancelRequest | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    try:
        order = order_service.cancel_order(db, user, order_id, payload.reason if payload else None)
    except Exception as e:
        raise_http_error(e)
    return envelope({"order": order}, trace_id)


@router.patch("/api/orders/{order_id}/status", response_model=EnvelopeV1[dict[str, Any]])
def update_order_status(
    order_id: str,
    payload: OrderStatusUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    try:
        order = order_service.update_order_status(db, user, order_id, payload.status, payload.note)
    except Exception as e:
        raise_http_error(e)
    return envelope({"order": order}, trace_id)


@router.post("/orders/{order_id}/rate", response_model=EnvelopeV1[dict[str, Any]])
def rate_order(
    order_id: str,
    payload: OrderRateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    try:
        order = order_service.rate_order(db, user, order_id, payload.rating, payload.review)
    except Exception as e:
        raise_http_error(e)
    return envelope({"order": order}, trace_id)
