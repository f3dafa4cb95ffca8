from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from packages.shared.schemas.envelope_v1 import EnvelopeV1, envelope
from services.api.app.db.deps import get_current_user, get_db, get_trace_id
from services.api.app.db.models import User
from services.api.app.errors import raise_http_error
from services.api.app.models.service_request import (
    DirectDecision,
    DirectRequestCreate,
    FeedbackSubmit,
    OfferSubmit,
    ServiceRequestCreate,
    StatusUpdate,
)
from services.api.app.services import service_requests as sr_service
from sqlalchemy.orm import Session

router = APIRouter(prefix="/service-requests", tags=["service-requests"])


@router.post("", response_model=EnvelopeV1[dict[str, Any]], status_code=201)
def create_request(
    payload: ServiceRequestCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    try:
        doc = sr_service.create_request(db, user, payload)
    except Exception as e:
        raise_http_error(e)
    return envelope(doc, trace_id)


@router.post("/direct", response_model=EnvelopeV1[dict[str, Any]], status_code=201)
def create_direct_request(
    payload: DirectRequestCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    try:
        doc = sr_service.create_direct_request(db, user, payload)
    except Exception as e:
        raise_http_error(e)
    return envelope(doc, trace_id)


@router.get("/public", response_model=EnvelopeV1[dict[str, Any]])
def list_public(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, alias="pageSize"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    return envelope(sr_service.list_public(db, user, page=page, page_size=page_size), trace_id)


@router.get("/my-requests", response_model=EnvelopeV1[list[dict[str, Any]]])
def list_my_requests(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    return envelope(sr_service.list_my_requests(db, user), trace_id)


@router.get("/my-services", response_model=EnvelopeV1[list[dict[str, Any]]])
def list_my_services(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    return envelope(sr_service.list_my_services(db, user), trace_id)


@router.get("/{request_id}", response_model=EnvelopeV1[dict[str, Any]])
def get_request(
    request_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    try:
        doc = sr_service.get_request(db, user, request_id)
    except Exception as e:
        raise_http_error(e)
    return envelope(doc, trace_id)


@router.patch("/{request_id}/status", response_model=EnvelopeV1[dict[str, Any]])
def update_status(
    request_id: str,
    payload: StatusUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    try:
        doc = sr_service.update_status(db, user, request_id, payload.status, payload.note)
    except Exception as e:
        raise_http_error(e)
    return envelope(doc, trace_id)


@router.post("/{request_id}/offers", response_model=EnvelopeV1[dict[str, Any]], status_code=201)
def submit_offer(
    request_id: str,
    payload: OfferSubmit,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    try:
        data = sr_service.submit_offer(
            db, user, request_id, note=payload.note, expected_return=payload.expected_return
        )
    except Exception as e:
        raise_http_error(e)
    return envelope(data, trace_id)


@router.patch("/{request_id}/offers/{offer_id}/accept", response_model=EnvelopeV1[dict[str, Any]])
def accept_offer(
    request_id: str,
    offer_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    try:
        doc = sr_service.accept_offer(db, user, request_id, offer_id)
    except Exception as e:
        raise_http_error(e)
    return envelope(doc, trace_id)


@router.patch("/{request_id}/offers/{offer_id}/reject", response_model=EnvelopeV1[dict[str, Any]])
def reject_offer(
    request_id: str,
    offer_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    try:
        doc = sr_service.reject_offer(db, user, request_id, offer_id)
    except Exception as e:
        raise_http_error(e)
    return envelope(doc, trace_id)


@router.patch("/{request_id}/accept-direct", response_model=EnvelopeV1[dict[str, Any]])
def accept_direct(
    request_id: str,
    payload: DirectDecision | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    try:
        doc = sr_service.accept_direct(
            db, user, request_id, payload.provider_note if payload else ""
        )
    except Exception as e:
        raise_http_error(e)
    return envelope(doc, trace_id)


@router.patch("/{request_id}/reject-direct", response_model=EnvelopeV1[dict[str, Any]])
def reject_direct(
    request_id: str,
    payload: DirectDecision | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    try:
        doc = sr_service.reject_direct(
            db, user, request_id, payload.provider_note if payload else ""
        )
    except Exception as e:
        raise_http_error(e)
    return envelope(doc, trace_id)


@router.post("/{request_id}/reopen", response_model=EnvelopeV1[dict[str, Any]])
def reopen(
    request_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    try:
        doc = sr_service.reopen(db, user, request_id)
    except Exception as e:
        raise_http_error(e)
    return envelope(doc, trace_id)


@router.get("/{request_id}/feedback", response_model=EnvelopeV1[dict[str, Any]])
def get_feedback(
    request_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    try:
        feedback = sr_service.get_feedback(db, user, request_id)
    except Exception as e:
        raise_http_error(e)
    return envelope({"feedback": feedback}, trace_id)


@router.post("/{request_id}/feedback", response_model=EnvelopeV1[dict[str, Any]])
def submit_feedback(
    request_id: str,
    payload: FeedbackSubmit,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    try:
        feedback = sr_service.submit_feedback(
            db, user, request_id, rating=payload.rating, comment=payload.comment
        )
    except Exception as e:
        raise_http_error(e)
    return envelope({"feedback": feedback}, trace_id)
