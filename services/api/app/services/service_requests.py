"""Service-request workflow.

Requesters post public or private requests (or direct ones aimed at a single
provider), providers answer public requests with offers, and the requester picks one.
The lifecycle is enforced against ``SERVICE_REQUEST_TRANSITIONS``; admins may bypass it.

Statuses are stored as canonical snake_case values and emitted as PascalCase wire
tokens by ``request_document``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import uuid4

from packages.shared.schemas.envelope_v1 import clamp_page
from packages.shared.schemas.service_request_v1 import (
    FEEDBACK_REQUEST_STATUSES,
    REOPENABLE_REQUEST_STATUSES,
    OfferStatusV1,
    ServiceRequestStatusV1,
    can_transition,
    offer_status_to_wire,
    status_from_wire,
    status_to_wire,
)
from services.api.app.db.models import (
    Service,
    ServiceOffer,
    ServiceRequest,
    User,
    iso,
    utcnow,
)
from services.api.app.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationFailedError,
)
from services.api.app.models.service_request import (
    AdminServiceRequestUpdate,
    DirectRequestCreate,
    ServiceRequestCreate,
)
from services.api.app.services.notifications import notify_user
from sqlalchemy import String, cast, or_
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

_S = ServiceRequestStatusV1

# Statuses at or past acceptance; a direct target sees the requester's contact from here on.
_ACCEPTED_OR_LATER = frozenset({_S.ACCEPTED, _S.IN_PROGRESS, _S.COMPLETED})

# Targets reachable through PATCH /service-requests/{id}/status.
_PROVIDER_TARGETS = frozenset({_S.IN_PROGRESS, _S.COMPLETED})


def _status(req: ServiceRequest) -> ServiceRequestStatusV1:
    return ServiceRequestStatusV1(req.status)


def _assigned(req: ServiceRequest) -> list[str]:
    return list(req.assigned_provider_ids_json or [])


def _history(req: ServiceRequest, *, by: str | None, type: str, message: str) -> None:
    entry = {"at": iso(utcnow()), "by": by, "type": type, "message": message}
    req.history_json = [*(req.history_json or []), entry]


def _touch(req: ServiceRequest) -> None:
    req.updated_at = utcnow()


def _user_summary(user: User | None, *, with_contact: bool = True) -> dict[str, Any] | None:
    if user is None:
        return None
    if not with_contact:
        return {"_id": user.id, "name": user.name or "Provider"}
    return {
        "_id": user.id,
        "name": user.name,
        "phone": user.phone,
        "location": user.location,
        "address": user.address,
    }


def requester_contact_visible(req: ServiceRequest, viewer_id: str | None) -> bool:
    if not viewer_id:
        return False
    if viewer_id == req.user_id or viewer_id in _assigned(req):
        return True
    return viewer_id == req.direct_target_user_id and _status(req) in _ACCEPTED_OR_LATER


def _offer_document(
    db: Session, offer: ServiceOffer, *, viewer_id: str | None, owner_id: str
) -> dict[str, Any]:
    status = OfferStatusV1(offer.status)
    with_contact = (
        viewer_id is None
        or status == OfferStatusV1.ACCEPTED_BY_SEEKER
        or viewer_id in (offer.provider_id, owner_id)
    )
    return {
        "_id": offer.id,
        "id": offer.id,
        "providerId": offer.provider_id,
        "provider": _user_summary(db.get(User, offer.provider_id), with_contact=with_contact),
        "note": offer.note,
        "expectedReturn": offer.expected_return,
        "status": offer_status_to_wire(status),
        "createdAt": iso(offer.created_at),
    }


def request_document(
    db: Session,
    req: ServiceRequest,
    *,
    viewer_id: str | None,
    admin: bool = False,
) -> dict[str, Any]:
    """Wire form of a request as seen by ``viewer_id`` (or by an admin)."""

    status = _status(req)
    visible = admin or requester_contact_visible(req, viewer_id)
    is_owner = viewer_id == req.user_id

    offers = (
        db.query(ServiceOffer)
        .filter(ServiceOffer.request_id == req.id)
        .order_by(ServiceOffer.created_at.asc())
        .all()
    )
    # Other providers' offers stay private to the requester.
    shown_offers = offers if (admin or is_owner) else [o for o in offers if o.provider_id == viewer_id]

    assigned_ids = _assigned(req)
    assigned_users = [u for u in (db.get(User, pid) for pid in assigned_ids) if u is not None]
    service = db.get(Service, req.service_id) if req.service_id else None
    requester = db.get(User, req.user_id)

    return {
        "_id": req.id,
        "id": req.id,
        "userId": req.user_id if visible else None,
        "serviceId": req.service_id,
        "service": {"_id": service.id, "name": service.name} if service else None,
        "customName": req.custom_name,
        "title": req.title or req.custom_name or (service.name if service else "") or req.description,
        "description": req.description or req.message,
        "details": req.details,
        "message": req.message,
        "location": req.location,
        "phone": req.phone if visible else "",
        "preferredDate": req.preferred_date,
        "preferredTime": req.preferred_time,
        "paymentOffer": req.payment_offer,
        "visibility": req.visibility,
        "type": req.type,
        "directTargetUserId": req.direct_target_user_id,
        "status": status_to_wire(status),
        "adminNotes": req.admin_notes if admin else "",
        "reopenedCount": req.reopened_count,
        "providerNote": req.provider_note,
        "acceptedAt": iso(req.accepted_at),
        "assignedProviderId": assigned_ids[0] if assigned_ids else None,
        "assignedProvider": _user_summary(assigned_users[0]) if assigned_users else None,
        "assignedProviderIds": assigned_ids,
        "assignedProviders": [_user_summary(u) for u in assigned_users],
        "offers": [
            _offer_document(db, o, viewer_id=None if admin else viewer_id, owner_id=req.user_id)
            for o in shown_offers
        ],
        "offersCount": len(offers),
        "history": list(req.history_json or []),
        "requester": _user_summary(requester) if visible else {"name": "Community member"},
        "requesterContactVisible": visible,
        "feedback": req.feedback_json if status in FEEDBACK_REQUEST_STATUSES else None,
        "createdAt": iso(req.created_at),
        "updatedAt": iso(req.updated_at),
    }


def _load(db: Session, request_id: str) -> ServiceRequest:
    req = db.get(ServiceRequest, request_id)
    if req is None:
        raise NotFoundError("Service request")
    return req


def _check_service(db: Session, service_id: str | None) -> None:
    if not service_id:
        return
    service = db.get(Service, service_id)
    if service is None or not service.is_active:
        raise ValidationFailedError("Service not available")


def _can_view(req: ServiceRequest, viewer_id: str) -> bool:
    if req.type == "public":
        return True
    return viewer_id in (req.user_id, req.direct_target_user_id) or viewer_id in _assigned(req)


def _notify(db: Session, user_id: str | None, message: str, req: ServiceRequest) -> None:
    notify_user(
        db,
        user_id=user_id,
        type="service",
        message=message,
        target_type="serviceRequest",
        target_id=req.id,
    )


def _move(
    db: Session,
    req: ServiceRequest,
    target: ServiceRequestStatusV1,
    *,
    by: str | None,
    history_type: str,
    message: str,
) -> None:
    current = _status(req)
    if not can_transition(current, target):
        raise InvalidTransitionError(status_to_wire(current), status_to_wire(target))

    req.status = target.value
    _history(req, by=by, type=history_type, message=message)
    _touch(req)
    logger.info("service request %s moved %s -> %s by %s", req.id, current.value, target.value, by)


def create_request(db: Session, user: User, payload: ServiceRequestCreate) -> dict[str, Any]:
    _check_service(db, payload.service_id)

    status = _S.AWAITING_APPROVAL if payload.type == "private" else _S.PENDING
    req = ServiceRequest(
        id=uuid4().hex,
        user_id=user.id,
        service_id=payload.service_id or None,
        custom_name=payload.custom_name.strip(),
        title=payload.title.strip(),
        description=(payload.description or payload.message).strip(),
        details=payload.details.strip(),
        message=payload.message.strip(),
        location=payload.location.strip(),
        phone=(payload.phone or user.phone or "").strip(),
        preferred_date=payload.preferred_date.strip(),
        preferred_time=payload.preferred_time.strip(),
        payment_offer=payload.payment_offer.strip(),
        visibility=payload.type,
        type=payload.type,
        status=status.value,
        assigned_provider_ids_json=[],
        history_json=[],
    )
    _history(req, by=user.id, type="created", message="Service request created")
    db.add(req)
    db.commit()
    logger.info("service request %s created by %s as %s", req.id, user.id, status.value)

    _notify(db, user.id, "Service request created", req)
    return request_document(db, req, viewer_id=user.id)


def create_direct_request(db: Session, user: User, payload: DirectRequestCreate) -> dict[str, Any]:
    if payload.direct_target_user_id == user.id:
        raise ValidationFailedError("You cannot send a direct request to yourself")
    if db.get(User, payload.direct_target_user_id) is None:
        raise NotFoundError("Provider")
    _check_service(db, payload.service_id)

    req = ServiceRequest(
        id=uuid4().hex,
        user_id=user.id,
        service_id=payload.service_id or None,
        title=payload.title.strip(),
        description=payload.message.strip(),
        message=payload.message.strip(),
        phone=(user.phone or "").strip(),
        payment_offer=payload.payment_offer.strip(),
        visibility="private",
        type="direct",
        direct_target_user_id=payload.direct_target_user_id,
        status=_S.AWAITING_APPROVAL.value,
        assigned_provider_ids_json=[],
        history_json=[],
    )
    _history(req, by=user.id, type="created", message="Direct service request created")
    db.add(req)
    db.commit()
    logger.info("direct service request %s created by %s", req.id, user.id)

    _notify(db, payload.direct_target_user_id, "New direct service request", req)
    return request_document(db, req, viewer_id=user.id)


def list_public(
    db: Session, user: User, *, page: int | None = None, page_size: int | None = None
) -> dict[str, Any]:
    page, page_size = clamp_page(page, page_size)

    offered_ids = [
        request_id
        for (request_id,) in db.query(ServiceOffer.request_id)
        .filter(ServiceOffer.provider_id == user.id)
        .all()
    ]
    query = db.query(ServiceRequest).filter(
        ServiceRequest.type == "public",
        ServiceRequest.status == _S.PENDING.value,
        ServiceRequest.user_id != user.id,
    )
    if offered_ids:
        query = query.filter(ServiceRequest.id.notin_(offered_ids))

    total = query.count()
    rows = (
        query.order_by(ServiceRequest.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        "items": [request_document(db, r, viewer_id=user.id) for r in rows],
        "page": page,
        "pageSize": page_size,
        "total": total,
    }


def list_my_requests(db: Session, user: User) -> list[dict[str, Any]]:
    rows = (
        db.query(ServiceRequest)
        .filter(ServiceRequest.user_id == user.id)
        .order_by(ServiceRequest.created_at.desc())
        .all()
    )
    return [request_document(db, r, viewer_id=user.id) for r in rows]


def list_my_services(db: Session, user: User) -> list[dict[str, Any]]:
    """Requests the caller works on: assigned, targeted directly, or offered on."""

    own_offers = {
        o.request_id: o for o in db.query(ServiceOffer).filter(ServiceOffer.provider_id == user.id).all()
    }
    candidates = [ServiceRequest.direct_target_user_id == user.id]
    if own_offers:
        candidates.append(ServiceRequest.id.in_(list(own_offers)))
    # Assignment lives in a JSON list; the text match narrows, the Python check below is exact.
    assigned_text = cast(ServiceRequest.assigned_provider_ids_json, String)
    candidates.append(assigned_text.contains(f'"{user.id}"', autoescape=True))
    rows = (
        db.query(ServiceRequest)
        .filter(ServiceRequest.user_id != user.id, or_(*candidates))
        .order_by(ServiceRequest.created_at.desc())
        .all()
    )

    out: list[dict[str, Any]] = []
    for req in rows:
        if not (
            req.id in own_offers
            or req.direct_target_user_id == user.id
            or user.id in _assigned(req)
        ):
            continue
        doc = request_document(db, req, viewer_id=user.id)
        offer = own_offers.get(req.id)
        if offer is not None:
            doc["myOffer"] = _offer_document(db, offer, viewer_id=user.id, owner_id=req.user_id)
        out.append(doc)
    return out


def get_request(db: Session, user: User, request_id: str) -> dict[str, Any]:
    req = _load(db, request_id)
    if not _can_view(req, user.id):
        raise ForbiddenError("Not allowed to view this request")
    return request_document(db, req, viewer_id=user.id)


def update_status(
    db: Session, user: User, request_id: str, raw_status: str, note: str | None = None
) -> dict[str, Any]:
    try:
        target = status_from_wire(raw_status)
    except ValueError as e:
        raise ValidationFailedError(str(e)) from e

    req = _load(db, request_id)

    if target == _S.CANCELLED:
        if req.user_id != user.id:
            raise ForbiddenError("Only the requester can cancel this request")
        _move(db, req, target, by=user.id, history_type="cancelled", message=note or "Request cancelled")
        recipients = _assigned(req)
    elif target in _PROVIDER_TARGETS:
        if user.id not in _assigned(req):
            raise ForbiddenError("Only the assigned provider can update this request")
        history_type = "completed" if target == _S.COMPLETED else "status"
        _move(
            db,
            req,
            target,
            by=user.id,
            history_type=history_type,
            message=note or f"Status updated to {status_to_wire(target)}",
        )
        recipients = [req.user_id]
    else:
        raise ValidationFailedError(f"Status {status_to_wire(target)} cannot be set directly")

    db.commit()
    for recipient in recipients:
        if recipient != user.id:
            _notify(db, recipient, f"Status updated to {status_to_wire(target)}", req)
    return request_document(db, req, viewer_id=user.id)


def submit_offer(
    db: Session, user: User, request_id: str, *, note: str, expected_return: str
) -> dict[str, Any]:
    req = _load(db, request_id)
    if req.type != "public":
        raise ValidationFailedError("Only public requests accept offers")
    if req.user_id == user.id:
        raise ValidationFailedError("You cannot offer on your own request")
    if _status(req) != _S.PENDING:
        raise ConflictError("This request is no longer accepting offers")

    offer = (
        db.query(ServiceOffer)
        .filter(ServiceOffer.request_id == req.id, ServiceOffer.provider_id == user.id)
        .one_or_none()
    )
    if offer is None:
        offer = ServiceOffer(id=uuid4().hex, request_id=req.id, provider_id=user.id)
        db.add(offer)

    # Resubmitting replaces the terms and puts the offer back up for review.
    offer.note = note.strip()
    offer.expected_return = expected_return.strip()
    offer.status = OfferStatusV1.PENDING.value
    offer.updated_at = utcnow()

    _history(req, by=user.id, type="offer", message="Offer submitted")
    _touch(req)
    db.commit()
    logger.info("offer %s submitted on request %s by %s", offer.id, req.id, user.id)

    _notify(db, req.user_id, "New offer submitted", req)
    return {
        "request": request_document(db, req, viewer_id=user.id),
        "offer": _offer_document(db, offer, viewer_id=user.id, owner_id=req.user_id),
    }


def _load_offer(db: Session, req: ServiceRequest, offer_id: str) -> ServiceOffer:
    offer = db.get(ServiceOffer, offer_id)
    if offer is None or offer.request_id != req.id:
        raise NotFoundError("Offer")
    return offer


def accept_offer(db: Session, user: User, request_id: str, offer_id: str) -> dict[str, Any]:
    """Accept one offer and assign its provider.

    Sibling offers keep their status; the requester may still accept or reject them.
    """

    req = _load(db, request_id)
    if req.user_id != user.id:
        raise ForbiddenError("Only the requester can accept offers")

    offer = _load_offer(db, req, offer_id)
    if OfferStatusV1(offer.status) != OfferStatusV1.PENDING:
        raise ConflictError("Offer has already been decided")

    current = _status(req)
    if current not in (_S.PENDING, _S.ACCEPTED):
        raise InvalidTransitionError(status_to_wire(current), status_to_wire(_S.ACCEPTED))

    offer.status = OfferStatusV1.ACCEPTED_BY_SEEKER.value
    offer.updated_at = utcnow()

    assigned = _assigned(req)
    if offer.provider_id not in assigned:
        req.assigned_provider_ids_json = [*assigned, offer.provider_id]
    _history(req, by=user.id, type="offer_accepted", message="Offer accepted")

    if current == _S.PENDING:
        _move(db, req, _S.ACCEPTED, by=user.id, history_type="assigned", message="Provider assigned")
        req.accepted_at = utcnow()
    else:
        _touch(req)

    db.commit()
    _notify(db, offer.provider_id, "Offer accepted", req)
    return request_document(db, req, viewer_id=user.id)


def reject_offer(db: Session, user: User, request_id: str, offer_id: str) -> dict[str, Any]:
    req = _load(db, request_id)
    if req.user_id != user.id:
        raise ForbiddenError("Only the requester can reject offers")

    offer = _load_offer(db, req, offer_id)
    if OfferStatusV1(offer.status) != OfferStatusV1.PENDING:
        raise ConflictError("Offer has already been decided")

    offer.status = OfferStatusV1.REJECTED_BY_SEEKER.value
    offer.updated_at = utcnow()
    _history(req, by=user.id, type="offer_rejected", message="Offer rejected")
    _touch(req)
    db.commit()

    _notify(db, offer.provider_id, "Offer rejected", req)
    return request_document(db, req, viewer_id=user.id)


def accept_direct(
    db: Session, user: User, request_id: str, provider_note: str = ""
) -> dict[str, Any]:
    req = _load(db, request_id)
    if req.direct_target_user_id != user.id:
        raise ForbiddenError("Only the targeted provider can accept this request")

    _move(db, req, _S.ACCEPTED, by=user.id, history_type="assigned", message="Direct request accepted")
    req.assigned_provider_ids_json = [user.id]
    req.provider_note = provider_note.strip()
    req.accepted_at = utcnow()
    db.commit()

    _notify(db, req.user_id, "Direct request accepted", req)
    return request_document(db, req, viewer_id=user.id)


def reject_direct(
    db: Session, user: User, request_id: str, provider_note: str = ""
) -> dict[str, Any]:
    req = _load(db, request_id)
    if req.direct_target_user_id != user.id:
        raise ForbiddenError("Only the targeted provider can reject this request")

    _move(
        db,
        req,
        _S.REJECTED,
        by=user.id,
        history_type="rejected",
        message=provider_note.strip() or "Direct request rejected",
    )
    req.provider_note = provider_note.strip()
    db.commit()

    _notify(db, req.user_id, "Direct request rejected", req)
    return request_document(db, req, viewer_id=user.id)


def reopen(db: Session, user: User, request_id: str) -> dict[str, Any]:
    req = _load(db, request_id)
    if req.user_id != user.id:
        raise ForbiddenError("Only the requester can reopen this request")

    current = _status(req)
    if current not in REOPENABLE_REQUEST_STATUSES:
        raise InvalidTransitionError(status_to_wire(current), status_to_wire(_S.PENDING))

    previous = _assigned(req)
    req.status = _S.PENDING.value
    req.reopened_count = (req.reopened_count or 0) + 1
    req.assigned_provider_ids_json = []
    req.accepted_at = None
    _history(req, by=user.id, type="reopened", message="Request reopened")
    _touch(req)
    db.commit()
    logger.info("service request %s reopened (count=%s)", req.id, req.reopened_count)

    for provider_id in previous:
        _notify(db, provider_id, "A request you worked on was reopened", req)
    return request_document(db, req, viewer_id=user.id)


def get_feedback(db: Session, user: User, request_id: str) -> dict[str, Any] | None:
    req = _load(db, request_id)
    if not _can_view(req, user.id):
        raise ForbiddenError("Not allowed to view this request")
    if _status(req) not in FEEDBACK_REQUEST_STATUSES:
        return None
    return req.feedback_json


def submit_feedback(
    db: Session, user: User, request_id: str, *, rating: int, comment: str
) -> dict[str, Any]:
    req = _load(db, request_id)
    if req.user_id != user.id:
        raise ForbiddenError("Only the requester can leave feedback")
    if _status(req) not in FEEDBACK_REQUEST_STATUSES:
        raise ConflictError("Feedback can be left once the request is completed")

    req.feedback_json = {"rating": rating, "comment": comment.strip(), "updatedAt": iso(utcnow())}
    _history(req, by=user.id, type="feedback", message=f"Feedback left ({rating}/5)")
    _touch(req)
    db.commit()

    for provider_id in _assigned(req):
        _notify(db, provider_id, "You received feedback", req)
    return req.feedback_json


def _parse_date(raw: str, field: str) -> datetime:
    try:
        return datetime.fromisoformat(raw.strip())
    except ValueError as e:
        raise ValidationFailedError(f"Invalid {field} date: {raw!r}") from e


def admin_list(
    db: Session,
    *,
    status: str | None = None,
    q: str | None = None,
    service_id: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    page: int | None = None,
    page_size: int | None = None,
) -> dict[str, Any]:
    page, page_size = clamp_page(page, page_size)
    query = db.query(ServiceRequest)

    tokens = [t.strip() for t in (status or "").split(",") if t.strip()]
    if tokens:
        try:
            statuses = {status_from_wire(t).value for t in tokens}
        except ValueError as e:
            raise ValidationFailedError(str(e)) from e
        query = query.filter(ServiceRequest.status.in_(statuses))

    if service_id:
        query = query.filter(ServiceRequest.service_id == service_id)

    if q and q.strip():
        pattern = f"%{q.strip()}%"
        query = query.filter(
            or_(
                ServiceRequest.custom_name.ilike(pattern),
                ServiceRequest.title.ilike(pattern),
                ServiceRequest.description.ilike(pattern),
                ServiceRequest.location.ilike(pattern),
                ServiceRequest.phone.ilike(pattern),
            )
        )

    if date_from:
        query = query.filter(ServiceRequest.created_at >= _parse_date(date_from, "from"))
    if date_to:
        query = query.filter(ServiceRequest.created_at <= _parse_date(date_to, "to"))

    total = query.count()
    rows = (
        query.order_by(ServiceRequest.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        "items": [request_document(db, r, viewer_id=None, admin=True) for r in rows],
        "page": page,
        "pageSize": page_size,
        "total": total,
    }


def admin_update(db: Session, request_id: str, payload: AdminServiceRequestUpdate) -> dict[str, Any]:
    """Force status, notes and provider assignment; actor and transition rules do not apply."""

    if payload.status is None and payload.admin_notes is None and payload.assigned_provider_ids is None:
        raise ValidationFailedError("Nothing to update")

    req = _load(db, request_id)

    newly_assigned: list[str] = []
    if payload.assigned_provider_ids is not None:
        ids = list(dict.fromkeys(pid.strip() for pid in payload.assigned_provider_ids if pid and pid.strip()))
        missing = [pid for pid in ids if db.get(User, pid) is None]
        if missing:
            raise ValidationFailedError(f"Unknown provider(s): {', '.join(missing)}")
        newly_assigned = [pid for pid in ids if pid not in _assigned(req)]
        req.assigned_provider_ids_json = ids
        _history(req, by="admin", type="assigned", message=f"Providers set to {', '.join(ids) or 'none'}")

    if payload.status is not None:
        try:
            target = status_from_wire(payload.status)
        except ValueError as e:
            raise ValidationFailedError(str(e)) from e
        previous = _status(req)
        req.status = target.value
        if target == _S.ACCEPTED and req.accepted_at is None:
            req.accepted_at = utcnow()
        _history(req, by="admin", type="status", message=f"Status set to {status_to_wire(target)}")
        logger.info("admin moved service request %s %s -> %s", req.id, previous.value, target.value)

    if payload.admin_notes is not None:
        req.admin_notes = payload.admin_notes.strip()
        _history(req, by="admin", type="admin_note", message=req.admin_notes)

    _touch(req)
    db.commit()

    for provider_id in newly_assigned:
        _notify(db, provider_id, "You have been assigned to a service request", req)
    if newly_assigned:
        _notify(db, req.user_id, "An admin assigned a provider to your request", req)
    return request_document(db, req, viewer_id=None, admin=True)
