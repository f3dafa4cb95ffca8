"""Shared service-request schema (v1).

Statuses have exactly one canonical form inside Python (the snake_case enum values).
The wire carries PascalCase tokens; use the ``*_to_wire`` / ``*_from_wire`` helpers at
the boundary and nowhere else.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Literal

from pydantic import Field

from packages.shared.schemas.order_v1 import WireModel


class ServiceRequestStatusV1(str, Enum):
    PENDING = "pending"
    AWAITING_APPROVAL = "awaiting_approval"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class OfferStatusV1(str, Enum):
    PENDING = "pending"
    ACCEPTED_BY_SEEKER = "accepted_by_seeker"
    REJECTED_BY_SEEKER = "rejected_by_seeker"


_S = ServiceRequestStatusV1

SERVICE_REQUEST_TRANSITIONS: dict[ServiceRequestStatusV1, frozenset[ServiceRequestStatusV1]] = {
    _S.PENDING: frozenset({_S.AWAITING_APPROVAL, _S.ACCEPTED, _S.REJECTED, _S.CANCELLED}),
    _S.AWAITING_APPROVAL: frozenset({_S.ACCEPTED, _S.REJECTED, _S.CANCELLED}),
    _S.ACCEPTED: frozenset({_S.IN_PROGRESS, _S.CANCELLED}),
    _S.IN_PROGRESS: frozenset({_S.COMPLETED, _S.CANCELLED}),
    _S.COMPLETED: frozenset(),
    _S.CANCELLED: frozenset(),
    _S.REJECTED: frozenset(),
}

REOPENABLE_REQUEST_STATUSES = frozenset({_S.COMPLETED, _S.CANCELLED})
FEEDBACK_REQUEST_STATUSES = frozenset({_S.COMPLETED})

_REQUEST_WIRE: dict[ServiceRequestStatusV1, str] = {
    _S.PENDING: "Pending",
    _S.AWAITING_APPROVAL: "AwaitingApproval",
    _S.ACCEPTED: "Accepted",
    _S.IN_PROGRESS: "InProgress",
    _S.COMPLETED: "Completed",
    _S.CANCELLED: "Cancelled",
    _S.REJECTED: "Rejected",
}

_OFFER_WIRE: dict[OfferStatusV1, str] = {
    OfferStatusV1.PENDING: "Pending",
    OfferStatusV1.ACCEPTED_BY_SEEKER: "AcceptedBySeeker",
    OfferStatusV1.REJECTED_BY_SEEKER: "RejectedBySeeker",
}

# Tokens from the older open/assigned/closed moderation model.
_REQUEST_LEGACY: dict[str, ServiceRequestStatusV1] = {
    "open": _S.PENDING,
    "offered": _S.PENDING,
    "assigned": _S.ACCEPTED,
    "closed": _S.COMPLETED,
    "canceled": _S.CANCELLED,
}

_OFFER_LEGACY: dict[str, OfferStatusV1] = {
    "accepted": OfferStatusV1.ACCEPTED_BY_SEEKER,
    "rejected": OfferStatusV1.REJECTED_BY_SEEKER,
}

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def _token(raw: Any) -> str:
    text = str(raw or "").strip()
    if not text.isupper():
        text = _CAMEL_BOUNDARY.sub("_", text)
    return re.sub(r"[\s\-]+", "_", text).lower()


def status_to_wire(status: ServiceRequestStatusV1) -> str:
    return _REQUEST_WIRE[ServiceRequestStatusV1(status)]


def status_from_wire(raw: Any) -> ServiceRequestStatusV1:
    if isinstance(raw, ServiceRequestStatusV1):
        return raw
    token = _token(raw)
    try:
        return ServiceRequestStatusV1(token)
    except ValueError:
        pass
    if token in _REQUEST_LEGACY:
        return _REQUEST_LEGACY[token]
    raise ValueError(f"Unknown service request status: {raw!r}")


def offer_status_to_wire(status: OfferStatusV1) -> str:
    return _OFFER_WIRE[OfferStatusV1(status)]


def offer_status_from_wire(raw: Any) -> OfferStatusV1:
    if isinstance(raw, OfferStatusV1):
        return raw
    token = _token(raw)
    try:
        return OfferStatusV1(token)
    except ValueError:
        pass
    if token in _OFFER_LEGACY:
        return _OFFER_LEGACY[token]
    raise ValueError(f"Unknown offer status: {raw!r}")


def can_transition(current: ServiceRequestStatusV1, target: ServiceRequestStatusV1) -> bool:
    return target in SERVICE_REQUEST_TRANSITIONS[current]


class UserSummaryV1(WireModel):
    id: str
    name: str = ""
    phone: str | None = None
    location: str | None = None
    address: str | None = None


class ServiceOfferV1(WireModel):
    id: str
    provider_id: str
    provider: UserSummaryV1 | None = None
    note: str = ""
    expected_return: str = ""
    status: OfferStatusV1 = OfferStatusV1.PENDING
    created_at: str | None = None


class HistoryEntryV1(WireModel):
    at: str | None = None
    by: str | None = None
    type: str = "admin_note"
    message: str | None = None


class FeedbackV1(WireModel):
    rating: int | None = Field(None, ge=1, le=5)
    comment: str | None = None
    updated_at: str | None = None


class ServiceRequestV1(WireModel):
    id: str
    user_id: str | None = None
    service_id: str | None = None
    custom_name: str = ""
    title: str = ""
    description: str = ""
    details: str = ""
    message: str = ""
    location: str = ""
    phone: str = ""
    preferred_date: str = ""
    preferred_time: str = ""
    payment_offer: str = ""
    service_name: str = ""
    visibility: Literal["public", "private"] = "public"
    type: Literal["public", "private", "direct"] = "public"
    direct_target_user_id: str | None = None
    status: ServiceRequestStatusV1 = ServiceRequestStatusV1.PENDING
    admin_notes: str = ""
    reopened_count: int = 0
    provider_note: str = ""
    accepted_at: str | None = None
    assigned_provider_id: str | None = None
    assigned_provider: UserSummaryV1 | None = None
    assigned_provider_ids: list[str] = Field(default_factory=list)
    assigned_providers: list[UserSummaryV1] = Field(default_factory=list)
    offers: list[ServiceOfferV1] = Field(default_factory=list)
    offers_count: int = 0
    history: list[HistoryEntryV1] = Field(default_factory=list)
    requester: UserSummaryV1 | None = None
    requester_contact_visible: bool = False
    feedback: FeedbackV1 | None = None
    created_at: str | None = None
    updated_at: str | None = None
