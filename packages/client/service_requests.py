"""Service-request API client.

Requests come back from the server with PascalCase status tokens; ``normalize_request``
turns them into ``ServiceRequestV1`` with the canonical enums, and outbound status
changes are converted back with ``status_to_wire``. Methods raise ``httpx`` errors; use
``packages.client.http.error_message`` to show them.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from packages.client.http import request_with_legacy_fallback, send
from packages.client.payload import parse_item, parse_items
from packages.shared.schemas.envelope_v1 import MAX_PAGE_SIZE
from packages.shared.schemas.service_request_v1 import (
    FEEDBACK_REQUEST_STATUSES,
    FeedbackV1,
    HistoryEntryV1,
    ServiceOfferV1,
    ServiceRequestStatusV1,
    ServiceRequestV1,
    UserSummaryV1,
    offer_status_from_wire,
    status_from_wire,
    status_to_wire,
)

logger = logging.getLogger(__name__)

ADMIN_PATH = "/api/admin/service-requests"
LEGACY_ADMIN_PATH = "/admin/service-requests"


class ServiceRequestPayloadError(ValueError):
    pass


def _id_of(value: Any) -> str | None:
    if isinstance(value, dict):
        value = value.get("_id") or value.get("id")
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _summary(value: Any) -> UserSummaryV1 | None:
    if not isinstance(value, dict):
        return None
    return UserSummaryV1(
        id=_id_of(value) or "",
        name=_text(value.get("name")),
        phone=value.get("phone") or None,
        location=value.get("location") or None,
        address=value.get("address") if isinstance(value.get("address"), str) else None,
    )


def _offer(raw: Any) -> ServiceOfferV1 | None:
    if not isinstance(raw, dict):
        return None
    offer_id = _id_of(raw)
    provider_id = _id_of(raw.get("providerId")) or _id_of(raw.get("provider"))
    if not offer_id or not provider_id:
        logger.warning("skipping offer without id or provider: %r", raw)
        return None
    return ServiceOfferV1(
        id=offer_id,
        provider_id=provider_id,
        provider=_summary(raw.get("provider")),
        note=_text(raw.get("note")),
        expected_return=_text(raw.get("expectedReturn")),
        status=offer_status_from_wire(raw.get("status") or "pending"),
        created_at=raw.get("createdAt") or None,
    )


def normalize_request(raw: Any) -> ServiceRequestV1:
    """Convert one wire document into ``ServiceRequestV1``.

    Raises ``ServiceRequestPayloadError`` when the id is missing or a status token is
    unknown.
    """

    if not isinstance(raw, dict):
        raise ServiceRequestPayloadError("Invalid service request payload")
    request_id = _id_of(raw)
    if not request_id:
        raise ServiceRequestPayloadError("Service request payload is missing an id")

    try:
        status = status_from_wire(raw.get("status") or "pending")
        offers = [o for o in (_offer(entry) for entry in raw.get("offers") or []) if o is not None]
    except ValueError as e:
        raise ServiceRequestPayloadError(f"Service request {request_id}: {e}") from e

    assigned_ids = [str(pid) for pid in raw.get("assignedProviderIds") or [] if pid]
    assigned_id = _id_of(raw.get("assignedProviderId")) or (assigned_ids[0] if assigned_ids else None)
    if assigned_id and assigned_id not in assigned_ids:
        assigned_ids.insert(0, assigned_id)

    service = raw.get("service") if isinstance(raw.get("service"), dict) else {}
    feedback = raw.get("feedback") if isinstance(raw.get("feedback"), dict) else None
    request_type = raw.get("type") if raw.get("type") in ("public", "private", "direct") else "public"

    try:
        return ServiceRequestV1(
            id=request_id,
            user_id=_id_of(raw.get("userId")) or _id_of(raw.get("user")),
            service_id=_id_of(raw.get("serviceId")) or _id_of(service),
            service_name=_text(service.get("name")),
            custom_name=_text(raw.get("customName")),
            title=_text(raw.get("title")),
            description=_text(raw.get("description")) or _text(raw.get("message")),
            details=_text(raw.get("details")),
            message=_text(raw.get("message")),
            location=_text(raw.get("location")),
            phone=_text(raw.get("phone")),
            preferred_date=_text(raw.get("preferredDate")),
            preferred_time=_text(raw.get("preferredTime")),
            payment_offer=_text(raw.get("paymentOffer")),
            visibility="private" if raw.get("visibility") == "private" else "public",
            type=request_type,
            direct_target_user_id=_id_of(raw.get("directTargetUserId")),
            status=status,
            admin_notes=_text(raw.get("adminNotes")),
            reopened_count=int(raw.get("reopenedCount") or 0),
            provider_note=_text(raw.get("providerNote")),
            accepted_at=raw.get("acceptedAt") or None,
            assigned_provider_id=assigned_id,
            assigned_provider=_summary(raw.get("assignedProvider")),
            assigned_provider_ids=assigned_ids,
            assigned_providers=[
                s for s in (_summary(p) for p in raw.get("assignedProviders") or []) if s is not None
            ],
            offers=offers,
            offers_count=int(raw.get("offersCount") or len(offers)),
            history=[HistoryEntryV1.model_validate(h) for h in raw.get("history") or [] if isinstance(h, dict)],
            requester=_summary(raw.get("requester")),
            requester_contact_visible=bool(raw.get("requesterContactVisible")),
            feedback=FeedbackV1.model_validate(feedback) if feedback else None,
            created_at=raw.get("createdAt") or None,
            updated_at=raw.get("updatedAt") or None,
        )
    except ValidationError as e:
        raise ServiceRequestPayloadError(f"Service request {request_id} failed validation: {e}") from e


def feedback_for(request: ServiceRequestV1) -> FeedbackV1 | None:
    if request.status not in FEEDBACK_REQUEST_STATUSES:
        return None
    return request.feedback


def _normalize_all(raw_requests: list[Any]) -> list[ServiceRequestV1]:
    requests: list[ServiceRequestV1] = []
    for raw in raw_requests:
        try:
            requests.append(normalize_request(raw))
        except ServiceRequestPayloadError as e:
            logger.warning("skipping service request: %s", e)
    return requests


def _body(**fields: Any) -> dict[str, Any]:
    return {k: v for k, v in fields.items() if v is not None}


class ServiceRequestsClient:
    def __init__(self, http: httpx.Client) -> None:
        self.http = http

    def _one(self, method: str, url: str, **kwargs: Any) -> ServiceRequestV1:
        return normalize_request(parse_item(send(self.http, method, url, **kwargs), ("request",)))

    def _many(self, url: str, **kwargs: Any) -> list[ServiceRequestV1]:
        return _normalize_all(parse_items(send(self.http, "GET", url, **kwargs)))

    def create(
        self,
        *,
        service_id: str | None = None,
        custom_name: str | None = None,
        title: str | None = None,
        description: str | None = None,
        location: str | None = None,
        phone: str | None = None,
        preferred_date: str | None = None,
        preferred_time: str | None = None,
        payment_offer: str | None = None,
        visibility: str = "public",
    ) -> ServiceRequestV1:
        body = _body(
            serviceId=service_id,
            customName=custom_name,
            title=title,
            description=description,
            location=location,
            phone=phone,
            preferredDate=preferred_date,
            preferredTime=preferred_time,
            paymentOffer=payment_offer,
            type=visibility,
        )
        return self._one("POST", "/service-requests", json=body)

    def create_direct(
        self,
        direct_target_user_id: str,
        *,
        service_id: str | None = None,
        title: str | None = None,
        message: str | None = None,
        payment_offer: str | None = None,
    ) -> ServiceRequestV1:
        body = _body(
            directTargetUserId=direct_target_user_id,
            serviceId=service_id,
            title=title,
            message=message,
            paymentOffer=payment_offer,
        )
        return self._one("POST", "/service-requests/direct", json=body)

    def list_public(self, *, page: int = 1, page_size: int = 20) -> list[ServiceRequestV1]:
        return self._many("/service-requests/public", params={"page": page, "pageSize": page_size})

    def my_requests(self) -> list[ServiceRequestV1]:
        return self._many("/service-requests/my-requests")

    def my_services(self) -> list[ServiceRequestV1]:
        return self._many("/service-requests/my-services")

    def get(self, request_id: str) -> ServiceRequestV1:
        return self._one("GET", f"/service-requests/{request_id}")

    def update_status(
        self, request_id: str, status: ServiceRequestStatusV1 | str, note: str | None = None
    ) -> ServiceRequestV1:
        body = _body(status=status_to_wire(status_from_wire(status)), note=note)
        return self._one("PATCH", f"/service-requests/{request_id}/status", json=body)

    def submit_offer(
        self, request_id: str, *, note: str = "", expected_return: str = ""
    ) -> ServiceRequestV1:
        body = {"note": note, "expectedReturn": expected_return}
        return self._one("POST", f"/service-requests/{request_id}/offers", json=body)

    def accept_offer(self, request_id: str, offer_id: str) -> ServiceRequestV1:
        return self._one("PATCH", f"/service-requests/{request_id}/offers/{offer_id}/accept")

    def reject_offer(self, request_id: str, offer_id: str) -> ServiceRequestV1:
        return self._one("PATCH", f"/service-requests/{request_id}/offers/{offer_id}/reject")

    def accept_direct(self, request_id: str, provider_note: str = "") -> ServiceRequestV1:
        return self._one(
            "PATCH", f"/service-requests/{request_id}/accept-direct", json={"providerNote": provider_note}
        )

    def reject_direct(self, request_id: str, provider_note: str = "") -> ServiceRequestV1:
        return self._one(
            "PATCH", f"/service-requests/{request_id}/reject-direct", json={"providerNote": provider_note}
        )

    def reopen(self, request_id: str) -> ServiceRequestV1:
        return self._one("POST", f"/service-requests/{request_id}/reopen")

    def get_feedback(self, request_id: str) -> FeedbackV1 | None:
        data = parse_item(send(self.http, "GET", f"/service-requests/{request_id}/feedback"), ())
        feedback = data.get("feedback")
        return FeedbackV1.model_validate(feedback) if isinstance(feedback, dict) else None

    def submit_feedback(self, request_id: str, rating: int, comment: str = "") -> FeedbackV1:
        data = parse_item(
            send(
                self.http,
                "POST",
                f"/service-requests/{request_id}/feedback",
                json={"rating": rating, "comment": comment},
            ),
            (),
        )
        return FeedbackV1.model_validate(data.get("feedback") or {})


class AdminServiceRequestsClient:
    """Admin moderation calls; tries ``/api/admin`` first and falls back to ``/admin`` on 404."""

    def __init__(self, http: httpx.Client) -> None:
        self.http = http

    def list(
        self,
        *,
        status: list[ServiceRequestStatusV1 | str] | None = None,
        q: str | None = None,
        service_id: str | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> list[ServiceRequestV1]:
        params = _body(
            status=",".join(status_to_wire(status_from_wire(s)) for s in status) if status else None,
            q=q or None,
            serviceId=service_id,
            **{"from": date_from, "to": date_to},
            page=page,
            pageSize=min(page_size, MAX_PAGE_SIZE),
        )
        body = request_with_legacy_fallback(self.http, "GET", ADMIN_PATH, LEGACY_ADMIN_PATH, params=params)
        return _normalize_all(parse_items(body))

    def update(
        self,
        request_id: str,
        *,
        status: ServiceRequestStatusV1 | str | None = None,
        admin_notes: str | None = None,
        assigned_provider_ids: list[str] | None = None,
    ) -> ServiceRequestV1:
        body = _body(
            status=status_to_wire(status_from_wire(status)) if status is not None else None,
            adminNotes=admin_notes,
            assignedProviderIds=assigned_provider_ids,
        )
        data = request_with_legacy_fallback(
            self.http,
            "PATCH",
            f"{ADMIN_PATH}/{request_id}",
            f"{LEGACY_ADMIN_PATH}/{request_id}",
            json=body,
        )
        return normalize_request(parse_item(data, ("request",)))
