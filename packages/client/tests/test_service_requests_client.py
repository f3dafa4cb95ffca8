from __future__ import annotations

import json

import httpx
import pytest

from packages.client.service_requests import (
    AdminServiceRequestsClient,
    ServiceRequestPayloadError,
    ServiceRequestsClient,
    feedback_for,
    normalize_request,
)
from packages.shared.schemas.service_request_v1 import OfferStatusV1, ServiceRequestStatusV1


def _wire(**overrides) -> dict:
    doc = {
        "_id": "sr-1",
        "userId": "u-customer",
        "service": {"_id": "svc-plumbing", "name": "Plumbing"},
        "message": "Tap is leaking",
        "status": "Pending",
        "type": "public",
        "visibility": "public",
        "offers": [
            {"_id": "of-1", "providerId": "u-provider-1", "status": "AcceptedBySeeker", "note": "Today"},
            {"_id": "of-2", "provider": {"_id": "u-provider-2", "name": "Meena"}, "status": "Pending"},
        ],
        "history": [{"at": "2026-01-01T10:00:00+00:00", "by": "u-customer", "type": "created"}],
    }
    doc.update(overrides)
    return doc


def _http(handler) -> httpx.Client:
    return httpx.Client(base_url="http://api.test", transport=httpx.MockTransport(handler))


def test_normalize_maps_wire_tokens_to_canonical_enums() -> None:
    req = normalize_request(_wire(status="InProgress"))

    assert req.id == "sr-1"
    assert req.status == ServiceRequestStatusV1.IN_PROGRESS
    assert req.service_id == "svc-plumbing"
    assert req.service_name == "Plumbing"
    assert req.description == "Tap is leaking"
    assert [o.status for o in req.offers] == [OfferStatusV1.ACCEPTED_BY_SEEKER, OfferStatusV1.PENDING]
    assert req.offers[1].provider_id == "u-provider-2"
    assert req.offers[1].provider.name == "Meena"
    assert req.offers_count == 2
    assert req.history[0].type == "created"


@pytest.mark.parametrize(
    ("token", "expected"),
    [
        ("AwaitingApproval", ServiceRequestStatusV1.AWAITING_APPROVAL),
        ("awaiting_approval", ServiceRequestStatusV1.AWAITING_APPROVAL),
        ("IN_PROGRESS", ServiceRequestStatusV1.IN_PROGRESS),
        ("in progress", ServiceRequestStatusV1.IN_PROGRESS),
        ("open", ServiceRequestStatusV1.PENDING),
        ("assigned", ServiceRequestStatusV1.ACCEPTED),
        ("closed", ServiceRequestStatusV1.COMPLETED),
    ],
)
def test_normalize_accepts_status_spellings(token: str, expected: ServiceRequestStatusV1) -> None:
    assert normalize_request(_wire(status=token)).status == expected


def test_normalize_rejects_bad_payloads() -> None:
    with pytest.raises(ServiceRequestPayloadError):
        normalize_request({"status": "Pending"})
    with pytest.raises(ServiceRequestPayloadError):
        normalize_request(_wire(status="Vanished"))
    with pytest.raises(ServiceRequestPayloadError):
        normalize_request(_wire(feedback={"rating": 9}))


def test_assigned_provider_id_is_folded_into_list() -> None:
    req = normalize_request(_wire(status="Accepted", assignedProviderId="u-provider-1"))
    assert req.assigned_provider_ids == ["u-provider-1"]
    assert req.assigned_provider_id == "u-provider-1"


def test_feedback_is_gated_on_completion() -> None:
    feedback = {"rating": 4, "comment": "Good"}

    assert feedback_for(normalize_request(_wire(status="InProgress", feedback=feedback))) is None
    done = feedback_for(normalize_request(_wire(status="Completed", feedback=feedback)))
    assert done.rating == 4


def test_update_status_sends_pascal_case() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "PATCH"
        assert request.url.path == "/service-requests/sr-1/status"
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True, "data": _wire(status="InProgress")})

    req = ServiceRequestsClient(_http(handler)).update_status("sr-1", ServiceRequestStatusV1.IN_PROGRESS)

    assert bodies == [{"status": "InProgress"}]
    assert req.status == ServiceRequestStatusV1.IN_PROGRESS


def test_submit_offer_returns_request_from_keyed_payload() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content) == {"note": "Today", "expectedReturn": "300"}
        data = {"request": _wire(), "offer": {"_id": "of-1", "providerId": "u-provider-1"}}
        return httpx.Response(201, json={"ok": True, "data": data})

    req = ServiceRequestsClient(_http(handler)).submit_offer("sr-1", note="Today", expected_return="300")
    assert req.id == "sr-1"


def test_get_feedback_returns_none_before_completion() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": True, "data": {"feedback": None}, "traceId": "t"})

    assert ServiceRequestsClient(_http(handler)).get_feedback("sr-1") is None


def test_list_skips_broken_documents() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": True, "data": [_wire(), {"status": "Pending"}]})

    requests = ServiceRequestsClient(_http(handler)).my_requests()
    assert [r.id for r in requests] == ["sr-1"]


def test_admin_list_falls_back_to_legacy_path_on_404() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        if request.url.path.startswith("/api/admin"):
            return httpx.Response(404, json={"detail": "Not Found"})
        assert request.url.params["status"] == "Pending,InProgress"
        return httpx.Response(200, json={"items": [_wire()], "page": 1, "pageSize": 20, "total": 1})

    admin = AdminServiceRequestsClient(_http(handler))
    listed = admin.list(status=["pending", ServiceRequestStatusV1.IN_PROGRESS])

    assert paths == ["/api/admin/service-requests", "/admin/service-requests"]
    assert [r.id for r in listed] == ["sr-1"]


def test_admin_update_does_not_fall_back_on_other_errors() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(400, json={"ok": False, "error": {"status": 400, "message": "Nothing to update"}})

    admin = AdminServiceRequestsClient(_http(handler))
    with pytest.raises(httpx.HTTPStatusError):
        admin.update("sr-1", admin_notes="")

    assert paths == ["/api/admin/service-requests/sr-1"]


def test_admin_update_parses_request_key() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content) == {"status": "Completed", "assignedProviderIds": ["u-provider-1"]}
        return httpx.Response(200, json={"ok": True, "data": {"request": _wire(status="Completed")}})

    admin = AdminServiceRequestsClient(_http(handler))
    updated = admin.update("sr-1", status=ServiceRequestStatusV1.COMPLETED, assigned_provider_ids=["u-provider-1"])

    assert updated.status == ServiceRequestStatusV1.COMPLETED
