from __future__ import annotations

from fastapi.testclient import TestClient

REQUESTER = {"X-User-Id": "u-customer"}
PROVIDER_1 = {"X-User-Id": "u-provider-1"}
PROVIDER_2 = {"X-User-Id": "u-provider-2"}
STRANGER = {"X-User-Id": "u-owner"}


def _create(client: TestClient, **fields) -> dict:
    body = {"serviceId": "svc-plumbing", "description": "Kitchen tap leaking", "location": "Gandhi Nagar"}
    body.update(fields)
    response = client.post("/service-requests", json=body, headers=REQUESTER)
    assert response.status_code == 201, response.text
    return response.json()["data"]


def _offer(client: TestClient, request_id: str, headers: dict, note: str = "Can come today") -> dict:
    response = client.post(
        f"/service-requests/{request_id}/offers",
        json={"note": note, "expectedReturn": "300"},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


def _assigned_request(client: TestClient) -> tuple[str, str]:
    req = _create(client)
    offer = _offer(client, req["_id"], PROVIDER_1)["offer"]
    accepted = client.patch(f"/service-requests/{req['_id']}/offers/{offer['_id']}/accept", headers=REQUESTER)
    assert accepted.status_code == 200
    return req["_id"], offer["_id"]


def test_public_request_starts_pending_with_wire_status(client: TestClient) -> None:
    req = _create(client)

    assert req["status"] == "Pending"
    assert req["type"] == "public"
    assert req["service"] == {"_id": "svc-plumbing", "name": "Plumbing"}
    assert req["phone"] == "9876543210"
    assert req["history"][0]["type"] == "created"


def test_private_request_awaits_approval(client: TestClient) -> None:
    req = _create(client, type="private")
    assert req["status"] == "AwaitingApproval"
    assert req["visibility"] == "private"


def test_request_needs_a_service_or_description_of_one(client: TestClient) -> None:
    response = client.post("/service-requests", json={"description": "help"}, headers=REQUESTER)
    assert response.status_code == 422

    custom = client.post("/service-requests", json={"customName": "Tailoring"}, headers=REQUESTER)
    assert custom.status_code == 201


def test_public_feed_hides_contact_and_own_requests(client: TestClient) -> None:
    req = _create(client)

    own_feed = client.get("/service-requests/public", headers=REQUESTER).json()["data"]
    assert own_feed["items"] == []

    feed = client.get("/service-requests/public", headers=PROVIDER_1).json()["data"]
    assert [r["_id"] for r in feed["items"]] == [req["_id"]]
    masked = feed["items"][0]
    assert masked["phone"] == ""
    assert masked["userId"] is None
    assert masked["requester"] == {"name": "Community member"}
    assert masked["requesterContactVisible"] is False


def test_offer_isolation_between_providers(client: TestClient) -> None:
    req = _create(client)
    _offer(client, req["_id"], PROVIDER_1)
    _offer(client, req["_id"], PROVIDER_2, note="Tomorrow morning")

    seen_by_1 = client.get(f"/service-requests/{req['_id']}", headers=PROVIDER_1).json()["data"]
    assert [o["providerId"] for o in seen_by_1["offers"]] == ["u-provider-1"]
    assert seen_by_1["offersCount"] == 2

    seen_by_owner = client.get(f"/service-requests/{req['_id']}", headers=REQUESTER).json()["data"]
    assert {o["providerId"] for o in seen_by_owner["offers"]} == {"u-provider-1", "u-provider-2"}

    # Already offered on, so it drops out of provider 1's feed.
    feed = client.get("/service-requests/public", headers=PROVIDER_1).json()["data"]
    assert feed["items"] == []


def test_offer_rules(client: TestClient) -> None:
    req = _create(client)

    own = client.post(f"/service-requests/{req['_id']}/offers", json={}, headers=REQUESTER)
    assert own.status_code == 400

    private = _create(client, type="private")
    blocked = client.post(f"/service-requests/{private['_id']}/offers", json={}, headers=PROVIDER_1)
    assert blocked.status_code == 400


def test_resubmitted_offer_replaces_terms(client: TestClient) -> None:
    req = _create(client)
    first = _offer(client, req["_id"], PROVIDER_1)["offer"]
    client.patch(f"/service-requests/{req['_id']}/offers/{first['_id']}/reject", headers=REQUESTER)

    second = _offer(client, req["_id"], PROVIDER_1, note="Lower price")["offer"]
    assert second["_id"] == first["_id"]
    assert second["status"] == "Pending"
    assert second["note"] == "Lower price"


def test_accepting_one_offer_leaves_siblings_pending(client: TestClient) -> None:
    req = _create(client)
    offer_1 = _offer(client, req["_id"], PROVIDER_1)["offer"]
    offer_2 = _offer(client, req["_id"], PROVIDER_2)["offer"]

    response = client.patch(f"/service-requests/{req['_id']}/offers/{offer_1['_id']}/accept", headers=REQUESTER)
    assert response.status_code == 200
    doc = response.json()["data"]

    assert doc["status"] == "Accepted"
    assert doc["assignedProviderIds"] == ["u-provider-1"]
    assert doc["acceptedAt"]
    statuses = {o["_id"]: o["status"] for o in doc["offers"]}
    assert statuses[offer_1["_id"]] == "AcceptedBySeeker"
    assert statuses[offer_2["_id"]] == "Pending"

    again = client.patch(f"/service-requests/{req['_id']}/offers/{offer_1['_id']}/accept", headers=REQUESTER)
    assert again.status_code == 409

    not_owner = client.patch(
        f"/service-requests/{req['_id']}/offers/{offer_2['_id']}/accept", headers=PROVIDER_2
    )
    assert not_owner.status_code == 403


def test_assigned_provider_sees_requester_contact(client: TestClient) -> None:
    request_id, _ = _assigned_request(client)

    doc = client.get(f"/service-requests/{request_id}", headers=PROVIDER_1).json()["data"]
    assert doc["requesterContactVisible"] is True
    assert doc["phone"] == "9876543210"
    assert doc["requester"]["name"] == "Asha"

    other = client.get(f"/service-requests/{request_id}", headers=PROVIDER_2).json()["data"]
    assert other["phone"] == ""


def test_status_patch_enforces_actor_and_lifecycle(client: TestClient) -> None:
    request_id, _ = _assigned_request(client)
    url = f"/service-requests/{request_id}/status"

    assert client.patch(url, json={"status": "InProgress"}, headers=REQUESTER).status_code == 403
    assert client.patch(url, json={"status": "Completed"}, headers=PROVIDER_1).status_code == 409
    assert client.patch(url, json={"status": "Accepted"}, headers=PROVIDER_1).status_code == 400
    assert client.patch(url, json={"status": "Teleported"}, headers=PROVIDER_1).status_code == 400

    started = client.patch(url, json={"status": "InProgress"}, headers=PROVIDER_1)
    assert started.status_code == 200
    assert started.json()["data"]["status"] == "InProgress"

    # snake_case tokens are read the same as PascalCase.
    done = client.patch(url, json={"status": "completed"}, headers=PROVIDER_1)
    assert done.status_code == 200
    assert done.json()["data"]["status"] == "Completed"

    assert client.patch(url, json={"status": "Cancelled"}, headers=REQUESTER).status_code == 409


def test_requester_can_cancel_pending_request(client: TestClient) -> None:
    req = _create(client)
    url = f"/service-requests/{req['_id']}/status"

    assert client.patch(url, json={"status": "Cancelled"}, headers=PROVIDER_1).status_code == 403
    response = client.patch(url, json={"status": "Cancelled", "note": "Fixed it myself"}, headers=REQUESTER)
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "Cancelled"


def test_feedback_only_after_completion(client: TestClient) -> None:
    request_id, _ = _assigned_request(client)
    url = f"/service-requests/{request_id}/feedback"
    status_url = f"/service-requests/{request_id}/status"

    client.patch(status_url, json={"status": "InProgress"}, headers=PROVIDER_1)
    assert client.get(url, headers=REQUESTER).json()["data"] == {"feedback": None}
    assert client.post(url, json={"rating": 5}, headers=REQUESTER).status_code == 409

    client.patch(status_url, json={"status": "Completed"}, headers=PROVIDER_1)
    assert client.post(url, json={"rating": 5}, headers=PROVIDER_1).status_code == 403

    posted = client.post(url, json={"rating": 4, "comment": "Quick work"}, headers=REQUESTER)
    assert posted.status_code == 200
    feedback = posted.json()["data"]["feedback"]
    assert feedback["rating"] == 4
    assert feedback["comment"] == "Quick work"

    read = client.get(url, headers=PROVIDER_1).json()["data"]["feedback"]
    assert read["rating"] == 4


def test_reopen_clears_assignment(client: TestClient) -> None:
    request_id, _ = _assigned_request(client)
    status_url = f"/service-requests/{request_id}/status"

    early = client.post(f"/service-requests/{request_id}/reopen", headers=REQUESTER)
    assert early.status_code == 409

    client.patch(status_url, json={"status": "InProgress"}, headers=PROVIDER_1)
    client.patch(status_url, json={"status": "Completed"}, headers=PROVIDER_1)

    reopened = client.post(f"/service-requests/{request_id}/reopen", headers=REQUESTER)
    assert reopened.status_code == 200
    doc = reopened.json()["data"]
    assert doc["status"] == "Pending"
    assert doc["reopenedCount"] == 1
    assert doc["assignedProviderIds"] == []
    assert doc["acceptedAt"] is None
    assert doc["feedback"] is None


def test_direct_request_flow(client: TestClient) -> None:
    response = client.post(
        "/service-requests/direct",
        json={"directTargetUserId": "u-provider-2", "message": "Fan not working", "serviceId": "svc-electrician"},
        headers=REQUESTER,
    )
    assert response.status_code == 201
    req = response.json()["data"]
    assert req["type"] == "direct"
    assert req["status"] == "AwaitingApproval"

    target_view = client.get(f"/service-requests/{req['_id']}", headers=PROVIDER_2).json()["data"]
    assert target_view["phone"] == ""
    assert client.get(f"/service-requests/{req['_id']}", headers=PROVIDER_1).status_code == 403

    assert client.patch(f"/service-requests/{req['_id']}/accept-direct", json={}, headers=PROVIDER_1).status_code == 403

    accepted = client.patch(
        f"/service-requests/{req['_id']}/accept-direct", json={"providerNote": "Evening slot"}, headers=PROVIDER_2
    )
    assert accepted.status_code == 200
    doc = accepted.json()["data"]
    assert doc["status"] == "Accepted"
    assert doc["providerNote"] == "Evening slot"
    assert doc["phone"] == "9876543210"

    services = client.get("/service-requests/my-services", headers=PROVIDER_2).json()["data"]
    assert [r["_id"] for r in services] == [req["_id"]]


def test_direct_request_can_be_declined(client: TestClient) -> None:
    req = client.post(
        "/service-requests/direct", json={"directTargetUserId": "u-provider-1"}, headers=REQUESTER
    ).json()["data"]

    declined = client.patch(
        f"/service-requests/{req['_id']}/reject-direct", json={"providerNote": "Busy"}, headers=PROVIDER_1
    )
    assert declined.status_code == 200
    assert declined.json()["data"]["status"] == "Rejected"

    again = client.patch(f"/service-requests/{req['_id']}/accept-direct", json={}, headers=PROVIDER_1)
    assert again.status_code == 409


def test_direct_request_to_self_or_unknown_user(client: TestClient) -> None:
    self_target = client.post("/service-requests/direct", json={"directTargetUserId": "u-customer"}, headers=REQUESTER)
    assert self_target.status_code == 400

    unknown = client.post("/service-requests/direct", json={"directTargetUserId": "ghost"}, headers=REQUESTER)
    assert unknown.status_code == 404


def test_my_lists(client: TestClient) -> None:
    req = _create(client)
    _offer(client, req["_id"], PROVIDER_1)

    mine = client.get("/service-requests/my-requests", headers=REQUESTER).json()["data"]
    assert [r["_id"] for r in mine] == [req["_id"]]

    services = client.get("/service-requests/my-services", headers=PROVIDER_1).json()["data"]
    assert services[0]["_id"] == req["_id"]
    assert services[0]["myOffer"]["providerId"] == "u-provider-1"

    assert client.get("/service-requests/my-services", headers=STRANGER).json()["data"] == []


def test_missing_request_is_404(client: TestClient) -> None:
    response = client.get("/service-requests/does-not-exist", headers=REQUESTER)
    assert response.status_code == 404
    assert response.json()["error"]["message"] == "Service request not found"
