from __future__ import annotations

import json
import logging

import httpx
import pytest

from packages.client.cart_store import CartStore, LocalStorageCartRepository
from packages.client.orders import LoadStatus, OrdersClient, OrdersStore
from packages.client.storage import MemoryLocalStorage
from packages.shared.schemas.order_v1 import OrderStatusV1


def _doc(order_id: str, status: str = "pending", created: str = "2026-01-01T10:00:00+00:00") -> dict:
    return {
        "_id": order_id,
        "status": status,
        "items": [{"_id": f"{order_id}-i", "unitPrice": 5500, "qty": 1}],
        "itemsTotal": 5500,
        "grandTotal": 5500,
        "shop": {"_id": "shop-1", "name": "Ravi Kirana"},
        "user": {"_id": "u-customer"},
        "createdAt": created,
        "updatedAt": created,
    }


def _ok(data) -> httpx.Response:
    return httpx.Response(200, json={"ok": True, "data": data, "traceId": "t-1"})


def _client(handler, **kwargs) -> OrdersClient:
    http = httpx.Client(base_url="http://api.test", transport=httpx.MockTransport(handler))
    return OrdersClient(http, **kwargs)


def test_fetch_accepts_bare_array_and_sorts_newest_first() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/orders/received"
        return httpx.Response(
            200,
            json=[
                _doc("o-old", created="2026-01-01T10:00:00+00:00"),
                _doc("o-new", created="2026-01-03T10:00:00+00:00"),
            ],
        )

    client = _client(handler)
    result = client.fetch_received_orders()

    assert result.ok
    assert [o.id for o in result.value] == ["o-new", "o-old"]
    assert client.store.received.status == LoadStatus.SUCCEEDED


def test_fetch_skips_invalid_documents(caplog: pytest.LogCaptureFixture) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return _ok({"items": [_doc("o-1"), {"status": "pending"}, _doc("o-2", status="teleported")]})

    client = _client(handler)
    with caplog.at_level(logging.WARNING, logger="packages.client.orders"):
        result = client.fetch_my_orders(status="pending")

    assert [o.id for o in result.value] == ["o-1"]
    assert caplog.text.count("skipping order") == 2


def test_fetch_failure_marks_collection_failed() -> None:
    toasts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"detail": "Maintenance window"})

    client = _client(handler, notify=toasts.append)
    result = client.fetch_my_orders()

    assert not result.ok
    assert client.store.mine.status == LoadStatus.FAILED
    assert client.store.mine.error == "Maintenance window"
    assert toasts == ["Maintenance window"]


def test_optimistic_accept_shows_accepted_during_call_and_reverts_on_failure() -> None:
    store = OrdersStore()
    seen_during_call: list[OrderStatusV1] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/orders/received":
            return _ok({"items": [_doc("o-1")]})
        seen_during_call.append(store.received.get("o-1").status)
        return httpx.Response(500, json={"ok": False, "error": {"status": 500, "message": "Internal Server Error"}})

    client = _client(handler, store=store)
    client.fetch_received_orders()

    result = client.accept_order("o-1")

    assert seen_during_call == [OrderStatusV1.ACCEPTED]
    assert not result.ok
    assert result.error == "Internal Server Error"
    assert store.received.get("o-1").status == OrderStatusV1.PENDING


def test_optimistic_accept_commits_server_order() -> None:
    store = OrdersStore()

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/orders/received":
            return _ok({"items": [_doc("o-1")]})
        assert request.method == "POST"
        assert request.url.path == "/orders/accept/o-1"
        accepted = _doc("o-1", status="accepted")
        accepted["contactSharedAt"] = "2026-01-01T10:01:00+00:00"
        return _ok({"order": accepted})

    client = _client(handler, store=store)
    client.fetch_received_orders()
    result = client.accept_order("o-1")

    assert result.ok
    assert result.value.status == OrderStatusV1.ACCEPTED
    assert store.received.get("o-1").contact_shared_at == "2026-01-01T10:01:00+00:00"
    assert store.mine.orders == {}


def test_network_error_rolls_back_cancel() -> None:
    store = OrdersStore()

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/orders/my":
            return _ok({"items": [_doc("o-1")]})
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler, store=store)
    client.fetch_my_orders()
    result = client.cancel_order("o-1", reason="Ordered twice")

    assert not result.ok
    assert result.error == "connection refused"
    assert store.mine.get("o-1").status == OrderStatusV1.PENDING


def test_status_update_sends_canonical_token() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return _ok({"order": _doc("o-1", status="in_progress")})

    client = _client(handler)
    result = client.update_order_status("o-1", "Preparing", note="On the stove")

    assert result.ok
    assert bodies == [{"status": "in_progress", "note": "On the stove"}]
    assert client.store.mine.get("o-1").status == OrderStatusV1.IN_PROGRESS


def test_checkout_posts_cart_and_clears_it_on_success() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(201, json={"ok": True, "data": {"orders": [_doc("o-1"), _doc("o-2")]}})

    cart = CartStore(LocalStorageCartRepository(MemoryLocalStorage()))
    cart.add_item({"productId": "p-rice", "shopId": "shop-1", "qty": 2})
    client = _client(handler)

    result = client.checkout(cart, fulfillment_type="pickup", idempotency_key="key-1")

    assert result.ok
    assert len(result.value) == 2
    assert cart.items == []
    sent = json.loads(requests[0].content)
    assert sent["items"] == [{"productId": "p-rice", "variantId": None, "qty": 2}]
    assert sent["fulfillmentType"] == "pickup"
    assert "shippingAddress" not in sent
    assert requests[0].headers["Idempotency-Key"] == "key-1"


def test_empty_cart_does_not_call_server() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    cart = CartStore(LocalStorageCartRepository(MemoryLocalStorage()))
    result = _client(handler).checkout(cart, fulfillment_type="pickup")

    assert not result.ok
    assert result.error == "Your cart is empty"
