"""Client core driven against the real API app."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from packages.client.cart_store import CartStore, LocalStorageCartRepository
from packages.client.http import attach_auth
from packages.client.orders import OrdersClient
from packages.client.service_requests import (
    AdminServiceRequestsClient,
    ServiceRequestsClient,
    feedback_for,
)
from packages.client.storage import ADMIN_TOKEN_KEY, MemoryLocalStorage
from packages.client.validation import FieldValidationError
from packages.shared.schemas.order_v1 import OrderStatusV1
from packages.shared.schemas.service_request_v1 import OfferStatusV1, ServiceRequestStatusV1

ADDRESS = {
    "name": "Asha",
    "phone": "+91 98765 43210",
    "address1": "12 Gandhi Nagar",
    "city": "Nellore",
    "pincode": "524001",
}


def _as(client: TestClient, user_id: str) -> TestClient:
    return TestClient(client.app, headers={"X-User-Id": user_id})


def _cart(*lines: dict) -> CartStore:
    cart = CartStore(LocalStorageCartRepository(MemoryLocalStorage()))
    for line in lines:
        cart.add_item(line)
    return cart


def test_checkout_then_shop_accepts(client: TestClient) -> None:
    customer = OrdersClient(_as(client, "u-customer"))
    cart = _cart(
        {"productId": "p-rice", "shopId": "shop-1", "qty": 2, "pricePaise": 5500},
        {"productId": "p-laddu", "shopId": "shop-2", "qty": 1, "price": 250},
    )

    placed = customer.checkout(cart, ADDRESS)
    assert placed.ok, placed.error
    assert len(placed.value) == 2
    assert cart.items == []

    by_shop = {o.shop.id: o for o in customer.store.mine.listing()}
    rice = by_shop["shop-1"]
    assert rice.status == OrderStatusV1.PENDING
    assert rice.totals.items_paise == 11000
    assert rice.items[0].subtotal_paise == rice.items[0].unit_price_paise * rice.items[0].qty
    assert rice.shipping_address.phone == "9876543210"

    owner = OrdersClient(_as(client, "u-owner"))
    fetched = owner.fetch_received_orders()
    assert fetched.ok
    assert [o.id for o in fetched.value] == [rice.id]

    accepted = owner.accept_order(rice.id)
    assert accepted.ok
    assert owner.store.received.get(rice.id).status == OrderStatusV1.ACCEPTED
    assert owner.store.received.get(rice.id).contact_shared_at


def test_checkout_failure_keeps_cart(client: TestClient) -> None:
    toasts: list[str] = []
    customer = OrdersClient(_as(client, "u-customer"), notify=toasts.append)
    cart = _cart({"productId": "p-retired", "shopId": "shop-2", "qty": 1, "pricePaise": 40000})

    result = customer.checkout(cart, fulfillment_type="pickup")

    assert not result.ok
    assert result.error == "Product not found: p-retired"
    assert toasts == [result.error]
    assert len(cart.items) == 1


def test_checkout_validates_address_before_sending(client: TestClient) -> None:
    customer = OrdersClient(_as(client, "u-customer"))
    cart = _cart({"productId": "p-rice", "shopId": "shop-1", "qty": 1, "pricePaise": 5500})

    with pytest.raises(FieldValidationError) as exc:
        customer.checkout(cart, {**ADDRESS, "pincode": "52400"})

    assert set(exc.value.errors) == {"pincode"}
    assert customer.store.mine.orders == {}
    assert len(cart.items) == 1


def test_rejected_transition_rolls_back(client: TestClient) -> None:
    customer = OrdersClient(_as(client, "u-customer"))
    customer.checkout(
        _cart({"productId": "p-rice", "shopId": "shop-1", "qty": 1, "pricePaise": 5500}),
        fulfillment_type="pickup",
    )

    owner = OrdersClient(_as(client, "u-owner"))
    owner.fetch_received_orders()
    order_id = owner.store.received.listing()[0].id

    result = owner.update_order_status(order_id, OrderStatusV1.COMPLETED)

    assert not result.ok
    assert result.error == "Cannot change status from pending to completed"
    assert owner.store.received.get(order_id).status == OrderStatusV1.PENDING


def test_service_request_offer_flow(client: TestClient) -> None:
    requester = ServiceRequestsClient(_as(client, "u-customer"))
    provider_1 = ServiceRequestsClient(_as(client, "u-provider-1"))
    provider_2 = ServiceRequestsClient(_as(client, "u-provider-2"))

    created = requester.create(service_id="svc-plumbing", description="Leaking tap")
    assert created.status == ServiceRequestStatusV1.PENDING
    assert created.service_name == "Plumbing"

    assert [r.id for r in provider_1.list_public()] == [created.id]
    seen = provider_1.submit_offer(created.id, note="Today", expected_return="300")
    assert [o.provider_id for o in seen.offers] == ["u-provider-1"]
    provider_2.submit_offer(created.id, note="Tomorrow")

    offers = {o.provider_id: o for o in requester.get(created.id).offers}
    accepted = requester.accept_offer(created.id, offers["u-provider-1"].id)

    statuses = {o.provider_id: o.status for o in accepted.offers}
    assert statuses == {
        "u-provider-1": OfferStatusV1.ACCEPTED_BY_SEEKER,
        "u-provider-2": OfferStatusV1.PENDING,
    }
    assert accepted.status == ServiceRequestStatusV1.ACCEPTED
    assert accepted.assigned_provider_id == "u-provider-1"

    in_progress = provider_1.update_status(created.id, ServiceRequestStatusV1.IN_PROGRESS)
    assert in_progress.status == ServiceRequestStatusV1.IN_PROGRESS
    assert feedback_for(in_progress) is None
    assert requester.get_feedback(created.id) is None

    provider_1.update_status(created.id, "completed")
    feedback = requester.submit_feedback(created.id, 5, "Great")
    assert feedback.rating == 5
    assert feedback_for(requester.get(created.id)).comment == "Great"


def test_admin_client_uses_stored_token(client: TestClient) -> None:
    requester = ServiceRequestsClient(_as(client, "u-customer"))
    created = requester.create(custom_name="Painting", description="Two rooms")

    storage = MemoryLocalStorage({ADMIN_TOKEN_KEY: "test-admin-token"})
    admin = AdminServiceRequestsClient(attach_auth(TestClient(client.app), storage))

    listed = admin.list(status=[ServiceRequestStatusV1.PENDING], q="rooms")
    assert [r.id for r in listed] == [created.id]

    updated = admin.update(created.id, status="in_progress", admin_notes="Escalated")
    assert updated.status == ServiceRequestStatusV1.IN_PROGRESS
    assert updated.admin_notes == "Escalated"
