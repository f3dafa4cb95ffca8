from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import uuid4

import httpx

from packages.client.cart_store import CartStore
from packages.client.http import error_message, send
from packages.client.optimistic import CommandResult, OptimisticCommand
from packages.client.order_normalizer import OrderPayloadError, normalize_order
from packages.client.payload import parse_item, parse_items
from packages.client.validation import validate_address
from packages.shared.schemas.order_v1 import OrderAddressV1, OrderStatusV1, OrderV1, parse_order_status

logger = logging.getLogger(__name__)

Snapshot = dict[str, dict[str, OrderV1]]


class LoadStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class OrderCollection:
    orders: dict[str, OrderV1] = field(default_factory=dict)
    status: LoadStatus = LoadStatus.IDLE
    error: str | None = None

    def get(self, order_id: str) -> OrderV1 | None:
        return self.orders.get(order_id)

    def upsert(self, order: OrderV1) -> None:
        self.orders[order.id] = order

    def replace_all(self, orders: list[OrderV1]) -> None:
        self.orders = {order.id: order for order in orders}

    def listing(self) -> list[OrderV1]:
        return sorted(self.orders.values(), key=lambda o: o.created_at, reverse=True)


@dataclass
class OrdersStore:
    mine: OrderCollection = field(default_factory=OrderCollection)
    received: OrderCollection = field(default_factory=OrderCollection)

    def collections(self) -> dict[str, OrderCollection]:
        return {"mine": self.mine, "received": self.received}

    def snapshot(self) -> Snapshot:
        return {name: dict(c.orders) for name, c in self.collections().items()}

    def restore(self, snapshot: Snapshot) -> None:
        for name, collection in self.collections().items():
            collection.orders = dict(snapshot[name])

    def holding(self, order_id: str) -> list[OrderCollection]:
        return [c for c in self.collections().values() if order_id in c.orders]

    def set_status(self, order_id: str, status: OrderStatusV1) -> None:
        for collection in self.holding(order_id):
            current = collection.orders[order_id]
            collection.orders[order_id] = current.model_copy(update={"status": status})


def _normalize_all(raw_orders: list[Any]) -> list[OrderV1]:
    orders: list[OrderV1] = []
    for raw in raw_orders:
        try:
            orders.append(normalize_order(raw))
        except OrderPayloadError as e:
            logger.warning("skipping order: %s", e)
    return orders


class OrdersClient:
    """Order list loading and order mutations against the API.

    Every mutation goes through ``OptimisticCommand`` so the local store shows the new
    status before the server answers.
    """

    def __init__(
        self,
        http: httpx.Client,
        store: OrdersStore | None = None,
        notify: Callable[[str], None] | None = None,
    ) -> None:
        self.http = http
        self.store = store or OrdersStore()
        self.notify = notify

    def _fail(self, message: str) -> None:
        if self.notify is not None:
            self.notify(message)

    def _fetch(
        self, collection: OrderCollection, url: str, params: dict[str, Any]
    ) -> CommandResult[list[OrderV1]]:
        collection.status = LoadStatus.LOADING
        collection.error = None
        try:
            orders = _normalize_all(parse_items(send(self.http, "GET", url, params=params)))
        except Exception as e:
            message = error_message(e)
            collection.status = LoadStatus.FAILED
            collection.error = message
            logger.warning("GET %s failed: %s", url, message)
            self._fail(message)
            return CommandResult(ok=False, error=message)

        collection.replace_all(orders)
        collection.status = LoadStatus.SUCCEEDED
        return CommandResult(ok=True, value=collection.listing())

    def fetch_my_orders(
        self, *, status: str | None = None, page: int = 1, page_size: int = 20
    ) -> CommandResult[list[OrderV1]]:
        params: dict[str, Any] = {"page": page, "pageSize": page_size}
        if status:
            params["status"] = status
        return self._fetch(self.store.mine, "/orders/my", params)

    def fetch_received_orders(
        self, *, status: str | None = None, page: int = 1, page_size: int = 20
    ) -> CommandResult[list[OrderV1]]:
        params: dict[str, Any] = {"page": page, "pageSize": page_size}
        if status:
            params["status"] = status
        return self._fetch(self.store.received, "/orders/received", params)

    def _mutate(
        self,
        name: str,
        order_id: str,
        optimistic_status: OrderStatusV1 | None,
        method: str,
        url: str,
        body: dict[str, Any] | None,
    ) -> CommandResult[OrderV1]:
        store = self.store
        home = store.holding(order_id) or [store.mine]

        def apply() -> None:
            if optimistic_status is not None:
                store.set_status(order_id, optimistic_status)

        def issue() -> OrderV1:
            return normalize_order(parse_item(send(self.http, method, url, json=body), ("order",)))

        def commit(order: OrderV1) -> None:
            for collection in home:
                collection.upsert(order)

        return OptimisticCommand(
            name=name,
            snapshot=store.snapshot,
            apply=apply,
            issue=issue,
            commit=commit,
            revert=store.restore,
            on_error=self._fail,
        ).run()

    def accept_order(self, order_id: str) -> CommandResult[OrderV1]:
        return self._mutate(
            "accept order", order_id, OrderStatusV1.ACCEPTED, "POST", f"/orders/accept/{order_id}", None
        )

    def reject_order(self, order_id: str, note: str | None = None) -> CommandResult[OrderV1]:
        return self._mutate(
            "reject order",
            order_id,
            OrderStatusV1.REJECTED,
            "POST",
            f"/orders/reject/{order_id}",
            {"note": note} if note else None,
        )

    def cancel_order(self, order_id: str, reason: str | None = None) -> CommandResult[OrderV1]:
        return self._mutate(
            "cancel order",
            order_id,
            OrderStatusV1.CANCELLED,
            "POST",
            f"/orders/cancel/{order_id}",
            {"reason": reason} if reason else None,
        )

    def update_order_status(
        self, order_id: str, status: OrderStatusV1 | str, note: str | None = None
    ) -> CommandResult[OrderV1]:
        target = parse_order_status(status)
        body: dict[str, Any] = {"status": target.value}
        if note:
            body["note"] = note
        return self._mutate(
            "update order status", order_id, target, "PATCH", f"/api/orders/{order_id}/status", body
        )

    def rate_order(self, order_id: str, rating: int, review: str | None = None) -> CommandResult[OrderV1]:
        body: dict[str, Any] = {"rating": rating}
        if review:
            body["review"] = review
        return self._mutate("rate order", order_id, None, "POST", f"/orders/{order_id}/rate", body)

    def checkout(
        self,
        cart: CartStore,
        shipping_address: dict[str, Any] | OrderAddressV1 | None = None,
        fulfillment_type: str = "delivery",
        *,
        notes: str | None = None,
        idempotency_key: str | None = None,
    ) -> CommandResult[list[OrderV1]]:
        """Place one order per shop for everything in ``cart``.

        A delivery address is validated before the request (``FieldValidationError``).
        The cart is cleared only after the server accepts the orders.
        """

        if not cart.items:
            message = "Your cart is empty"
            self._fail(message)
            return CommandResult(ok=False, error=message)

        body: dict[str, Any] = {
            "items": [
                {"productId": item.product_id, "variantId": item.variant_id, "qty": item.qty}
                for item in cart.items
            ],
            "fulfillmentType": fulfillment_type,
            "paymentMethod": "cod",
        }
        if fulfillment_type == "delivery":
            address = validate_address(shipping_address)
            body["shippingAddress"] = address.model_dump(by_alias=True, exclude_none=True)
        if notes:
            body["notes"] = notes

        key = idempotency_key or uuid4().hex
        try:
            raw = send(self.http, "POST", "/api/orders/checkout", json=body, headers={"Idempotency-Key": key})
        except Exception as e:
            message = error_message(e)
            logger.warning("checkout failed: %s", message)
            self._fail(message)
            return CommandResult(ok=False, error=message)

        orders = _normalize_all(parse_items(raw))
        for order in orders:
            self.store.mine.upsert(order)
        cart.clear_cart()
        logger.info("checkout placed %d order(s)", len(orders))
        return CommandResult(ok=True, value=orders)
