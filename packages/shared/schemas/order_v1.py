"""Canonical order schema (v1).

Every monetary field is an integer in paise. Field names are snake_case in Python and
camelCase on the wire.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderStatusV1(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Status strings that drifted across the codebase for the same lifecycle point.
_ORDER_STATUS_ALIASES: dict[str, OrderStatusV1] = {
    "draft": OrderStatusV1.PENDING,
    "placed": OrderStatusV1.PENDING,
    "confirmed": OrderStatusV1.ACCEPTED,
    "preparing": OrderStatusV1.IN_PROGRESS,
    "ready": OrderStatusV1.IN_PROGRESS,
    "out_for_delivery": OrderStatusV1.IN_PROGRESS,
    "returned": OrderStatusV1.CANCELLED,
    "canceled": OrderStatusV1.CANCELLED,
}

FEEDBACK_ORDER_STATUSES = frozenset({OrderStatusV1.DELIVERED, OrderStatusV1.COMPLETED})


def parse_order_status(raw: Any) -> OrderStatusV1:
    if isinstance(raw, OrderStatusV1):
        return raw
    token = str(raw or "").strip().lower().replace(" ", "_").replace("-", "_")
    if not token:
        return OrderStatusV1.PENDING
    try:
        return OrderStatusV1(token)
    except ValueError:
        pass
    if token in _ORDER_STATUS_ALIASES:
        return _ORDER_STATUS_ALIASES[token]
    raise ValueError(f"Unknown order status: {raw!r}")


class OrderItemV1(WireModel):
    id: str
    product_id: str | None = None
    title: str = "Item"
    image: str | None = None
    qty: int = Field(..., ge=1)
    unit_price_paise: int = Field(..., ge=0)
    subtotal_paise: int = Field(..., ge=0)
    options: dict[str, Any] | None = None

    @model_validator(mode="after")
    def _subtotal_matches(self) -> OrderItemV1:
        if self.subtotal_paise != self.qty * self.unit_price_paise:
            raise ValueError("subtotal_paise must equal qty * unit_price_paise")
        return self


class OrderTotalsV1(WireModel):
    items_paise: int = Field(0, ge=0)
    discount_paise: int = Field(0, ge=0)
    tax_paise: int = Field(0, ge=0)
    shipping_paise: int = Field(0, ge=0)
    grand_paise: int = Field(0, ge=0)


class OrderPartyV1(WireModel):
    id: str = ""
    name: str = ""
    phone: str | None = None
    location: str | None = None
    address: str | None = None


class OrderAddressV1(WireModel):
    name: str | None = None
    label: str | None = None
    phone: str | None = None
    address1: str | None = None
    address2: str | None = None
    landmark: str | None = None
    city: str | None = None
    state: str | None = None
    pincode: str | None = None
    geo: dict[str, float] | None = None


class OrderFulfillmentV1(WireModel):
    type: Literal["pickup", "delivery"] = "pickup"
    eta: str | None = None


class OrderTimelineEntryV1(WireModel):
    at: str
    by: Literal["system", "user", "shop", "admin"] = "system"
    status: OrderStatusV1
    note: str | None = None


class OrderPaymentV1(WireModel):
    method: str | None = None
    status: str | None = None


class OrderCancelV1(WireModel):
    by: str | None = None
    reason: str | None = None
    at: str | None = None


class OrderV1(WireModel):
    id: str
    type: Literal["product", "service"] = "product"
    status: OrderStatusV1 = OrderStatusV1.PENDING
    items: list[OrderItemV1] = Field(default_factory=list)
    totals: OrderTotalsV1 = Field(default_factory=OrderTotalsV1)
    fulfillment: OrderFulfillmentV1 = Field(default_factory=OrderFulfillmentV1)
    shipping_address: OrderAddressV1 | None = None
    notes: str | None = None
    currency: str = "INR"
    created_at: str
    updated_at: str
    timeline: list[OrderTimelineEntryV1] = Field(default_factory=list)
    customer: OrderPartyV1 = Field(default_factory=OrderPartyV1)
    shop: OrderPartyV1 = Field(default_factory=OrderPartyV1)
    payment: OrderPaymentV1 | None = None
    cancel: OrderCancelV1 | None = None
    rating: int | None = None
    review: str | None = None
    contact_shared_at: str | None = None
