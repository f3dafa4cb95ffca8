from __future__ import annotations

from typing import Any, Literal

from packages.shared.schemas.order_v1 import OrderAddressV1, WireModel
from pydantic import Field


class CheckoutItemInput(WireModel):
    product_id: str = Field(..., min_length=1)
    qty: int = Field(..., ge=1)
    variant_id: str | None = None
    options: dict[str, Any] = Field(default_factory=dict)


class CheckoutRequest(WireModel):
    items: list[CheckoutItemInput] = Field(..., min_length=1)
    fulfillment_type: Literal["pickup", "delivery"] = "delivery"
    shipping_address: OrderAddressV1 | None = None
    payment_method: str = "cod"
    notes: str | None = None


class OrderNoteRequest(WireModel):
    note: str | None = None


class OrderCancelRequest(WireModel):
    reason: str | None = None


class OrderStatusUpdateRequest(WireModel):
    status: str = Field(..., min_length=1)
    note: str | None = None


class OrderRateRequest(WireModel):
    rating: int = Field(..., ge=1, le=5)
    review: str | None = None
