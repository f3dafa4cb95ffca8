"""Cart line schema (v1).

Persisted client-side as a JSON array of camelCase objects.
"""

from __future__ import annotations

from pydantic import Field

from packages.shared.schemas.order_v1 import WireModel

CartKey = tuple[str, str, str]


class CartItemV1(WireModel):
    product_id: str = Field(..., min_length=1)
    shop_id: str = Field(..., min_length=1)
    variant_id: str | None = None
    qty: int = Field(1, ge=1)
    price_paise: int = Field(0, ge=0)

    # Display cache only; never authoritative.
    name: str = "Item"
    image: str | None = None

    @property
    def key(self) -> CartKey:
        return (self.product_id, self.shop_id, self.variant_id or "")

    @property
    def line_total_paise(self) -> int:
        return self.qty * self.price_paise
