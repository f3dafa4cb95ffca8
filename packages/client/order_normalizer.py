"""Normalize server order documents into ``OrderV1``.

Units are decided by field names, never by magnitude:

* explicit ``*Paise`` fields are paise;
* paise-named order fields (``itemsTotal``, ``discountTotal``, ``taxTotal``,
  ``shippingFee``, ``grandTotal``), top-level or under ``totals``, mark the whole
  document as paise, item ``unitPrice`` and ``price`` included;
* everything else (``price``, ``subtotal``, ``discount``, ``tax``, ``shipping``,
  ``total``) is rupees and gets multiplied by 100.

Item subtotals are always recomputed as ``qty * unit_price_paise``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from packages.shared.currency import is_number, non_negative, pick_paise, rupees_to_paise, to_paise
from packages.shared.schemas.order_v1 import (
    OrderAddressV1,
    OrderCancelV1,
    OrderFulfillmentV1,
    OrderItemV1,
    OrderPartyV1,
    OrderPaymentV1,
    OrderStatusV1,
    OrderTimelineEntryV1,
    OrderTotalsV1,
    OrderV1,
    parse_order_status,
)
from pydantic import ValidationError

logger = logging.getLogger(__name__)

PAISE_ORDER_FIELDS = ("itemsTotal", "discountTotal", "taxTotal", "shippingFee", "grandTotal")


class OrderPayloadError(ValueError):
    pass


def _id_of(value: Any) -> str | None:
    if isinstance(value, dict):
        value = value.get("_id") or value.get("id")
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _iso(value: Any, fallback: str | None = None) -> str | None:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, str) and value.strip():
        return value.strip()
    return fallback


def _rupees_or_none(value: Any) -> int | None:
    return rupees_to_paise(value) if is_number(value) else None


def _first_number(*values: Any) -> Any:
    for value in values:
        if is_number(value):
            return value
    return None


def _qty(raw: Any, order_id: str, index: int) -> int:
    value = raw.get("qty") if raw.get("qty") is not None else raw.get("quantity")
    if not is_number(value) or float(value) != int(float(value)) or int(float(value)) < 1:
        raise OrderPayloadError(f"Order {order_id} item {index} has an invalid quantity: {value!r}")
    return int(float(value))


def _item(raw: Any, *, order_id: str, index: int, uses_paise: bool) -> OrderItemV1:
    if not isinstance(raw, dict):
        raise OrderPayloadError(f"Order {order_id} item {index} is not an object")

    qty = _qty(raw, order_id, index)

    unit = pick_paise(raw.get("unitPricePaise"), raw.get("pricePaise"))
    if unit is None:
        price = _first_number(raw.get("unitPrice"), raw.get("price"))
        unit = to_paise(price) if uses_paise else rupees_to_paise(price)
    unit = non_negative(unit)

    declared = pick_paise(raw.get("subtotalPaise"))
    if declared is None:
        candidate = _first_number(raw.get("subtotal"), raw.get("total"))
        if candidate is not None:
            declared = to_paise(candidate) if uses_paise else rupees_to_paise(candidate)

    subtotal = qty * unit
    if declared is not None and declared != subtotal:
        logger.warning(
            "order %s item %s declares subtotal %s but qty*unit is %s; using %s",
            order_id,
            index,
            declared,
            subtotal,
            subtotal,
        )

    snapshot = raw.get("productSnapshot") if isinstance(raw.get("productSnapshot"), dict) else {}
    options = raw.get("options") if isinstance(raw.get("options"), dict) else None

    return OrderItemV1(
        id=_id_of(raw.get("_id") or raw.get("id")) or f"{order_id}-item-{index}",
        product_id=_id_of(raw.get("product")) or _id_of(raw.get("productId")) or _id_of(raw.get("sku")),
        title=snapshot.get("name") or raw.get("name") or raw.get("title") or "Item",
        image=snapshot.get("image") or raw.get("image") or None,
        qty=qty,
        unit_price_paise=unit,
        subtotal_paise=subtotal,
        options=options or None,
    )


def _totals(raw: dict[str, Any], items: list[OrderItemV1], uses_paise: bool) -> OrderTotalsV1:
    nested = raw.get("totals") if isinstance(raw.get("totals"), dict) else {}

    def pick(paise_key: str, paise_field: str, *rupee_keys: str) -> int | None:
        explicit = pick_paise(nested.get(paise_key), raw.get(paise_key))
        if explicit is not None:
            return explicit
        if uses_paise:
            return pick_paise(nested.get(paise_field), raw.get(paise_field))
        rupees = _first_number(*(nested.get(k) for k in rupee_keys), *(raw.get(k) for k in rupee_keys))
        return _rupees_or_none(rupees)

    declared_items = pick("itemsPaise", "itemsTotal", "subtotal")
    discount = non_negative(pick("discountPaise", "discountTotal", "discount") or 0)
    tax = non_negative(pick("taxPaise", "taxTotal", "tax", "taxes") or 0)
    shipping = non_negative(pick("shippingPaise", "shippingFee", "shipping", "fee") or 0)
    grand = pick("grandPaise", "grandTotal", "total", "grand")

    if items:
        items_paise = sum(item.subtotal_paise for item in items)
        if declared_items is not None and declared_items != items_paise:
            logger.warning(
                "order %s declares items total %s but items sum to %s",
                _id_of(raw.get("_id") or raw.get("id")),
                declared_items,
                items_paise,
            )
    else:
        items_paise = non_negative(declared_items or 0)

    if grand is None:
        grand = items_paise - discount + tax + shipping

    return OrderTotalsV1(
        items_paise=items_paise,
        discount_paise=discount,
        tax_paise=tax,
        shipping_paise=shipping,
        grand_paise=non_negative(grand),
    )


def _party(*candidates: Any, fallback_id: Any = None) -> OrderPartyV1:
    snapshot: dict[str, Any] = next((c for c in candidates if isinstance(c, dict)), {})
    party_id = _id_of(snapshot) or _id_of(fallback_id) or ""
    return OrderPartyV1(
        id=party_id,
        name=snapshot.get("name") or snapshot.get("fullName") or "",
        phone=snapshot.get("phone") or snapshot.get("contact") or None,
        location=snapshot.get("location") or None,
        address=snapshot.get("address") if isinstance(snapshot.get("address"), str) else None,
    )


def _status(value: Any, order_id: str) -> OrderStatusV1:
    try:
        return parse_order_status(value)
    except ValueError as e:
        raise OrderPayloadError(f"Order {order_id}: {e}") from e


def normalize_order(raw: Any) -> OrderV1:
    """Convert one server order document into the canonical paise representation.

    Raises ``OrderPayloadError`` for documents that cannot be trusted (no id, bad item
    quantity, unknown status).
    """

    if not isinstance(raw, dict):
        raise OrderPayloadError("Invalid order payload")

    order_id = _id_of(raw.get("_id") or raw.get("id"))
    if not order_id:
        raise OrderPayloadError("Order payload is missing an id")

    nested_totals = raw.get("totals") if isinstance(raw.get("totals"), dict) else {}
    uses_paise = any(
        is_number(source.get(field)) for source in (raw, nested_totals) for field in PAISE_ORDER_FIELDS
    )

    raw_items = raw.get("items") if isinstance(raw.get("items"), list) else []
    items = [
        _item(entry, order_id=order_id, index=index, uses_paise=uses_paise)
        for index, entry in enumerate(raw_items)
    ]

    status = _status(raw.get("status"), order_id)
    now = datetime.now(timezone.utc).isoformat()
    created_at = _iso(raw.get("createdAt"), now)
    updated_at = _iso(raw.get("updatedAt") or raw.get("modifiedAt"), created_at)

    timeline: list[OrderTimelineEntryV1] = []
    for entry in raw.get("timeline") or []:
        if not isinstance(entry, dict):
            continue
        by = entry.get("by") if entry.get("by") in ("system", "user", "shop", "admin") else "system"
        try:
            entry_status = parse_order_status(entry.get("status") or status)
        except ValueError:
            entry_status = status
        timeline.append(
            OrderTimelineEntryV1(
                at=_iso(entry.get("at"), created_at),
                by=by,
                status=entry_status,
                note=entry.get("note") or None,
            )
        )

    fulfillment_raw = raw.get("fulfillment") if isinstance(raw.get("fulfillment"), dict) else {}
    shipping_raw = raw.get("shippingAddress")
    payment_raw = raw.get("payment") if isinstance(raw.get("payment"), dict) else None
    cancel_raw = raw.get("cancel") if isinstance(raw.get("cancel"), dict) else None
    rating = raw.get("rating")

    try:
        return OrderV1(
            id=order_id,
            type="service" if raw.get("type") == "service" else "product",
            status=status,
            items=items,
            totals=_totals(raw, items, uses_paise),
            fulfillment=OrderFulfillmentV1(
                type="delivery" if fulfillment_raw.get("type") == "delivery" else "pickup",
                eta=_iso(fulfillment_raw.get("eta")),
            ),
            shipping_address=OrderAddressV1.model_validate(shipping_raw)
            if isinstance(shipping_raw, dict)
            else None,
            notes=raw.get("notes") or None,
            currency=raw.get("currency") if isinstance(raw.get("currency"), str) else "INR",
            created_at=created_at,
            updated_at=updated_at,
            timeline=timeline,
            customer=_party(
                raw.get("userSnapshot"),
                raw.get("customer"),
                raw.get("user"),
                fallback_id=raw.get("user") or raw.get("customerId"),
            ),
            shop=_party(
                raw.get("shopSnapshot"),
                raw.get("shop"),
                fallback_id=raw.get("shop") or raw.get("shopId"),
            ),
            payment=OrderPaymentV1(method=payment_raw.get("method"), status=payment_raw.get("status"))
            if payment_raw
            else None,
            cancel=OrderCancelV1(
                by=cancel_raw.get("by") or None,
                reason=cancel_raw.get("reason") or None,
                at=_iso(cancel_raw.get("at")),
            )
            if cancel_raw
            else None,
            rating=int(rating) if is_number(rating) else None,
            review=raw.get("review") or None,
            contact_shared_at=_iso(raw.get("contactSharedAt")),
        )
    except ValidationError as e:
        raise OrderPayloadError(f"Order {order_id} failed validation: {e}") from e
