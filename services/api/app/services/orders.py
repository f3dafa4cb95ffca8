"""Order checkout and lifecycle.

Documents leave this module in the raw server shape: Mongo-style ``_id`` keys, paise
amounts under ``itemsTotal``/``grandTotal`` and friends, and items carrying
``productSnapshot``. Clients normalize them into ``OrderV1``.
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from packages.shared.schemas.envelope_v1 import clamp_page
from packages.shared.schemas.order_v1 import (
    FEEDBACK_ORDER_STATUSES,
    OrderStatusV1,
    parse_order_status,
)
from services.api.app.db.models import Order, OrderItem, Product, Shop, User, iso, utcnow
from services.api.app.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationFailedError,
)
from services.api.app.models.order import CheckoutRequest
from services.api.app.services.notifications import notify_user
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

_O = OrderStatusV1

SHOP_TRANSITIONS: dict[OrderStatusV1, frozenset[OrderStatusV1]] = {
    _O.PENDING: frozenset({_O.ACCEPTED, _O.REJECTED}),
    _O.ACCEPTED: frozenset({_O.IN_PROGRESS, _O.DELIVERED, _O.COMPLETED}),
    _O.IN_PROGRESS: frozenset({_O.DELIVERED, _O.COMPLETED}),
    _O.DELIVERED: frozenset({_O.COMPLETED}),
}

CUSTOMER_CANCELLABLE = frozenset({_O.PENDING, _O.ACCEPTED})


def order_code(order: Order) -> str:
    return order.id[-6:].upper()


def status_label(status: OrderStatusV1 | str) -> str:
    return " ".join(part.capitalize() for part in str(getattr(status, "value", status)).split("_"))


def _party(
    entity: User | Shop | None, *, fallback_id: str, show_phone: bool = True
) -> dict[str, Any]:
    if entity is None:
        return {"_id": fallback_id, "name": ""}
    return {
        "_id": entity.id,
        "name": entity.name,
        "phone": entity.phone if show_phone else None,
        "location": entity.location,
        "address": entity.address,
    }


def order_document(db: Session, order: Order, *, viewer_id: str | None = None) -> dict[str, Any]:
    items = (
        db.query(OrderItem)
        .filter(OrderItem.order_id == order.id)
        .order_by(OrderItem.position.asc())
        .all()
    )
    shop = db.get(Shop, order.shop_id)
    customer = db.get(User, order.user_id)

    # The shop sees the customer's phone only once the order has been accepted.
    show_customer_phone = viewer_id == order.user_id or order.contact_shared_at is not None

    return {
        "_id": order.id,
        "type": "product",
        "status": order.status,
        "items": [
            {
                "_id": item.id,
                "product": item.product_id,
                "variant": item.variant_id,
                "productSnapshot": {"name": item.name, "image": item.image},
                "unitPrice": item.unit_price,
                "qty": item.qty,
                "subtotal": item.subtotal,
                "options": dict(item.options_json or {}),
            }
            for item in items
        ],
        "itemsTotal": order.items_total,
        "discountTotal": order.discount_total,
        "taxTotal": order.tax_total,
        "shippingFee": order.shipping_fee,
        "grandTotal": order.grand_total,
        "currency": order.currency,
        "notes": order.notes,
        "fulfillment": dict(order.fulfillment_json or {}),
        "shippingAddress": order.shipping_address_json,
        "payment": {
            "method": (order.payment_json or {}).get("method"),
            "status": (order.payment_json or {}).get("status"),
        },
        "timeline": list(order.timeline_json or []),
        "cancel": order.cancel_json,
        "rating": order.rating,
        "review": order.review,
        "contactSharedAt": iso(order.contact_shared_at),
        "user": _party(customer, fallback_id=order.user_id, show_phone=show_customer_phone),
        "shop": _party(shop, fallback_id=order.shop_id),
        "createdAt": iso(order.created_at),
        "updatedAt": iso(order.updated_at),
    }


def _timeline_entry(by: str, status: OrderStatusV1, note: str | None) -> dict[str, Any]:
    entry: dict[str, Any] = {"at": iso(utcnow()), "by": by, "status": status.value}
    if note:
        entry["note"] = note
    return entry


def checkout(
    db: Session,
    user: User,
    payload: CheckoutRequest,
    *,
    idempotency_key: str | None = None,
) -> tuple[list[dict[str, Any]], bool]:
    """Create one order per shop from the submitted cart lines.

    Returns the order documents and whether any of them was newly created. With an
    ``Idempotency-Key`` a repeated checkout returns the orders created the first time.
    """

    shipping = payload.shipping_address
    if payload.fulfillment_type == "delivery" and (shipping is None or not (shipping.address1 or "").strip()):
        raise ValidationFailedError("Delivery address required to place the order")

    product_ids = [line.product_id for line in payload.items]
    products = {
        p.id: p
        for p in db.query(Product).filter(Product.id.in_(product_ids)).all()
        if p.is_active
    }

    groups: dict[str, list] = {}
    for line in payload.items:
        product = products.get(line.product_id)
        if product is None:
            raise ValidationFailedError(f"Product not found: {line.product_id}")
        groups.setdefault(product.shop_id, []).append((line, product))

    key = (idempotency_key or "").strip()
    documents: list[dict[str, Any]] = []
    created: list[Order] = []

    for shop_id, lines in groups.items():
        # Keys are per customer; another user's key never replays their order.
        shop_key = f"{user.id}:{key}:{shop_id}" if key else None
        if shop_key:
            existing = (
                db.query(Order)
                .filter(Order.idempotency_key == shop_key, Order.user_id == user.id)
                .one_or_none()
            )
            if existing is not None:
                documents.append(order_document(db, existing, viewer_id=user.id))
                continue

        order = Order(
            id=uuid4().hex,
            user_id=user.id,
            shop_id=shop_id,
            status=_O.PENDING.value,
            notes=payload.notes,
            fulfillment_json={"type": payload.fulfillment_type},
            shipping_address_json=shipping.model_dump(exclude_none=True) if shipping else None,
            payment_json={"method": payload.payment_method.strip().lower() or "cod", "status": "pending"},
            timeline_json=[_timeline_entry("system", _O.PENDING, "Awaiting shop acceptance")],
            idempotency_key=shop_key,
        )
        db.add(order)

        items_total = 0
        for position, (line, product) in enumerate(lines):
            subtotal = product.price_paise * line.qty
            items_total += subtotal
            db.add(
                OrderItem(
                    id=uuid4().hex,
                    order_id=order.id,
                    product_id=product.id,
                    variant_id=line.variant_id,
                    position=position,
                    name=product.name,
                    image=product.image,
                    unit_price=product.price_paise,
                    qty=line.qty,
                    subtotal=subtotal,
                    options_json=dict(line.options),
                )
            )

        order.items_total = items_total
        order.discount_total = 0
        order.tax_total = 0
        order.shipping_fee = 0
        order.grand_total = items_total
        created.append(order)

    db.commit()

    for order in created:
        shop = db.get(Shop, order.shop_id)
        logger.info("order %s placed by %s at shop %s", order.id, user.id, order.shop_id)
        documents.append(order_document(db, order, viewer_id=user.id))
        notify_user(
            db,
            user_id=shop.owner_id if shop else None,
            type="order",
            message=f"New order {order_code(order)} from {user.name or 'a customer'}.",
            target_type="order",
            target_id=order.id,
        )
        notify_user(
            db,
            user_id=user.id,
            type="order",
            message=f"Your order {order_code(order)} with {shop.name if shop else 'the shop'} is awaiting shop acceptance.",
            target_type="order",
            target_id=order.id,
        )

    return documents, bool(created)


def list_orders(
    db: Session,
    user: User,
    *,
    scope: str,
    status: str | None = None,
    page: int | None = None,
    page_size: int | None = None,
) -> dict[str, Any]:
    page, page_size = clamp_page(page, page_size)

    query = db.query(Order)
    if scope == "mine":
        query = query.filter(Order.user_id == user.id)
    elif scope == "received":
        shop_ids = [shop_id for (shop_id,) in db.query(Shop.id).filter(Shop.owner_id == user.id).all()]
        if not shop_ids:
            return {"items": [], "page": page, "pageSize": page_size, "total": 0}
        query = query.filter(Order.shop_id.in_(shop_ids))
    else:
        raise ValueError(f"Unknown order scope={scope!r}")

    if status:
        try:
            query = query.filter(Order.status == parse_order_status(status).value)
        except ValueError as e:
            raise ValidationFailedError(str(e)) from e

    total = query.count()
    orders = (
        query.order_by(Order.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        "items": [order_document(db, o, viewer_id=user.id) for o in orders],
        "page": page,
        "pageSize": page_size,
        "total": total,
    }


def _load(db: Session, order_id: str) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order")
    return order


def _is_shop_owner(db: Session, order: Order, user: User) -> bool:
    shop = db.get(Shop, order.shop_id)
    return shop is not None and shop.owner_id == user.id


def _apply(
    db: Session,
    order: Order,
    target: OrderStatusV1,
    *,
    by: str,
    note: str | None,
) -> None:
    current = parse_order_status(order.status)
    now = utcnow()

    order.status = target.value
    order.updated_at = now
    order.timeline_json = [*(order.timeline_json or []), _timeline_entry(by, target, note)]

    if target == _O.ACCEPTED and order.contact_shared_at is None:
        order.contact_shared_at = now
    if target in (_O.REJECTED, _O.CANCELLED):
        order.cancel_json = {"by": by, "reason": note, "at": iso(now)}

    db.commit()
    logger.info("order %s moved %s -> %s by %s", order.id, current.value, target.value, by)


def shop_transition(
    db: Session, user: User, order_id: str, target: OrderStatusV1, note: str | None = None
) -> dict[str, Any]:
    order = _load(db, order_id)
    if not _is_shop_owner(db, order, user):
        raise ForbiddenError("Only the shop owner can update this order")

    current = parse_order_status(order.status)
    if target not in SHOP_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current.value, target.value)

    _apply(db, order, target, by="shop", note=note)
    notify_user(
        db,
        user_id=order.user_id,
        type="order",
        message=f"Order {order_code(order)} is now {status_label(target)}.",
        target_type="order",
        target_id=order.id,
    )
    return order_document(db, order, viewer_id=user.id)


def accept_order(db: Session, user: User, order_id: str) -> dict[str, Any]:
    return shop_transition(db, user, order_id, _O.ACCEPTED)


def reject_order(db: Session, user: User, order_id: str, note: str | None = None) -> dict[str, Any]:
    return shop_transition(db, user, order_id, _O.REJECTED, note)


def cancel_order(db: Session, user: User, order_id: str, reason: str | None = None) -> dict[str, Any]:
    order = _load(db, order_id)
    if order.user_id != user.id:
        raise ForbiddenError("Only the customer can cancel this order")

    current = parse_order_status(order.status)
    if current not in CUSTOMER_CANCELLABLE:
        raise InvalidTransitionError(current.value, _O.CANCELLED.value)

    _apply(db, order, _O.CANCELLED, by="user", note=reason)
    shop = db.get(Shop, order.shop_id)
    notify_user(
        db,
        user_id=shop.owner_id if shop else None,
        type="order",
        message=f"Order {order_code(order)} was cancelled by the customer.",
        target_type="order",
        target_id=order.id,
    )
    return order_document(db, order, viewer_id=user.id)


def update_order_status(
    db: Session, user: User, order_id: str, raw_status: str, note: str | None = None
) -> dict[str, Any]:
    try:
        target = parse_order_status(raw_status)
    except ValueError as e:
        raise ValidationFailedError(str(e)) from e

    order = _load(db, order_id)
    if target == _O.CANCELLED and order.user_id == user.id:
        return cancel_order(db, user, order_id, note)
    return shop_transition(db, user, order_id, target, note)


def rate_order(
    db: Session, user: User, order_id: str, rating: int, review: str | None = None
) -> dict[str, Any]:
    order = _load(db, order_id)
    if order.user_id != user.id:
        raise ForbiddenError("Only the customer can rate this order")

    if parse_order_status(order.status) not in FEEDBACK_ORDER_STATUSES:
        raise ConflictError("Orders can be rated once delivered or completed")
    if order.rating is not None:
        raise ConflictError("Order already rated")

    order.rating = rating
    order.review = (review or "").strip() or None
    order.updated_at = utcnow()
    db.commit()
    return order_document(db, order, viewer_id=user.id)
