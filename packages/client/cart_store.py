"""Client-side cart.

Lines are keyed by ``(product_id, shop_id, variant_id)``. Every mutation updates the
in-memory list first and then writes the whole list through the ``CartRepository``, so
what is in memory always matches what was last persisted.
"""

from __future__ import annotations

import json
import logging
import math
import os
import time
from typing import Any, Protocol

from packages.client.storage import (
    CART_KEY,
    FileLocalStorage,
    LocalStorage,
    MemoryLocalStorage,
)
from packages.shared.currency import is_number, non_negative, rupees_to_paise, to_paise
from packages.shared.schemas.cart_v1 import CartItemV1, CartKey

logger = logging.getLogger(__name__)


class CartItemError(ValueError):
    pass


class CartRepository(Protocol):
    def load(self) -> list[dict[str, Any]]: ...

    def save(self, items: list[dict[str, Any]]) -> None: ...


class LocalStorageCartRepository:
    def __init__(self, storage: LocalStorage, key: str = CART_KEY) -> None:
        self.storage = storage
        self.key = key

    def load(self) -> list[dict[str, Any]]:
        raw = self.storage.get_item(self.key)
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("discarding unreadable cart under %s", self.key)
            return []
        return [v for v in parsed if isinstance(v, dict)] if isinstance(parsed, list) else []

    def save(self, items: list[dict[str, Any]]) -> None:
        self.storage.set_item(self.key, json.dumps(items, ensure_ascii=False))


def get_cart_repository() -> CartRepository:
    """Select cart persistence based on env vars.

    ``MANACITY_CART_STORAGE`` is ``file`` (default) or ``memory``.
    """

    mode = os.getenv("MANACITY_CART_STORAGE", "file").strip().lower()

    if mode == "memory":
        return LocalStorageCartRepository(MemoryLocalStorage())

    if mode == "file":
        return LocalStorageCartRepository(FileLocalStorage.from_env())

    raise ValueError(f"Unknown MANACITY_CART_STORAGE={mode!r}. Expected memory or file.")


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _first(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return None


def _positive_int(value: Any, fallback: int = 1) -> int:
    if not is_number(value):
        return fallback
    floored = math.floor(float(value))
    return floored if floored > 0 else fallback


def sanitize_item(payload: dict[str, Any] | CartItemV1) -> CartItemV1:
    """Build a valid cart line from camelCase or snake_case input.

    Raises ``CartItemError`` when the product or shop id is blank.
    """

    if isinstance(payload, CartItemV1):
        payload = payload.model_dump()

    product_id = _text(_first(payload, "productId", "product_id"))
    shop_id = _text(_first(payload, "shopId", "shop_id"))
    if not product_id:
        raise CartItemError("Cart item is missing a product id")
    if not shop_id:
        raise CartItemError("Cart item is missing a shop id")

    price_paise = _first(payload, "pricePaise", "price_paise")
    if is_number(price_paise):
        price = to_paise(price_paise)
    else:
        price = rupees_to_paise(payload.get("price"))

    return CartItemV1(
        product_id=product_id,
        shop_id=shop_id,
        variant_id=_text(_first(payload, "variantId", "variant_id")) or None,
        qty=_positive_int(_first(payload, "qty", "quantity")),
        price_paise=non_negative(price),
        name=_text(payload.get("name")) or "Item",
        image=_text(payload.get("image")) or None,
    )


def _key(product_id: str, shop_id: str, variant_id: str | None) -> CartKey:
    return (_text(product_id), _text(shop_id), _text(variant_id))


class CartStore:
    def __init__(self, repository: CartRepository) -> None:
        self.repository = repository
        self._items: list[CartItemV1] = self._sanitize_all(repository.load())
        self.last_updated: float = time.time() if self._items else 0.0

    @staticmethod
    def _sanitize_all(raw_items: Any) -> list[CartItemV1]:
        if not isinstance(raw_items, list):
            return []
        out: list[CartItemV1] = []
        for raw in raw_items:
            if not isinstance(raw, (dict, CartItemV1)):
                logger.debug("dropping non-object cart entry %r", raw)
                continue
            try:
                out.append(sanitize_item(raw))
            except (CartItemError, ValueError) as e:
                logger.debug("dropping invalid cart entry %r: %s", raw, e)
        return out

    def _touch(self) -> None:
        self.last_updated = time.time()
        self.repository.save(
            [item.model_dump(mode="json", by_alias=True, exclude_none=True) for item in self._items]
        )

    def _index(self, key: CartKey) -> int:
        for i, item in enumerate(self._items):
            if item.key == key:
                return i
        return -1

    @property
    def items(self) -> list[CartItemV1]:
        return [item.model_copy() for item in self._items]

    @property
    def item_count(self) -> int:
        return sum(item.qty for item in self._items)

    @property
    def subtotal_paise(self) -> int:
        return sum(item.line_total_paise for item in self._items)

    def by_shop(self, shop_id: str) -> list[CartItemV1]:
        shop_id = _text(shop_id)
        return [item.model_copy() for item in self._items if item.shop_id == shop_id]

    def hydrate_cart(self, raw_items: Any) -> None:
        self._items = self._sanitize_all(raw_items)
        self._touch()

    def add_item(self, payload: dict[str, Any] | CartItemV1) -> CartItemV1:
        incoming = sanitize_item(payload)
        index = self._index(incoming.key)
        if index >= 0:
            existing = self._items[index]
            incoming = incoming.model_copy(update={"qty": existing.qty + incoming.qty})
            self._items[index] = incoming
        else:
            self._items.append(incoming)
        self._touch()
        return incoming.model_copy()

    def update_item_qty(
        self, product_id: str, shop_id: str, qty: Any, variant_id: str | None = None
    ) -> None:
        index = self._index(_key(product_id, shop_id, variant_id))
        if index < 0:
            return

        next_qty = math.floor(float(qty)) if is_number(qty) else 0
        if next_qty <= 0:
            del self._items[index]
        else:
            self._items[index] = self._items[index].model_copy(update={"qty": next_qty})
        self._touch()

    def remove_item(self, product_id: str, shop_id: str, variant_id: str | None = None) -> None:
        key = _key(product_id, shop_id, variant_id)
        self._items = [item for item in self._items if item.key != key]
        self._touch()

    def clear_shop(self, shop_id: str) -> None:
        shop_id = _text(shop_id)
        if not shop_id:
            return
        self._items = [item for item in self._items if item.shop_id != shop_id]
        self._touch()

    def clear_cart(self) -> None:
        self._items = []
        self._touch()


def _image_of(product: dict[str, Any]) -> str | None:
    for key in ("image", "thumbnail"):
        direct = _text(product.get(key))
        if direct:
            return direct

    for key in ("images", "media"):
        entries = product.get(key)
        if not isinstance(entries, list):
            continue
        for entry in entries:
            if isinstance(entry, dict):
                nested = _text(entry.get("url") or entry.get("src"))
            else:
                nested = "" if key == "media" else _text(entry)
            if nested:
                return nested
    return None


def _nested_id(value: Any) -> str:
    if isinstance(value, dict):
        return _text(value.get("_id") or value.get("id"))
    return _text(value)


def build_cart_item(product: dict[str, Any] | None, quantity: Any = 1) -> CartItemV1:
    """Extract a cart line from an arbitrary product payload."""

    if not isinstance(product, dict):
        raise CartItemError("Cannot add an unknown product to cart")

    product_id = next(
        (v for v in (_text(product.get(k)) for k in ("productId", "_id", "id", "itemId", "sku")) if v),
        "",
    )
    if not product_id:
        raise CartItemError("Product is missing a valid identifier")

    shop_id = next(
        (
            v
            for v in (
                _text(product.get("shopId")),
                _nested_id(product.get("shop")),
                _text(product.get("vendorId")),
            )
            if v
        ),
        "",
    )
    if not shop_id:
        raise CartItemError("Product is missing its shop")

    name = next(
        (v for v in (_text(product.get(k)) for k in ("name", "title", "displayName", "label")) if v),
        "Item",
    )

    price_paise = 0
    for key in ("pricePaise", "unitPricePaise", "sellingPricePaise", "mrpPaise"):
        candidate = non_negative(to_paise(product.get(key)))
        if candidate > 0:
            price_paise = candidate
            break
    else:
        for key in ("price", "sellingPrice", "offerPrice"):
            candidate = non_negative(rupees_to_paise(product.get(key)))
            if candidate > 0:
                price_paise = candidate
                break

    variant_id = next(
        (
            v
            for v in (
                _text(product.get("variantId")),
                _nested_id(product.get("variant")),
                _nested_id(product.get("selectedVariant")),
            )
            if v
        ),
        None,
    )

    return CartItemV1(
        product_id=product_id,
        shop_id=shop_id,
        variant_id=variant_id,
        qty=_positive_int(quantity),
        price_paise=price_paise,
        name=name,
        image=_image_of(product),
    )
