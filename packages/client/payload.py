"""Response-body shape parsing.

Servers answer with ``{ok, data, traceId}`` envelopes, bare arrays, or objects that
carry the list under one of several keys. Each matcher below recognises one shape and
returns a ``ShapeMatch`` or ``None``; they are tried in priority order and the first hit
wins. When several shapes match the same body a warning names all of them.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

ENVELOPE_MARKERS = ("ok", "success", "traceId")

LIST_KEYS = ("items", "orders", "requests", "results", "rows", "docs", "list", "data")

ITEM_KEYS = ("order", "request", "item")


class PayloadShapeError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class ShapeMatch:
    shape: str
    items: list[Any]


Matcher = Callable[[Any], "ShapeMatch | None"]


def match_bare_list(body: Any) -> ShapeMatch | None:
    if isinstance(body, list):
        return ShapeMatch(shape="list", items=body)
    return None


def match_key(key: str) -> Matcher:
    def _match(body: Any) -> ShapeMatch | None:
        if isinstance(body, dict) and isinstance(body.get(key), list):
            return ShapeMatch(shape=key, items=body[key])
        return None

    _match.__name__ = f"match_{key}"
    return _match


MATCHERS: tuple[Matcher, ...] = (match_bare_list, *(match_key(k) for k in LIST_KEYS))


def unwrap_envelope(body: Any) -> Any:
    """Peel ``{ok|success|traceId, data}`` envelopes, including nested ``data.data``."""

    while isinstance(body, dict) and "data" in body:
        inner = body["data"]
        is_envelope = any(marker in body for marker in ENVELOPE_MARKERS)
        if not (is_envelope or isinstance(inner, dict)):
            break
        body = inner
    return body


def parse_items(body: Any, matchers: tuple[Matcher, ...] = MATCHERS) -> list[Any]:
    body = unwrap_envelope(body)

    matches = [m for m in (matcher(body) for matcher in matchers) if m is not None]
    if not matches:
        logger.warning("no list found in response of type %s", type(body).__name__)
        return []

    if len(matches) > 1:
        logger.warning(
            "ambiguous response shape, candidates: %s; using %s",
            ", ".join(m.shape for m in matches),
            matches[0].shape,
        )
    return list(matches[0].items)


def parse_item(body: Any, keys: tuple[str, ...] = ITEM_KEYS) -> dict[str, Any]:
    body = unwrap_envelope(body)
    if isinstance(body, dict):
        for key in keys:
            if isinstance(body.get(key), dict):
                return body[key]
        if body:
            return body
    raise PayloadShapeError(f"Expected an object in response, got {type(body).__name__}")
