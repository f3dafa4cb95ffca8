from __future__ import annotations

import logging

import pytest

from packages.client.payload import PayloadShapeError, parse_item, parse_items, unwrap_envelope


def test_bare_list() -> None:
    assert parse_items([{"_id": "a"}]) == [{"_id": "a"}]


@pytest.mark.parametrize("key", ["items", "orders", "requests", "results", "rows", "docs", "list"])
def test_keyed_lists(key: str) -> None:
    assert parse_items({key: [1, 2]}) == [1, 2]


def test_envelope_is_unwrapped_including_nested_data() -> None:
    body = {"ok": True, "data": {"data": {"orders": ["o-1"]}}, "traceId": "t"}
    assert parse_items(body) == ["o-1"]
    assert unwrap_envelope({"success": True, "data": [1]}) == [1]


def test_plain_data_key_without_envelope_markers() -> None:
    assert parse_items({"data": ["x"]}) == ["x"]


def test_ambiguous_shape_picks_first_and_warns(caplog: pytest.LogCaptureFixture) -> None:
    body = {"items": ["from-items"], "orders": ["from-orders"]}

    with caplog.at_level(logging.WARNING, logger="packages.client.payload"):
        result = parse_items(body)

    assert result == ["from-items"]
    assert "ambiguous response shape" in caplog.text
    assert "items, orders" in caplog.text


def test_no_list_logs_and_returns_empty(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="packages.client.payload"):
        assert parse_items({"count": 3}) == []
    assert "no list found" in caplog.text


def test_parse_item_unwraps_keyed_object() -> None:
    assert parse_item({"ok": True, "data": {"order": {"_id": "o-1"}}}) == {"_id": "o-1"}
    assert parse_item({"ok": True, "data": {"_id": "o-2"}}) == {"_id": "o-2"}


def test_parse_item_rejects_non_objects() -> None:
    with pytest.raises(PayloadShapeError):
        parse_item({"ok": True, "data": []})
    with pytest.raises(PayloadShapeError):
        parse_item(None)
