from __future__ import annotations

import logging
import os
from typing import Any

import httpx

from packages.client.storage import ADMIN_TOKEN_KEY, TOKEN_KEY, FileLocalStorage, LocalStorage

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:8000"
ADMIN_PREFIXES = ("/api/admin", "/admin")
FALLBACK_MESSAGE = "Something went wrong"


def _is_admin_path(path: str) -> bool:
    return any(path == prefix or path.startswith(prefix + "/") for prefix in ADMIN_PREFIXES)


def attach_auth(client: httpx.Client, storage: LocalStorage) -> httpx.Client:
    """Install a request hook that adds the stored bearer token.

    Admin paths get the admin token; everything else gets the user token. An explicit
    ``Authorization`` header on the request is left alone.
    """

    def _authorize(request: httpx.Request) -> None:
        if "Authorization" in request.headers:
            return
        key = ADMIN_TOKEN_KEY if _is_admin_path(request.url.path) else TOKEN_KEY
        token = storage.get_item(key)
        if token:
            request.headers["Authorization"] = f"Bearer {token}"

    hooks = dict(client.event_hooks)
    hooks["request"] = [*hooks.get("request", []), _authorize]
    client.event_hooks = hooks
    return client


def build_http_client(
    base_url: str | None = None,
    storage: LocalStorage | None = None,
    *,
    user_id: str | None = None,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    headers = {"X-User-Id": user_id} if user_id else {}
    client = httpx.Client(
        base_url=base_url or os.getenv("MANACITY_API_URL", DEFAULT_API_URL),
        headers=headers,
        transport=transport,
    )
    return attach_auth(client, storage if storage is not None else FileLocalStorage.from_env())


def _message_from_body(body: Any) -> str | None:
    if isinstance(body, str):
        return body.strip() or None
    if not isinstance(body, dict):
        return None

    error = body.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str) and error["message"].strip():
        return error["message"].strip()

    detail = body.get("detail")
    if isinstance(detail, str) and detail.strip():
        return detail.strip()
    if isinstance(detail, list) and detail and isinstance(detail[0], dict) and detail[0].get("msg"):
        return str(detail[0]["msg"])

    for key in ("message", "error"):
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def error_message(exc: BaseException | None) -> str:
    """Turn any client-side failure into text fit for a toast."""

    if exc is None:
        return FALLBACK_MESSAGE

    if isinstance(exc, httpx.HTTPStatusError):
        try:
            body: Any = exc.response.json()
        except ValueError:
            body = exc.response.text
        return _message_from_body(body) or f"Request failed with status {exc.response.status_code}"

    if isinstance(exc, httpx.RequestError):
        return str(exc).strip() or "Network error"

    return str(exc).strip() or FALLBACK_MESSAGE


def send(http: httpx.Client, method: str, url: str, **kwargs: Any) -> Any:
    response = http.request(method, url, **kwargs)
    response.raise_for_status()
    return response.json() if response.content else None


def request_with_legacy_fallback(
    http: httpx.Client, method: str, primary: str, legacy: str, **kwargs: Any
) -> Any:
    """Call ``primary`` and retry once against ``legacy`` only when it answers 404."""

    response = http.request(method, primary, **kwargs)
    if response.status_code == 404:
        logger.info("%s %s returned 404, retrying legacy path %s", method, primary, legacy)
        response = http.request(method, legacy, **kwargs)
    response.raise_for_status()
    return response.json() if response.content else None


def get_with_legacy_fallback(http: httpx.Client, primary: str, legacy: str, **kwargs: Any) -> Any:
    return request_with_legacy_fallback(http, "GET", primary, legacy, **kwargs)
