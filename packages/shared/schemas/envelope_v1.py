"""Response envelope (v1).

Every API response is ``{ok, data, traceId}``. Clients must also tolerate bare arrays
and bare objects from older endpoints.
"""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class ApiErrorV1(BaseModel):
    status: int
    message: str


class EnvelopeV1(BaseModel, Generic[T]):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    data: T | None = None
    error: ApiErrorV1 | None = None
    trace_id: str | None = Field(None, alias="traceId")


def envelope(data: Any, trace_id: str | None) -> dict[str, Any]:
    return {"ok": True, "data": data, "traceId": trace_id}


MAX_PAGE_SIZE = 100


def clamp_page(page: int | None, page_size: int | None) -> tuple[int, int]:
    return max(1, page or 1), max(1, min(MAX_PAGE_SIZE, page_size or 20))
