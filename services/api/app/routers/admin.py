from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from packages.shared.schemas.envelope_v1 import EnvelopeV1, envelope
from services.api.app.db.deps import get_db, get_trace_id, require_admin
from services.api.app.errors import raise_http_error
from services.api.app.models.service_request import AdminServiceRequestUpdate
from services.api.app.services import service_requests as sr_service
from sqlalchemy.orm import Session

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/service-requests", response_model=EnvelopeV1[dict[str, Any]])
def list_service_requests(
    status: str | None = None,
    q: str | None = None,
    service_id: str | None = Query(None, alias="serviceId"),
    date_from: str | None = Query(None, alias="from"),
    date_to: str | None = Query(None, alias="to"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, alias="pageSize"),
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    try:
        data = sr_service.admin_list(
            db,
            status=status,
            q=q,
            service_id=service_id,
            date_from=date_from,
            date_to=date_to,
            page=page,
            page_size=page_size,
        )
    except Exception as e:
        raise_http_error(e)
    return envelope(data, trace_id)


@router.patch("/service-requests/{request_id}", response_model=EnvelopeV1[dict[str, Any]])
def update_service_request(
    request_id: str,
    payload: AdminServiceRequestUpdate,
    db: Session = Depends(get_db),
    trace_id: str = Depends(get_trace_id),
) -> dict:
    try:
        doc = sr_service.admin_update(db, request_id, payload)
    except Exception as e:
        raise_http_error(e)
    return envelope({"request": doc}, trace_id)
