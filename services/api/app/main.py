"""Manacity API service entrypoint."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from services.api.app.db.init_db import init_db
from services.api.app.log import configure_logging
from services.api.app.routers.admin import router as admin_router
from services.api.app.routers.orders import router as orders_router
from services.api.app.routers.service_requests import router as service_requests_router
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)

TRACE_HEADER = "X-Trace-Id"


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    configure_logging()
    init_db()
    yield


app = FastAPI(title="Manacity API", lifespan=lifespan)

app.include_router(orders_router)
app.include_router(service_requests_router)
app.include_router(admin_router)


@app.middleware("http")
async def _trace_id(request: Request, call_next):
    trace_id = request.headers.get(TRACE_HEADER) or uuid4().hex
    request.state.trace_id = trace_id
    response = await call_next(request)
    response.headers[TRACE_HEADER] = trace_id
    return response


def _error_response(request: Request, status: int, message: str, detail=None) -> JSONResponse:
    trace_id = getattr(request.state, "trace_id", None)
    return JSONResponse(
        status_code=status,
        content={
            "ok": False,
            "error": {"status": status, "message": message},
            "detail": jsonable_encoder(detail if detail is not None else message),
            "traceId": trace_id,
        },
        headers={TRACE_HEADER: trace_id} if trace_id else None,
    )


@app.exception_handler(HTTPException)
async def _http_error(request: Request, exc: HTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return _error_response(request, exc.status_code, message, exc.detail)


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(request, 422, "Validation failed", exc.errors())


@app.exception_handler(Exception)
async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return _error_response(request, 500, "Internal Server Error")


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
