from __future__ import annotations

import logging

from fastapi import HTTPException

logger = logging.getLogger(__name__)


class ManacityError(Exception):
    """Base class for domain errors raised by the service layer."""


class NotFoundError(ManacityError):
    def __init__(self, entity: str) -> None:
        super().__init__(f"{entity} not found")
        self.entity = entity


class ForbiddenError(ManacityError):
    pass


class InvalidTransitionError(ManacityError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot change status from {current} to {target}")
        self.current = current
        self.target = target


class ValidationFailedError(ManacityError):
    pass


class ConflictError(ManacityError):
    pass


def raise_http_error(e: Exception) -> None:
    if isinstance(e, NotFoundError):
        raise HTTPException(status_code=404, detail=str(e)) from e

    if isinstance(e, ForbiddenError):
        raise HTTPException(status_code=403, detail=str(e)) from e

    if isinstance(e, (InvalidTransitionError, ConflictError)):
        raise HTTPException(status_code=409, detail=str(e)) from e

    if isinstance(e, ValidationFailedError):
        raise HTTPException(status_code=400, detail=str(e)) from e

    logger.exception("unhandled error in service layer")
    raise HTTPException(status_code=500, detail="Internal Server Error") from e
