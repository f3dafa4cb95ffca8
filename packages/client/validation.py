"""Form checks that run before any network call."""

from __future__ import annotations

import re
from typing import Any

from packages.shared.schemas.order_v1 import OrderAddressV1
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

_PHONE_PREFIX = re.compile(r"^(?:\+?91|0)(?=\d{10}$)")
_PHONE = re.compile(r"^[6-9]\d{9}$")
_PINCODE = re.compile(r"^[1-9]\d{5}$")


class FieldValidationError(ValueError):
    def __init__(self, errors: dict[str, str]) -> None:
        super().__init__("; ".join(f"{field}: {message}" for field, message in errors.items()))
        self.errors = errors


def normalize_phone(raw: Any) -> str:
    digits = re.sub(r"[\s\-()]", "", str(raw or ""))
    digits = _PHONE_PREFIX.sub("", digits)
    if not _PHONE.match(digits):
        raise ValueError("Enter a valid 10-digit mobile number")
    return digits


def validate_phone(raw: Any, field: str = "phone") -> str:
    try:
        return normalize_phone(raw)
    except ValueError as e:
        raise FieldValidationError({field: str(e)}) from e


class DeliveryAddressInput(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True
    )

    name: str = Field(..., min_length=1)
    phone: str
    address1: str = Field(..., min_length=1)
    address2: str | None = None
    landmark: str | None = None
    city: str = Field(..., min_length=1)
    state: str | None = None
    pincode: str
    label: str | None = None

    @field_validator("phone")
    @classmethod
    def _phone(cls, value: str) -> str:
        return normalize_phone(value)

    @field_validator("pincode")
    @classmethod
    def _pincode(cls, value: str) -> str:
        if not _PINCODE.match(value):
            raise ValueError("Enter a valid 6-digit pincode")
        return value


_FIELD_MESSAGES = {
    "missing": "This field is required",
    "string_too_short": "This field is required",
}


def validate_address(raw: dict[str, Any] | OrderAddressV1 | None) -> OrderAddressV1:
    """Check a delivery address and return it normalized.

    Raises ``FieldValidationError`` with one message per failing field.
    """

    if isinstance(raw, OrderAddressV1):
        raw = raw.model_dump(exclude_none=True)

    try:
        parsed = DeliveryAddressInput.model_validate(raw or {})
    except ValidationError as e:
        errors: dict[str, str] = {}
        for err in e.errors():
            field = str(err["loc"][0]) if err["loc"] else "address"
            message = _FIELD_MESSAGES.get(err["type"]) or str(err["msg"]).removeprefix("Value error, ")
            errors.setdefault(field, message)
        raise FieldValidationError(errors) from e

    return OrderAddressV1.model_validate(parsed.model_dump(exclude_none=True))
