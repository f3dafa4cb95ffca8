from __future__ import annotations

from typing import Literal

from packages.shared.schemas.order_v1 import WireModel
from pydantic import Field, model_validator


class ServiceRequestCreate(WireModel):
    service_id: str | None = None
    custom_name: str = ""
    title: str = ""
    description: str = ""
    message: str = ""
    details: str = ""
    location: str = ""
    phone: str = ""
    preferred_date: str = ""
    preferred_time: str = ""
    payment_offer: str = ""
    type: Literal["public", "private"] = "public"

    @model_validator(mode="after")
    def _describes_something(self) -> ServiceRequestCreate:
        if not self.service_id and not (self.custom_name.strip() or self.title.strip()):
            raise ValueError("Provide a service or describe your requirement")
        return self


class DirectRequestCreate(WireModel):
    direct_target_user_id: str = Field(..., min_length=1)
    service_id: str | None = None
    title: str = ""
    message: str = ""
    payment_offer: str = ""


class StatusUpdate(WireModel):
    # Wire token, e.g. "InProgress"; mapped to the canonical enum by the service layer.
    status: str = Field(..., min_length=1)
    note: str | None = None


class OfferSubmit(WireModel):
    note: str = ""
    expected_return: str = ""


class DirectDecision(WireModel):
    provider_note: str = ""


class FeedbackSubmit(WireModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""


class AdminServiceRequestUpdate(WireModel):
    status: str | None = None
    admin_notes: str | None = None
    assigned_provider_ids: list[str] | None = None
