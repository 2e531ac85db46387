from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CreateCheckRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Presence is checked by the service so missing fields come back as 400.
    product_url: str | None = Field(None, alias="productUrl", max_length=2000)
    delivery_pincode: str | None = Field(None, alias="deliveryPincode", max_length=200)
    phone_number: str | None = Field(None, alias="phoneNumber", max_length=40)
    email: str | None = Field(None, max_length=320)
    interval_minutes: int | str | None = Field(None, alias="intervalMinutes")


class CreateCheckResponse(BaseModel):
    message: str = "Subscription created"
    item_id: int
    subscription_id: int
    email: str
    status: str
    status_changed_at_ts: float


class SubscriptionsResponse(BaseModel):
    email: str
    subscriptions: list[dict[str, Any]]


class DeleteCheckResponse(BaseModel):
    message: str = "Subscription removed"
    status: str | None = None
    status_changed_at_ts: float | None = None
