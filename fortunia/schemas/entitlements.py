"""Quota and subscription request schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from fortunia.services.subscriptions import SubscriptionInput


class QuotaRequest(BaseModel):
    """Request body for POST /quota. user_id identifies guests."""

    user_id: str | None = Field(default=None, max_length=128)

    model_config = ConfigDict(extra="ignore")


class UpsertSubscriptionRequest(BaseModel):
    """Request body for POST /subscriptions.

    status and environment are checked by the reconciler so the error
    message names the offending value.
    """

    product_id: str = Field(..., min_length=1, max_length=255)
    status: str = Field(..., min_length=1)
    expires_at: datetime
    transaction_id: str = Field(..., min_length=1, max_length=255)
    purchase_date: datetime
    environment: str = Field(..., min_length=1)

    model_config = ConfigDict(extra="ignore")

    def to_input(self) -> SubscriptionInput:
        return SubscriptionInput(
            product_id=self.product_id,
            status=self.status,
            expires_at=self.expires_at,
            transaction_id=self.transaction_id,
            purchase_date=self.purchase_date,
            environment=self.environment,
        )
