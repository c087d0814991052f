"""Rate assignment schemas."""

import uuid
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator

from tracker_sync.storage.orm import RateScope


class RateChange(BaseModel):
    """Request to assign a new hourly rate to a user."""

    user_id: uuid.UUID
    amount: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    scope: RateScope = RateScope.GLOBAL
    context_key: str | None = None
    comment: str | None = None

    @model_validator(mode="after")
    def _check_context_key(self) -> "RateChange":
        if self.scope == RateScope.GLOBAL:
            self.context_key = None
        elif not self.context_key:
            msg = f"context_key is required for {self.scope} rates"
            raise ValueError(msg)
        return self


class BatchRateUpdateResult(BaseModel):
    """Outcome of one entry in a batch rate update."""

    user_id: uuid.UUID
    success: bool
    error: str | None = None
    rate_id: uuid.UUID | None = None
