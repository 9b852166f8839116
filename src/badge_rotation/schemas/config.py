"""Per-scope moderation configuration schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ModerationConfigResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    scope_type: str
    scope_id: str
    badge_ratio: int
    min_reputation: int
    min_account_age_days: int
    reward_pco: float
    reward_reputation: int
    penalty_reputation: int
    min_actions_required: int
    updated_at: datetime


class ModerationConfigUpdate(BaseModel):
    """Operator changes; omitted fields keep their current value."""

    badge_ratio: int | None = Field(None, ge=1)
    min_reputation: int | None = Field(None, ge=0)
    min_account_age_days: int | None = Field(None, ge=0)
    reward_pco: float | None = Field(None, ge=0)
    reward_reputation: int | None = Field(None, ge=0)
    penalty_reputation: int | None = Field(None, ge=0)
    min_actions_required: int | None = Field(None, ge=1)
