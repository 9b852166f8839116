"""Badge, invitation and profile schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from badge_rotation.models import BadgeInvitation


class BadgeResponse(BaseModel):
    """Badge as seen by its holder."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    scope_type: str
    scope_id: str
    holder_id: str
    status: str
    duty_days: int
    offered_at: datetime
    accepted_at: datetime | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    actions_taken: int
    min_actions_required: int
    progress_percentage: int
    pass_reason: str | None = None
    ledger_ref: str | None = None


class CurrentBadgeResponse(BaseModel):
    badge: BadgeResponse | None = None
    time_remaining_seconds: int | None = None


class InvitationResponse(BaseModel):
    """A pending offer, flattened with the badge terms the invitee decides on."""

    id: str
    badge_id: str
    scope_type: str
    scope_id: str
    duty_days: int
    min_actions_required: int
    invited_at: datetime
    expires_at: datetime
    response: str | None = None

    @classmethod
    def from_model(cls, invitation: BadgeInvitation) -> InvitationResponse:
        badge = invitation.badge
        return cls(
            id=invitation.id,
            badge_id=invitation.badge_id,
            scope_type=badge.scope_type,
            scope_id=badge.scope_id,
            duty_days=badge.duty_days,
            min_actions_required=badge.min_actions_required,
            invited_at=invitation.invited_at,
            expires_at=invitation.expires_at,
            response=invitation.response,
        )


class EligibilityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    eligible: bool
    reasons: list[str] = Field(default_factory=list)
    current_badge_id: str | None = None
    cooldown_ends_at: datetime | None = None


class PassBadgeRequest(BaseModel):
    badge_id: str = Field(..., description="Active badge to hand back")
    reason: str = Field(..., max_length=1000, description="Why the holder is stepping down")


class MilestoneResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str
    description: str
    progress: int
    target: int
    achieved: bool
    reward_pco: float
    reward_reputation: int


class HistorySummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_badges: int
    completed_badges: int
    abandoned_badges: int
    declined_badges: int
    total_actions: int
    avg_actions_per_badge: float
    last_badge_date: datetime | None = None


class ModerationProfileResponse(BaseModel):
    user_id: str
    eligibility: EligibilityResponse
    current_badge: BadgeResponse | None = None
    pending_invitations: list[InvitationResponse]
    history: HistorySummaryResponse
    milestones: list[MilestoneResponse]
    next_eligible_date: datetime | None = None
