"""Moderation queue, decision and reporting schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ReviewRequest(BaseModel):
    """Schema for a single moderation decision."""

    badge_id: str
    content_type: str = Field(..., description="post or comment")
    content_id: str
    decision: str = Field(..., description="keep or remove")
    reason: str | None = Field(None, max_length=1000)


class BatchReviewItem(BaseModel):
    content_type: str
    content_id: str
    decision: str
    reason: str | None = Field(None, max_length=1000)


class BatchReviewRequest(BaseModel):
    badge_id: str
    decisions: list[BatchReviewItem]


class PriorActionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    badge_id: str
    decision: str
    reason: str | None = None
    created_at: datetime


class QueueItemResponse(BaseModel):
    content_type: str
    content_id: str
    community_id: str
    flag_count: int
    first_flagged_at: datetime
    reasons: list[str]
    body: str | None = None
    author_id: str | None = None
    is_hidden: bool
    previous_actions: list[PriorActionResponse]


class QueueResponse(BaseModel):
    badge_id: str
    scope_type: str
    scope_id: str
    actions_taken: int
    min_actions_required: int
    items: list[QueueItemResponse]


class DecisionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    action_id: int
    badge_id: str
    decision: str
    flags_resolved: int
    actions_taken: int
    ledger_ref: str | None = None


class BatchItemResult(BaseModel):
    content_type: str
    content_id: str
    success: bool
    action_id: int | None = None
    error: str | None = None


class BatchReviewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    processed: int
    successful: int
    results: list[BatchItemResult]


class ScopeStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    scope_type: str
    scope_id: str
    active_badges: int
    completed_badges: int
    actions_30d: int
    removals_30d: int
    keeps_30d: int
    avg_actions_per_badge: float
    unique_moderators_30d: int
    pending_items: int
    removal_rate: float


class LeaderboardEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rank: int
    user_id: str
    display_name: str | None = None
    badges_completed: int
    total_actions: int
    avg_actions_per_badge: float
    last_badge_completed: datetime | None = None


class BadgePerformanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    badge_id: str
    holder_id: str
    scope_type: str
    scope_id: str
    status: str
    actions_taken: int
    min_actions_required: int
    total_actions: int
    keeps: int
    removes: int
    hours_active: float
    actions_per_day: float
    avg_hours_to_action: float | None = None
    performance_status: str
