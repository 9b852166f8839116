"""Badge rotation endpoints for members and badge holders."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Query

from badge_rotation.api.v1.dependencies import CurrentUserDep, ServicesDep, SessionDep
from badge_rotation.schemas import (
    ApiResponse,
    BadgePerformanceResponse,
    BadgeResponse,
    BatchReviewRequest,
    BatchReviewResponse,
    CurrentBadgeResponse,
    DecisionResponse,
    EligibilityResponse,
    InvitationResponse,
    LeaderboardEntryResponse,
    MilestoneResponse,
    ModerationProfileResponse,
    PassBadgeRequest,
    QueueResponse,
    ReviewRequest,
    ScopeStatsResponse,
)
from badge_rotation.schemas.badge import HistorySummaryResponse
from badge_rotation.schemas.moderation import PriorActionResponse, QueueItemResponse
from badge_rotation.services.invitations import time_remaining
from badge_rotation.services.queue import Decision
from badge_rotation.services.scope import parse_scope

router = APIRouter(prefix="/moderation", tags=["moderation"])


@router.get("/eligibility", response_model=ApiResponse[EligibilityResponse])
async def get_eligibility(
    db: SessionDep,
    current_user: CurrentUserDep,
    services: ServicesDep,
    scope_type: str | None = Query(None),
    scope_id: str | None = Query(None),
) -> ApiResponse[EligibilityResponse]:
    """Explain whether the caller could be offered a badge."""
    scope = parse_scope(scope_type, scope_id or "") if scope_type else None
    result = services.assignment.check_user_eligibility(db, current_user.id, scope)
    return ApiResponse(data=EligibilityResponse.model_validate(result))


@router.get("/invitations", response_model=ApiResponse[list[InvitationResponse]])
async def list_invitations(
    db: SessionDep,
    current_user: CurrentUserDep,
    services: ServicesDep,
) -> ApiResponse[list[InvitationResponse]]:
    pending = services.invitations.list_pending(db, current_user.id)
    return ApiResponse(data=[InvitationResponse.from_model(item) for item in pending])


@router.post("/accept/{badge_id}", response_model=ApiResponse[BadgeResponse])
async def accept_badge(
    badge_id: str,
    db: SessionDep,
    current_user: CurrentUserDep,
    services: ServicesDep,
) -> ApiResponse[BadgeResponse]:
    badge = await services.invitations.accept(db, current_user.id, badge_id)
    return ApiResponse(data=BadgeResponse.model_validate(badge))


@router.post("/decline/{badge_id}", response_model=ApiResponse[BadgeResponse])
async def decline_badge(
    badge_id: str,
    db: SessionDep,
    current_user: CurrentUserDep,
    services: ServicesDep,
) -> ApiResponse[BadgeResponse]:
    badge = services.invitations.decline(db, current_user.id, badge_id)
    return ApiResponse(data=BadgeResponse.model_validate(badge))


@router.get("/queue", response_model=ApiResponse[QueueResponse])
async def get_queue(
    db: SessionDep,
    current_user: CurrentUserDep,
    services: ServicesDep,
    badge_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=100),
) -> ApiResponse[QueueResponse]:
    """Return the caller's review queue, most-flagged content first."""
    view = services.queue.get_queue(db, current_user.id, badge_id, limit)
    items = [
        QueueItemResponse(
            content_type=entry.item.content_type,
            content_id=entry.item.content_id,
            community_id=entry.item.community_id,
            flag_count=entry.item.flag_count,
            first_flagged_at=entry.item.first_flagged_at,
            reasons=entry.item.reasons,
            body=entry.item.body,
            author_id=entry.item.author_id,
            is_hidden=entry.item.is_hidden,
            previous_actions=[
                PriorActionResponse.model_validate(prior) for prior in entry.previous_actions
            ],
        )
        for entry in view.items
    ]
    return ApiResponse(
        data=QueueResponse(
            badge_id=view.badge.id,
            scope_type=view.badge.scope_type,
            scope_id=view.badge.scope_id,
            actions_taken=view.badge.actions_taken,
            min_actions_required=view.badge.min_actions_required,
            items=items,
        )
    )


@router.post("/review", response_model=ApiResponse[DecisionResponse])
async def submit_review(
    payload: ReviewRequest,
    db: SessionDep,
    current_user: CurrentUserDep,
    services: ServicesDep,
) -> ApiResponse[DecisionResponse]:
    decision = Decision(
        badge_id=payload.badge_id,
        content_type=payload.content_type,
        content_id=payload.content_id,
        decision=payload.decision,
        reason=payload.reason,
    )
    result = await services.queue.submit_decision(db, current_user.id, decision)
    return ApiResponse(data=DecisionResponse.model_validate(result))


@router.post("/batch-review", response_model=ApiResponse[BatchReviewResponse])
async def submit_batch_review(
    payload: BatchReviewRequest,
    db: SessionDep,
    current_user: CurrentUserDep,
    services: ServicesDep,
) -> ApiResponse[BatchReviewResponse]:
    decisions = [
        Decision(
            badge_id=payload.badge_id,
            content_type=item.content_type,
            content_id=item.content_id,
            decision=item.decision,
            reason=item.reason,
        )
        for item in payload.decisions
    ]
    result = await services.queue.submit_batch(db, current_user.id, payload.badge_id, decisions)
    return ApiResponse(data=BatchReviewResponse.model_validate(result))


@router.get("/my-badge", response_model=ApiResponse[CurrentBadgeResponse])
async def get_my_badge(
    db: SessionDep,
    current_user: CurrentUserDep,
    services: ServicesDep,
) -> ApiResponse[CurrentBadgeResponse]:
    """The caller's offered or active badge with the time left on it."""
    badge = services.invitations.current_badge(db, current_user.id)
    if badge is None:
        return ApiResponse(data=CurrentBadgeResponse())

    remaining = time_remaining(badge, services.invitations.clock())
    return ApiResponse(
        data=CurrentBadgeResponse(
            badge=BadgeResponse.model_validate(badge),
            time_remaining_seconds=int(remaining.total_seconds()) if remaining else None,
        )
    )


@router.post("/pass-badge", response_model=ApiResponse[BadgeResponse])
async def pass_badge(
    payload: PassBadgeRequest,
    db: SessionDep,
    current_user: CurrentUserDep,
    services: ServicesDep,
) -> ApiResponse[BadgeResponse]:
    badge = services.invitations.pass_badge(db, current_user.id, payload.badge_id, payload.reason)
    return ApiResponse(data=BadgeResponse.model_validate(badge))


@router.get("/stats/{scope_type}/{scope_id}", response_model=ApiResponse[ScopeStatsResponse])
async def get_scope_stats(
    scope_type: str,
    scope_id: str,
    db: SessionDep,
    current_user: CurrentUserDep,
    services: ServicesDep,
) -> ApiResponse[ScopeStatsResponse]:
    stats = services.reporting.scope_stats(db, parse_scope(scope_type, scope_id))
    return ApiResponse(data=ScopeStatsResponse.model_validate(stats))


@router.get("/leaderboard", response_model=ApiResponse[list[LeaderboardEntryResponse]])
async def get_leaderboard(
    db: SessionDep,
    current_user: CurrentUserDep,
    services: ServicesDep,
    scope_type: str | None = Query(None),
    scope_id: str | None = Query(None),
    timeframe: Literal["week", "month", "all"] = Query("month"),
    limit: int = Query(20, ge=1, le=100),
) -> ApiResponse[list[LeaderboardEntryResponse]]:
    """Top moderators by completed badges, then total actions."""
    scope = parse_scope(scope_type, scope_id or "") if scope_type else None
    entries = services.reporting.leaderboard(db, scope, timeframe, limit)
    return ApiResponse(data=[LeaderboardEntryResponse.model_validate(e) for e in entries])


@router.get(
    "/badge/{badge_id}/performance",
    response_model=ApiResponse[BadgePerformanceResponse],
)
async def get_badge_performance(
    badge_id: str,
    db: SessionDep,
    current_user: CurrentUserDep,
    services: ServicesDep,
) -> ApiResponse[BadgePerformanceResponse]:
    performance = services.reporting.badge_performance(db, badge_id)
    return ApiResponse(data=BadgePerformanceResponse.model_validate(performance))


@router.get("/profile", response_model=ApiResponse[ModerationProfileResponse])
async def get_profile(
    db: SessionDep,
    current_user: CurrentUserDep,
    services: ServicesDep,
) -> ApiResponse[ModerationProfileResponse]:
    profile = services.reporting.moderation_profile(db, current_user.id)
    return ApiResponse(
        data=ModerationProfileResponse(
            user_id=profile.user_id,
            eligibility=EligibilityResponse.model_validate(profile.eligibility),
            current_badge=(
                BadgeResponse.model_validate(profile.current_badge)
                if profile.current_badge
                else None
            ),
            pending_invitations=[
                InvitationResponse.from_model(item) for item in profile.pending_invitations
            ],
            history=HistorySummaryResponse.model_validate(profile.history),
            milestones=[MilestoneResponse.model_validate(m) for m in profile.milestones],
            next_eligible_date=profile.next_eligible_date,
        )
    )


@router.get("/milestones", response_model=ApiResponse[list[MilestoneResponse]])
async def get_milestones(
    db: SessionDep,
    current_user: CurrentUserDep,
    services: ServicesDep,
) -> ApiResponse[list[MilestoneResponse]]:
    milestones = services.settlement.milestones(db, current_user.id)
    return ApiResponse(data=[MilestoneResponse.model_validate(m) for m in milestones])
