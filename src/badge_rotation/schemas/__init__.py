"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .badge import (
    BadgeResponse,
    CurrentBadgeResponse,
    EligibilityResponse,
    InvitationResponse,
    MilestoneResponse,
    ModerationProfileResponse,
    PassBadgeRequest,
)
from .common import ApiResponse
from .config import ModerationConfigResponse, ModerationConfigUpdate
from .moderation import (
    BadgePerformanceResponse,
    BatchReviewRequest,
    BatchReviewResponse,
    DecisionResponse,
    LeaderboardEntryResponse,
    QueueResponse,
    ReviewRequest,
    ScopeStatsResponse,
)

__all__ = [
    "ApiResponse",
    "BadgeResponse", "CurrentBadgeResponse", "EligibilityResponse", "InvitationResponse",
    "MilestoneResponse", "ModerationProfileResponse", "PassBadgeRequest",
    "ModerationConfigResponse", "ModerationConfigUpdate",
    "BadgePerformanceResponse", "BatchReviewRequest", "BatchReviewResponse",
    "DecisionResponse", "LeaderboardEntryResponse", "QueueResponse", "ReviewRequest",
    "ScopeStatsResponse",
]
