"""SQLAlchemy models for the badge rotation service."""

from .badge import BadgeHistory, BadgeInvitation, ModerationBadge
from .community import Community, CommunityMember, TopicArea
from .content import ContentFlag, ContentItem
from .moderation import (
    ModerationAction,
    ModerationActionArchive,
    ModerationConfig,
    ModerationDailyStats,
)
from .user import User

__all__ = [
    "BadgeHistory", "BadgeInvitation", "ModerationBadge",
    "Community", "CommunityMember", "TopicArea",
    "ContentFlag", "ContentItem",
    "ModerationAction", "ModerationActionArchive", "ModerationConfig", "ModerationDailyStats",
    "User",
]
