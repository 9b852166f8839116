"""Collaborator contracts the rotation engine reads from and writes to.

Identity, membership and flagged content belong to other products. The
engine only depends on the protocols below; the ``Sql*`` implementations
read the shared tables directly and never commit, so every write they make
joins the caller's unit of work.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from badge_rotation.db.time import utcnow
from badge_rotation.models import (
    Community,
    CommunityMember,
    ContentFlag,
    ContentItem,
    User,
)
from badge_rotation.models.user import USER_MODE_READ_ONLY
from badge_rotation.services.scope import GroupScope, Scope, TopicAreaScope

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class UserSnapshot:
    """Read-only view of the identity fields eligibility depends on."""

    id: str
    mode: str
    reputation: int
    account_age_days: int
    last_active_at: datetime | None
    wallet_address: str | None
    display_name: str | None = None

    @property
    def read_only(self) -> bool:
        return self.mode == USER_MODE_READ_ONLY


@dataclass(frozen=True)
class FlaggedItem:
    """One piece of content with unresolved flags, aggregated across flaggers."""

    content_type: str
    content_id: str
    community_id: str
    flag_count: int
    first_flagged_at: datetime
    reasons: list[str] = field(default_factory=list)
    body: str | None = None
    author_id: str | None = None
    is_hidden: bool = False


class IdentityStore(Protocol):
    def get_user(self, db: Session, user_id: str) -> UserSnapshot | None: ...

    def get_users(self, db: Session, user_ids: Iterable[str]) -> dict[str, UserSnapshot]: ...

    def adjust_reputation(self, db: Session, user_id: str, delta: int) -> None: ...


class MembershipStore(Protocol):
    def active_member_ids(self, db: Session, scope: Scope, since_days: int) -> list[str]: ...

    def is_member(self, db: Session, scope: Scope, user_id: str) -> bool: ...

    def active_scopes(self, db: Session) -> list[Scope]: ...


class ContentStore(Protocol):
    def unresolved_flags(self, db: Session, scope: Scope, limit: int) -> list[FlaggedItem]: ...

    def pending_count(self, db: Session, scope: Scope) -> int: ...

    def unresolved_flag_count(
        self, db: Session, content_type: str, content_id: str, scope: Scope
    ) -> int: ...

    def resolve_flags(
        self, db: Session, content_type: str, content_id: str, resolved_by: str
    ) -> int: ...

    def hide_content(
        self, db: Session, content_type: str, content_id: str, hidden_by: str
    ) -> str | None: ...


class SqlIdentityStore:
    """Identity store over the ``app_user`` table."""

    def __init__(self, clock: Clock = utcnow) -> None:
        self._clock = clock

    def _snapshot(self, user: User) -> UserSnapshot:
        age = self._clock() - user.created_at
        return UserSnapshot(
            id=user.id,
            mode=user.mode,
            reputation=user.reputation,
            account_age_days=max(0, age.days),
            last_active_at=user.last_active_at,
            wallet_address=user.wallet_address,
            display_name=user.display_name,
        )

    def get_user(self, db: Session, user_id: str) -> UserSnapshot | None:
        user = db.get(User, user_id)
        return self._snapshot(user) if user else None

    def get_users(self, db: Session, user_ids: Iterable[str]) -> dict[str, UserSnapshot]:
        ids = list(set(user_ids))
        if not ids:
            return {}
        users = db.query(User).filter(User.id.in_(ids)).all()
        return {user.id: self._snapshot(user) for user in users}

    def adjust_reputation(self, db: Session, user_id: str, delta: int) -> None:
        """Apply ``delta`` in SQL so concurrent adjustments never overwrite each other."""
        if delta == 0:
            return
        db.query(User).filter(User.id == user_id).update(
            {User.reputation: User.reputation + delta},
            synchronize_session="fetch",
        )


class SqlMembershipStore:
    """Membership store over ``community_member`` joined with ``app_user``."""

    def __init__(self, clock: Clock = utcnow) -> None:
        self._clock = clock

    def active_member_ids(self, db: Session, scope: Scope, since_days: int) -> list[str]:
        since = self._clock() - timedelta(days=since_days)
        rows = (
            db.query(CommunityMember.user_id)
            .join(User, User.id == CommunityMember.user_id)
            .filter(
                CommunityMember.community_id.in_(scope.community_ids()),
                User.last_active_at.is_not(None),
                User.last_active_at >= since,
            )
            .distinct()
            .order_by(CommunityMember.user_id)
            .all()
        )
        return [row.user_id for row in rows]

    def is_member(self, db: Session, scope: Scope, user_id: str) -> bool:
        return (
            db.query(CommunityMember.user_id)
            .filter(
                CommunityMember.user_id == user_id,
                CommunityMember.community_id.in_(scope.community_ids()),
            )
            .first()
            is not None
        )

    def active_scopes(self, db: Session) -> list[Scope]:
        """Groups with at least one member, plus topic areas containing such a group."""
        rows = (
            db.query(Community.id, Community.topic_area_id)
            .join(CommunityMember, CommunityMember.community_id == Community.id)
            .filter(Community.is_active.is_(True))
            .distinct()
            .order_by(Community.id)
            .all()
        )
        groups: list[Scope] = [GroupScope(row.id) for row in rows]
        topic_ids = sorted({row.topic_area_id for row in rows if row.topic_area_id})
        return groups + [TopicAreaScope(topic_id) for topic_id in topic_ids]


class SqlContentStore:
    """Content and flag store over ``content_item`` and ``content_flag``."""

    def __init__(self, clock: Clock = utcnow) -> None:
        self._clock = clock

    def _unresolved_in_scope(self, db: Session, scope: Scope) -> Query[ContentFlag]:
        return db.query(ContentFlag).filter(
            ContentFlag.resolved.is_(False),
            ContentFlag.community_id.in_(scope.community_ids()),
        )

    def unresolved_flags(self, db: Session, scope: Scope, limit: int) -> list[FlaggedItem]:
        """Return flagged content ordered by flag count desc, then earliest flag first."""
        flag_count = func.count(ContentFlag.id).label("flag_count")
        first_flagged = func.min(ContentFlag.created_at).label("first_flagged_at")
        grouped = (
            self._unresolved_in_scope(db, scope)
            .with_entities(
                ContentFlag.content_type,
                ContentFlag.content_id,
                func.min(ContentFlag.community_id).label("community_id"),
                flag_count,
                first_flagged,
            )
            .group_by(ContentFlag.content_type, ContentFlag.content_id)
            .order_by(flag_count.desc(), first_flagged.asc(), ContentFlag.content_id)
            .limit(limit)
            .all()
        )
        if not grouped:
            return []

        keys = {(row.content_type, row.content_id) for row in grouped}
        content_ids = [row.content_id for row in grouped]

        reasons: dict[tuple[str, str], list[str]] = defaultdict(list)
        reason_rows = (
            self._unresolved_in_scope(db, scope)
            .with_entities(ContentFlag.content_type, ContentFlag.content_id, ContentFlag.reason)
            .filter(ContentFlag.content_id.in_(content_ids))
            .order_by(ContentFlag.created_at)
            .all()
        )
        for row in reason_rows:
            key = (row.content_type, row.content_id)
            if key in keys and row.reason not in reasons[key]:
                reasons[key].append(row.reason)

        items = {
            (item.content_type, item.id): item
            for item in db.query(ContentItem).filter(ContentItem.id.in_(content_ids)).all()
        }

        result: list[FlaggedItem] = []
        for row in grouped:
            key = (row.content_type, row.content_id)
            content = items.get(key)
            result.append(
                FlaggedItem(
                    content_type=row.content_type,
                    content_id=row.content_id,
                    community_id=row.community_id,
                    flag_count=int(row.flag_count),
                    first_flagged_at=row.first_flagged_at,
                    reasons=reasons.get(key, []),
                    body=content.body if content else None,
                    author_id=content.author_id if content else None,
                    is_hidden=content.is_hidden if content else False,
                )
            )
        return result

    def pending_count(self, db: Session, scope: Scope) -> int:
        return (
            self._unresolved_in_scope(db, scope)
            .with_entities(ContentFlag.content_type, ContentFlag.content_id)
            .distinct()
            .count()
        )

    def unresolved_flag_count(
        self, db: Session, content_type: str, content_id: str, scope: Scope
    ) -> int:
        """Count unresolved flags on one item inside ``scope``, locking the flag rows."""
        rows = (
            self._unresolved_in_scope(db, scope)
            .filter(
                ContentFlag.content_type == content_type,
                ContentFlag.content_id == content_id,
            )
            .with_for_update()
            .all()
        )
        return len(rows)

    def resolve_flags(
        self, db: Session, content_type: str, content_id: str, resolved_by: str
    ) -> int:
        """Resolve every open flag on the item; return how many this call resolved."""
        count = (
            db.query(ContentFlag)
            .filter(
                ContentFlag.content_type == content_type,
                ContentFlag.content_id == content_id,
                ContentFlag.resolved.is_(False),
            )
            .update(
                {
                    ContentFlag.resolved: True,
                    ContentFlag.resolved_at: self._clock(),
                    ContentFlag.resolved_by: resolved_by,
                },
                synchronize_session="fetch",
            )
        )
        return int(count or 0)

    def hide_content(
        self, db: Session, content_type: str, content_id: str, hidden_by: str
    ) -> str | None:
        """Hide the item and return its author id, or ``None`` if it is unknown."""
        item = db.get(ContentItem, (content_type, content_id))
        if item is None:
            return None
        if not item.is_hidden:
            item.is_hidden = True
            item.hidden_at = self._clock()
            item.hidden_by = hidden_by
        return item.author_id
