"""Scopes a badge can govern.

A scope is either a single group or a topic area spanning several groups.
Both kinds answer the same question, "which groups do I cover?", so the
member set and the flagged-content set are resolved through one capability
instead of per-kind query strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

from sqlalchemy import Select, select

from badge_rotation.core.errors import InvalidRequestError
from badge_rotation.models import Community

MAX_SCOPE_ID_LENGTH = 36


class ScopeKind(str, Enum):
    """Discriminator stored in ``scope_type`` columns."""

    GROUP = "group"
    TOPIC_AREA = "topic_area"


@dataclass(frozen=True)
class Scope:
    """Base of the scope tagged union; use :func:`parse_scope` to build one."""

    kind: ClassVar[ScopeKind]
    scope_id: str

    @property
    def scope_type(self) -> str:
        return self.kind.value

    @property
    def key(self) -> tuple[str, str]:
        return self.kind.value, self.scope_id

    def community_ids(self) -> Select[tuple[str]]:
        """Return a SELECT of the community ids this scope covers."""
        raise NotImplementedError

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.scope_id}"


@dataclass(frozen=True)
class GroupScope(Scope):
    """A badge governing exactly one community."""

    kind: ClassVar[ScopeKind] = ScopeKind.GROUP

    def community_ids(self) -> Select[tuple[str]]:
        return select(Community.id).where(Community.id == self.scope_id)


@dataclass(frozen=True)
class TopicAreaScope(Scope):
    """A badge governing every community in a topic area."""

    kind: ClassVar[ScopeKind] = ScopeKind.TOPIC_AREA

    def community_ids(self) -> Select[tuple[str]]:
        return select(Community.id).where(Community.topic_area_id == self.scope_id)


_SCOPE_CLASSES: dict[ScopeKind, type[Scope]] = {
    ScopeKind.GROUP: GroupScope,
    ScopeKind.TOPIC_AREA: TopicAreaScope,
}


def parse_scope(scope_type: str, scope_id: str) -> Scope:
    """Build a scope from its stored representation.

    Raises:
        InvalidRequestError: If the kind is unknown or the id is empty or too long.
    """
    try:
        kind = ScopeKind(scope_type)
    except ValueError as err:
        raise InvalidRequestError(f"Unknown scope type: {scope_type!r}") from err

    scope_id = (scope_id or "").strip()
    if not scope_id or len(scope_id) > MAX_SCOPE_ID_LENGTH:
        raise InvalidRequestError("Scope id must be 1-36 characters")
    return _SCOPE_CLASSES[kind](scope_id)
