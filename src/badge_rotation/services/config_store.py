"""Per-scope rotation tunables, created lazily with defaults from settings."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from badge_rotation.core.errors import InvalidRequestError, NotFoundError
from badge_rotation.core.settings import Settings, settings
from badge_rotation.models import ModerationConfig
from badge_rotation.services.scope import Scope

logger = logging.getLogger(__name__)

# Fields operators may change, with the smallest value each accepts.
TUNABLE_FIELDS: dict[str, float] = {
    "badge_ratio": 1,
    "min_reputation": 0,
    "min_account_age_days": 0,
    "reward_pco": 0,
    "reward_reputation": 0,
    "penalty_reputation": 0,
    "min_actions_required": 1,
}


def default_values(config: Settings = settings) -> dict[str, Any]:
    return {
        "badge_ratio": config.badge_default_ratio,
        "min_reputation": config.min_reputation,
        "min_account_age_days": config.min_account_age_days,
        "reward_pco": config.reward_pco,
        "reward_reputation": config.reward_reputation,
        "penalty_reputation": config.penalty_reputation,
        "min_actions_required": config.min_actions_required,
    }


class ModerationConfigStore:
    """Reads, creates, locks and updates ``moderation_config`` rows."""

    def __init__(self, config: Settings = settings) -> None:
        self._settings = config

    def _query(self, db: Session, scope: Scope) -> Query[ModerationConfig]:
        return db.query(ModerationConfig).filter(
            ModerationConfig.scope_type == scope.scope_type,
            ModerationConfig.scope_id == scope.scope_id,
        )

    def get(self, db: Session, scope: Scope) -> ModerationConfig | None:
        return self._query(db, scope).first()

    def get_or_create(self, db: Session, scope: Scope) -> ModerationConfig:
        """Return the scope's config, inserting the defaults on first touch.

        Two first touches may race; the loser's insert violates the unique
        constraint and it re-reads the winner's row.
        """
        existing = self.get(db, scope)
        if existing is not None:
            return existing

        row = ModerationConfig(
            scope_type=scope.scope_type,
            scope_id=scope.scope_id,
            **default_values(self._settings),
        )
        db.add(row)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            existing = self.get(db, scope)
            if existing is None:
                raise
            return existing

        logger.info("Created default moderation config for %s", scope)
        return row

    def lock(self, db: Session, scope: Scope) -> ModerationConfig:
        """Lock the scope's config row for the rest of the transaction.

        Balance checks for the same scope serialize on this lock. Call
        :meth:`get_or_create` first; a missing row raises :class:`NotFoundError`.
        """
        row = (
            self._query(db, scope)
            .with_for_update()
            .execution_options(populate_existing=True)
            .first()
        )
        if row is None:
            raise NotFoundError(f"No moderation config for {scope}")
        return row

    def update(self, db: Session, scope: Scope, changes: Mapping[str, Any]) -> ModerationConfig:
        """Apply operator changes; unknown fields and out-of-range values are rejected."""
        unknown = sorted(set(changes) - set(TUNABLE_FIELDS))
        if unknown:
            raise InvalidRequestError(f"Unknown config fields: {', '.join(unknown)}")

        for name, value in changes.items():
            if value is None:
                continue
            if not isinstance(value, int | float) or isinstance(value, bool):
                raise InvalidRequestError(f"{name} must be a number")
            if name != "reward_pco" and not isinstance(value, int):
                raise InvalidRequestError(f"{name} must be a whole number")
            if value < TUNABLE_FIELDS[name]:
                raise InvalidRequestError(f"{name} must be at least {TUNABLE_FIELDS[name]:g}")

        self.get_or_create(db, scope)
        row = self.lock(db, scope)
        for name, value in changes.items():
            if value is not None:
                setattr(row, name, value)
        db.commit()
        logger.info("Updated moderation config for %s: %s", scope, sorted(changes))
        return row
