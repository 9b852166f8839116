"""Retention jobs for invitations and moderation actions.

Both jobs are non-fatal: a failure is logged and rolled back, and rotation
carries on with the tables as they were.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from badge_rotation.core.settings import Settings, settings
from badge_rotation.db.time import utcnow
from badge_rotation.models import BadgeInvitation, ModerationAction, ModerationActionArchive
from badge_rotation.models.badge import INVITATION_DECLINED, INVITATION_TIMEOUT

logger = logging.getLogger(__name__)

ARCHIVE_BATCH_SIZE = 500


class Housekeeping:
    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = utcnow,
        config: Settings = settings,
    ) -> None:
        self.clock = clock
        self.settings = config

    def prune_invitations(self, db: Session) -> int:
        """Delete declined or timed-out invitations answered before the retention horizon."""
        cutoff = self.clock() - timedelta(days=self.settings.invitation_retention_days)
        try:
            removed = (
                db.query(BadgeInvitation)
                .filter(
                    BadgeInvitation.response.in_((INVITATION_DECLINED, INVITATION_TIMEOUT)),
                    BadgeInvitation.responded_at < cutoff,
                )
                .delete(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Invitation pruning failed")
            return 0

        if removed:
            logger.info("Pruned %d old invitation(s)", removed)
        return int(removed or 0)

    def archive_actions(self, db: Session) -> int:
        """Move actions older than the archive horizon into ``mod_action_archive``."""
        cutoff = self.clock() - timedelta(days=self.settings.archive_after_days)
        archived = 0
        while True:
            try:
                batch = (
                    db.query(ModerationAction)
                    .filter(ModerationAction.created_at < cutoff)
                    .order_by(ModerationAction.id)
                    .limit(ARCHIVE_BATCH_SIZE)
                    .all()
                )
                if not batch:
                    break
                now = self.clock()
                for action in batch:
                    db.add(
                        ModerationActionArchive(
                            id=action.id,
                            badge_id=action.badge_id,
                            content_type=action.content_type,
                            content_id=action.content_id,
                            decision=action.decision,
                            reason=action.reason,
                            flags_at_review=action.flags_at_review,
                            ledger_ref=action.ledger_ref,
                            created_at=action.created_at,
                            archived_at=now,
                        )
                    )
                    db.delete(action)
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Action archival failed after %d row(s)", archived)
                break
            archived += len(batch)

        if archived:
            logger.info("Archived %d moderation action(s)", archived)
        return archived
