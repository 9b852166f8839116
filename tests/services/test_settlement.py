"""Tests for expiry settlement, reward transfers and milestones."""

from __future__ import annotations

import logging
from datetime import timedelta

import pytest

from badge_rotation.models import BadgeHistory, ModerationBadge, User
from badge_rotation.models.badge import (
    BADGE_STATUS_ABANDONED,
    BADGE_STATUS_ACTIVE,
    BADGE_STATUS_EXPIRED,
    HISTORY_ABANDONED,
    HISTORY_COMPLETED,
)
from badge_rotation.services.events import BADGE_ABANDONED, BADGE_EXPIRED, REWARD_DISTRIBUTED
from badge_rotation.services.scope import GroupScope


@pytest.fixture()
def group(factory):
    return factory.community("group-alpha")


def _history(db_session, badge_id):
    return db_session.query(BadgeHistory).filter(BadgeHistory.badge_id == badge_id).one()


@pytest.mark.asyncio
async def test_quota_met_completes_and_rewards(
    db_session, factory, group, services, recorder, transfer, ledger, clock
):
    holder = factory.user("holder-1", reputation=10, wallet="wallet-holder-1")
    badge = factory.active_badge(holder, group, started_days_ago=6, actions_taken=5)
    db_session.commit()

    result = await services.settlement.settle_expired(db_session)
    await services.settlement.wait_for_transfers()

    assert result.completed == [badge.id]
    assert result.abandoned == []
    db_session.refresh(badge)
    assert badge.status == BADGE_STATUS_EXPIRED
    assert _history(db_session, badge.id).completion_status == HISTORY_COMPLETED
    assert db_session.get(User, holder.id).reputation == 15

    assert len(transfer.calls) == 1
    assert transfer.calls[0]["to"] == "wallet-holder-1"
    assert transfer.calls[0]["amount"] == 0.5
    (expired,) = recorder.of_type(BADGE_EXPIRED)
    assert expired.data["reward_reputation"] == 5
    (reward,) = recorder.of_type(REWARD_DISTRIBUTED)
    assert reward.data["tx_ref"] == "0xtx1"
    assert reward.data["token"] == "PCO"
    assert ledger.kinds() == ["badge_reward_distributed"]
    assert services.settlement.transfers_in_flight == 0


@pytest.mark.asyncio
async def test_quota_missed_abandons_with_penalty(
    db_session, factory, group, services, recorder, transfer, ledger
):
    holder = factory.user("holder-1", reputation=10, wallet="wallet-holder-1")
    badge = factory.active_badge(holder, group, started_days_ago=6, actions_taken=2)
    db_session.commit()

    result = await services.settlement.settle_expired(db_session)
    await services.settlement.wait_for_transfers()

    assert result.abandoned == [badge.id]
    db_session.refresh(badge)
    assert badge.status == BADGE_STATUS_ABANDONED
    assert badge.ledger_ref == "ledger-1"
    assert _history(db_session, badge.id).completion_status == HISTORY_ABANDONED
    assert db_session.get(User, holder.id).reputation == 7
    assert transfer.calls == []
    (event,) = recorder.of_type(BADGE_ABANDONED)
    assert event.data["reputation_penalty"] == 3
    assert ledger.kinds() == ["badge_abandoned"]


@pytest.mark.asyncio
async def test_unexpected_ledger_error_keeps_badge_abandoned(
    db_session, factory, group, services, recorder, ledger, caplog
):
    holder = factory.user("holder-1", reputation=10)
    badge = factory.active_badge(holder, group, started_days_ago=6, actions_taken=2)
    db_session.commit()
    ledger.error = ConnectionError("ledger socket reset")

    with caplog.at_level(logging.ERROR, logger="badge_rotation.services.ledger"):
        result = await services.settlement.settle_expired(db_session)

    assert result.abandoned == [badge.id]
    assert result.failed == []
    db_session.refresh(badge)
    assert badge.status == BADGE_STATUS_ABANDONED
    assert badge.ledger_ref is None
    assert len(recorder.of_type(BADGE_ABANDONED)) == 1
    assert "badge_abandoned" in caplog.text


@pytest.mark.asyncio
async def test_scope_config_overrides_rewards(db_session, factory, group, services):
    holder = factory.user("holder-1", reputation=10)
    factory.active_badge(holder, group, started_days_ago=6, actions_taken=5)
    db_session.commit()
    services.config_store.update(db_session, GroupScope(group.id), {"reward_reputation": 12})

    await services.settlement.settle_expired(db_session)

    assert db_session.get(User, holder.id).reputation == 22


@pytest.mark.asyncio
async def test_running_badges_are_left_alone(db_session, factory, group, services):
    holder = factory.user("holder-1")
    badge = factory.active_badge(holder, group, started_days_ago=1)
    db_session.commit()

    result = await services.settlement.settle_expired(db_session)

    assert result.completed == result.abandoned == result.failed == []
    db_session.refresh(badge)
    assert badge.status == BADGE_STATUS_ACTIVE


@pytest.mark.asyncio
async def test_badge_is_settled_once(db_session, factory, group, services):
    holder = factory.user("holder-1", reputation=10)
    factory.active_badge(holder, group, started_days_ago=6, actions_taken=1)
    db_session.commit()

    first = await services.settlement.settle_expired(db_session)
    second = await services.settlement.settle_expired(db_session)

    assert len(first.abandoned) == 1
    assert second.abandoned == []
    assert db_session.get(User, holder.id).reputation == 7


@pytest.mark.asyncio
async def test_one_failing_badge_does_not_block_others(
    db_session, factory, group, services, monkeypatch
):
    broken = factory.user("holder-broken")
    fine = factory.user("holder-fine", reputation=10)
    broken_badge = factory.active_badge(broken, group, started_days_ago=7, actions_taken=5)
    fine_badge = factory.active_badge(fine, group, started_days_ago=6, actions_taken=5)
    db_session.commit()

    original = services.identity.adjust_reputation

    def adjust(db, user_id, delta):
        if user_id == broken.id:
            raise RuntimeError("identity store unavailable")
        return original(db, user_id, delta)

    monkeypatch.setattr(services.identity, "adjust_reputation", adjust)

    result = await services.settlement.settle_expired(db_session)

    assert result.failed == [broken_badge.id]
    assert result.completed == [fine_badge.id]
    db_session.refresh(broken_badge)
    assert broken_badge.status == BADGE_STATUS_ACTIVE
    assert db_session.get(User, fine.id).reputation == 15


@pytest.mark.asyncio
async def test_failed_transfer_keeps_badge_settled(
    db_session, factory, group, services, recorder, transfer, caplog
):
    holder = factory.user("holder-1", wallet="wallet-1")
    badge = factory.active_badge(holder, group, started_days_ago=6, actions_taken=6)
    db_session.commit()
    transfer.fail = True

    with caplog.at_level(logging.ERROR, logger="badge_rotation.services.settlement"):
        await services.settlement.settle_expired(db_session)
        await services.settlement.wait_for_transfers()

    db_session.refresh(badge)
    assert badge.status == BADGE_STATUS_EXPIRED
    assert recorder.of_type(REWARD_DISTRIBUTED) == []
    assert "Reward transfer" in caplog.text


@pytest.mark.asyncio
async def test_missing_wallet_skips_transfer(
    db_session, factory, group, services, transfer, caplog
):
    holder = factory.user("holder-1", wallet=None)
    factory.active_badge(holder, group, started_days_ago=6, actions_taken=5)
    db_session.commit()

    with caplog.at_level(logging.WARNING, logger="badge_rotation.services.settlement"):
        result = await services.settlement.settle_expired(db_session)

    assert len(result.completed) == 1
    assert transfer.calls == []
    assert "No wallet on file" in caplog.text


def test_milestones_track_progress(db_session, factory, group, services, clock):
    factory.topic_area("topic-science")
    holder = factory.user("holder-1")
    topic_badge = factory.active_badge(
        holder, group, scope_type="topic_area", scope_id="topic-science", actions_taken=7
    )
    topic_badge.status = BADGE_STATUS_EXPIRED
    db_session.add(
        BadgeHistory(
            user_id=holder.id,
            badge_id=topic_badge.id,
            scope_type="topic_area",
            scope_id="topic-science",
            completion_status=HISTORY_COMPLETED,
            completed_at=clock() - timedelta(days=1),
        )
    )
    factory.active_badge(holder, group, actions_taken=3)
    db_session.commit()

    milestones = {m.key: m for m in services.settlement.milestones(db_session, holder.id)}

    assert milestones["veteran_moderator"].progress == 1
    assert milestones["veteran_moderator"].achieved is False
    assert milestones["centurion"].progress == 10
    assert milestones["topic_guardian"].achieved is True
    assert milestones["topic_guardian"].reward_reputation == 10
    assert db_session.query(ModerationBadge).count() == 2
