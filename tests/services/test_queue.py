"""Tests for the moderation queue and decision submission."""

from __future__ import annotations

from datetime import timedelta

import pytest

from badge_rotation.core.errors import InvalidRequestError, PreconditionFailedError
from badge_rotation.models import ContentFlag, ContentItem, ModerationAction, User
from badge_rotation.services.events import CONTENT_KEPT, CONTENT_REMOVED
from badge_rotation.services.queue import Decision


@pytest.fixture()
def group(factory, db_session):
    factory.topic_area("topic-science")
    return factory.community("group-physics", topic_area_id="topic-science")


@pytest.fixture()
def holder(factory) -> User:
    return factory.user("holder-group")


@pytest.fixture()
def badge(factory, group, holder, db_session):
    badge = factory.active_badge(holder, group)
    db_session.commit()
    return badge


def _decide(badge, item, decision="keep", reason=None) -> Decision:
    return Decision(
        badge_id=badge.id,
        content_type=item.content_type,
        content_id=item.id,
        decision=decision,
        reason=reason,
    )


def test_queue_orders_by_flag_count_then_age(db_session, factory, group, holder, badge, services):
    newer = factory.flagged(group, flags=3, flagged_hours_ago=1)
    older = factory.flagged(group, flags=3, flagged_hours_ago=5)
    single = factory.flagged(group, flags=1, flagged_hours_ago=10)
    db_session.commit()

    view = services.queue.get_queue(db_session, holder.id)

    assert view.badge.id == badge.id
    assert [entry.item.content_id for entry in view.items] == [older.id, newer.id, single.id]
    assert view.items[0].item.flag_count == 3


def test_queue_aggregates_reasons_and_content(db_session, factory, group, holder, badge, services):
    author = factory.user("author-1")
    item = factory.flagged(group, flags=3, author=author, reasons=["spam", "harassment"])
    db_session.commit()

    (entry,) = services.queue.get_queue(db_session, holder.id).items

    assert entry.item.reasons == ["spam", "harassment"]
    assert entry.item.author_id == author.id
    assert entry.item.body == "flagged body"
    assert entry.item.community_id == group.id
    assert entry.previous_actions == []
    assert entry.item.content_id == item.id


def test_topic_area_queue_spans_its_groups(db_session, factory, group, services):
    other = factory.community("group-chemistry", topic_area_id="topic-science")
    outside = factory.community("group-cooking")
    in_group = factory.flagged(group)
    in_other = factory.flagged(other)
    factory.flagged(outside)
    reviewer = factory.user("holder-topic")
    factory.active_badge(reviewer, group, scope_type="topic_area", scope_id="topic-science")
    db_session.commit()

    view = services.queue.get_queue(db_session, reviewer.id)

    assert {entry.item.content_id for entry in view.items} == {in_group.id, in_other.id}


def test_queue_requires_active_badge(db_session, factory, services):
    user = factory.user("no-badge")
    db_session.commit()

    with pytest.raises(PreconditionFailedError):
        services.queue.get_queue(db_session, user.id)


@pytest.mark.asyncio
async def test_remove_hides_content_and_penalizes_author(
    db_session, factory, group, holder, badge, services, recorder, ledger
):
    author = factory.user("author-1", reputation=10)
    item = factory.flagged(group, flags=2, author=author)
    db_session.commit()

    result = await services.queue.submit_decision(
        db_session, holder.id, _decide(badge, item, "remove", "Obvious spam link")
    )

    assert result.decision == "remove"
    assert result.flags_resolved == 2
    assert result.actions_taken == 1
    assert result.ledger_ref == "ledger-1"
    content = db_session.get(ContentItem, ("post", item.id))
    assert content.is_hidden is True
    assert content.hidden_by == holder.id
    assert db_session.get(User, author.id).reputation == 9
    action = db_session.get(ModerationAction, result.action_id)
    assert action.flags_at_review == 2
    assert action.ledger_ref == "ledger-1"
    assert db_session.query(ContentFlag).filter(ContentFlag.resolved.is_(False)).count() == 0

    (event,) = recorder.of_type(CONTENT_REMOVED)
    assert event.data["author_id"] == author.id
    assert ledger.kinds() == ["moderation_action"]


@pytest.mark.asyncio
async def test_keep_resolves_flags_without_hiding(
    db_session, factory, group, holder, badge, services, recorder
):
    item = factory.flagged(group, flags=1)
    db_session.commit()

    result = await services.queue.submit_decision(db_session, holder.id, _decide(badge, item))

    assert result.flags_resolved == 1
    assert db_session.get(ContentItem, ("post", item.id)).is_hidden is False
    assert len(recorder.of_type(CONTENT_KEPT)) == 1
    assert services.queue.get_queue(db_session, holder.id).items == []


@pytest.mark.asyncio
async def test_second_decision_on_resolved_content_fails(
    db_session, factory, group, holder, badge, services
):
    """Two holders in overlapping scopes: the first ruling wins, the second writes nothing."""
    item = factory.flagged(group, flags=2)
    topic_holder = factory.user("holder-topic")
    topic_badge = factory.active_badge(
        topic_holder, group, scope_type="topic_area", scope_id="topic-science"
    )
    db_session.commit()

    await services.queue.submit_decision(db_session, holder.id, _decide(badge, item))
    with pytest.raises(PreconditionFailedError):
        await services.queue.submit_decision(
            db_session, topic_holder.id, _decide(topic_badge, item, "remove")
        )

    assert db_session.query(ModerationAction).count() == 1
    db_session.refresh(topic_badge)
    assert topic_badge.actions_taken == 0


@pytest.mark.asyncio
async def test_reflagged_content_shows_prior_actions(
    db_session, factory, group, holder, badge, services, clock
):
    item = factory.flagged(group, flags=1)
    db_session.commit()
    await services.queue.submit_decision(db_session, holder.id, _decide(badge, item, reason="ok"))

    db_session.add(
        ContentFlag(
            content_type="post",
            content_id=item.id,
            community_id=group.id,
            flagged_by="flagger-late",
            reason="misinformation",
            created_at=clock() + timedelta(minutes=5),
        )
    )
    reviewer = factory.user("holder-topic")
    factory.active_badge(reviewer, group, scope_type="topic_area", scope_id="topic-science")
    db_session.commit()

    (entry,) = services.queue.get_queue(db_session, reviewer.id).items

    assert [prior.badge_id for prior in entry.previous_actions] == [badge.id]
    assert entry.previous_actions[0].decision == "keep"


@pytest.mark.asyncio
async def test_decision_after_window_closes_fails(
    db_session, factory, group, holder, badge, services, clock
):
    item = factory.flagged(group)
    db_session.commit()
    clock.advance(days=5)

    with pytest.raises(PreconditionFailedError, match="window"):
        await services.queue.submit_decision(db_session, holder.id, _decide(badge, item))


def test_queue_closed_once_window_ends(db_session, factory, group, holder, badge, services, clock):
    factory.flagged(group)
    db_session.commit()
    clock.advance(days=4)

    with pytest.raises(PreconditionFailedError, match="window"):
        services.queue.get_queue(db_session, holder.id)
    with pytest.raises(PreconditionFailedError, match="window"):
        services.queue.get_queue(db_session, holder.id, badge.id)


@pytest.mark.asyncio
async def test_decision_survives_unexpected_ledger_error(
    db_session, factory, group, holder, badge, services, ledger, caplog
):
    item = factory.flagged(group, flags=2)
    db_session.commit()
    ledger.error = ConnectionError("ledger socket reset")

    result = await services.queue.submit_decision(db_session, holder.id, _decide(badge, item))

    assert result.ledger_ref is None
    assert result.actions_taken == 1
    action = db_session.get(ModerationAction, result.action_id)
    assert action.ledger_ref is None
    assert "moderation_action" in caplog.text


@pytest.mark.asyncio
async def test_decision_by_non_holder_fails(db_session, factory, group, badge, services):
    item = factory.flagged(group)
    intruder = factory.user("intruder")
    db_session.commit()

    with pytest.raises(PreconditionFailedError):
        await services.queue.submit_decision(db_session, intruder.id, _decide(badge, item))


@pytest.mark.asyncio
async def test_malformed_decision_is_rejected(db_session, factory, group, holder, badge, services):
    item = factory.flagged(group)
    db_session.commit()

    with pytest.raises(InvalidRequestError):
        await services.queue.submit_decision(
            db_session, holder.id, _decide(badge, item, decision="delete")
        )
    assert db_session.query(ModerationAction).count() == 0


@pytest.mark.asyncio
async def test_batch_reports_each_item(db_session, factory, group, holder, badge, services):
    first = factory.flagged(group)
    second = factory.flagged(group)
    db_session.commit()
    decisions = [
        _decide(badge, first),
        Decision(badge.id, "post", "missing-content", "keep"),
        _decide(badge, second, "remove"),
    ]

    result = await services.queue.submit_batch(db_session, holder.id, badge.id, decisions)

    assert result.processed == 3
    assert result.successful == 2
    assert [entry["success"] for entry in result.results] == [True, False, True]
    assert "no unresolved flags" in result.results[1]["error"]
    db_session.refresh(badge)
    assert badge.actions_taken == 2


@pytest.mark.asyncio
async def test_batch_size_is_bounded(db_session, factory, group, holder, badge, services):
    item = factory.flagged(group)
    db_session.commit()

    with pytest.raises(InvalidRequestError):
        await services.queue.submit_batch(db_session, holder.id, badge.id, [])
    with pytest.raises(InvalidRequestError):
        await services.queue.submit_batch(
            db_session, holder.id, badge.id, [_decide(badge, item)] * 21
        )
