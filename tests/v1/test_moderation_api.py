"""Tests for the badge rotation HTTP endpoints."""

from __future__ import annotations

import pytest
from fastapi import status

from badge_rotation.models import ModerationBadge, User
from badge_rotation.models.badge import (
    BADGE_STATUS_ABANDONED,
    BADGE_STATUS_ACTIVE,
    BADGE_STATUS_OFFERED,
)
from badge_rotation.services.scope import GroupScope


@pytest.fixture()
def group(factory):
    return factory.community("group-alpha")


@pytest.fixture()
def offered(db_session, factory, group, services) -> ModerationBadge:
    factory.members(group, 2)
    db_session.commit()
    (badge_id,) = services.assignment.check_and_assign(db_session, GroupScope("group-alpha"))
    return db_session.get(ModerationBadge, badge_id)


@pytest.fixture()
def holder(factory) -> User:
    return factory.user("holder-1")


@pytest.fixture()
def badge(db_session, factory, group, holder) -> ModerationBadge:
    badge = factory.active_badge(holder, group, actions_taken=1)
    db_session.commit()
    return badge


def test_endpoints_require_authentication(client) -> None:
    response = client.get("/api/v1/moderation/eligibility")
    assert response.status_code in {status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN}
    assert response.json()["success"] is False

    response = client.get(
        "/api/v1/moderation/eligibility", headers={"Authorization": "Bearer not-a-token"}
    )
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json() == {
        "success": False,
        "data": None,
        "error": "Could not validate credentials",
    }


def test_unknown_user_is_rejected(client, auth_headers) -> None:
    response = client.get("/api/v1/moderation/my-badge", headers=auth_headers("ghost"))

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["error"] == "User not found"


def test_eligibility(client, db_session, factory, group, auth_headers) -> None:
    member = factory.user("member-1")
    factory.join(group, member)
    newcomer = factory.user("newcomer", age_days=2, reputation=1)
    db_session.commit()

    response = client.get(
        "/api/v1/moderation/eligibility",
        params={"scope_type": "group", "scope_id": "group-alpha"},
        headers=auth_headers(member.id),
    )
    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["success"] is True
    assert body["data"]["eligible"] is True
    assert body["data"]["reasons"] == []

    response = client.get("/api/v1/moderation/eligibility", headers=auth_headers(newcomer.id))
    assert response.json()["data"]["eligible"] is False
    assert response.json()["data"]["reasons"]


def test_eligibility_rejects_unknown_scope_type(client, factory, db_session, auth_headers):
    member = factory.user("member-1")
    db_session.commit()

    response = client.get(
        "/api/v1/moderation/eligibility",
        params={"scope_type": "channel", "scope_id": "x"},
        headers=auth_headers(member.id),
    )

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json()["success"] is False
    assert "scope type" in response.json()["error"]


def test_invitation_accept_flow(client, db_session, offered, auth_headers) -> None:
    headers = auth_headers(offered.holder_id)

    response = client.get("/api/v1/moderation/invitations", headers=headers)
    assert response.status_code == status.HTTP_200_OK
    (invitation,) = response.json()["data"]
    assert invitation["badge_id"] == offered.id
    assert invitation["scope_id"] == "group-alpha"

    response = client.get("/api/v1/moderation/my-badge", headers=headers)
    assert response.json()["data"]["badge"]["status"] == BADGE_STATUS_OFFERED
    assert response.json()["data"]["time_remaining_seconds"] == 12 * 3600

    response = client.post(f"/api/v1/moderation/accept/{offered.id}", headers=headers)
    assert response.status_code == status.HTTP_200_OK
    data = response.json()["data"]
    assert data["status"] == BADGE_STATUS_ACTIVE
    assert data["start_date"] is not None
    assert data["ledger_ref"] == "ledger-1"

    response = client.post(f"/api/v1/moderation/accept/{offered.id}", headers=headers)
    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["success"] is False


def test_accept_by_another_user_is_rejected(client, db_session, factory, offered, auth_headers):
    stranger = factory.user("stranger")
    db_session.commit()

    response = client.post(
        f"/api/v1/moderation/accept/{offered.id}", headers=auth_headers(stranger.id)
    )

    assert response.status_code == status.HTTP_409_CONFLICT


def test_decline_offers_the_next_member(client, db_session, offered, auth_headers) -> None:
    response = client.post(
        f"/api/v1/moderation/decline/{offered.id}", headers=auth_headers(offered.holder_id)
    )

    assert response.status_code == status.HTTP_200_OK
    db_session.expire_all()
    open_offers = (
        db_session.query(ModerationBadge)
        .filter(ModerationBadge.status == BADGE_STATUS_OFFERED)
        .all()
    )
    assert len(open_offers) == 1
    assert open_offers[0].holder_id != offered.holder_id


@pytest.mark.parametrize(
    ("badge_id", "expected"),
    [
        ("not-a-uuid", status.HTTP_422_UNPROCESSABLE_ENTITY),
        ("00000000-0000-4000-8000-000000000000", status.HTTP_404_NOT_FOUND),
    ],
)
def test_accept_bad_badge_ids(client, db_session, holder, auth_headers, badge_id, expected):
    db_session.commit()

    response = client.post(f"/api/v1/moderation/accept/{badge_id}", headers=auth_headers(holder.id))

    assert response.status_code == expected
    assert response.json()["success"] is False


def test_queue_and_review(client, db_session, factory, group, holder, badge, auth_headers):
    author = factory.user("author-1", reputation=10)
    item = factory.flagged(group, flags=2, author=author, reasons=["spam", "abuse"])
    db_session.commit()
    headers = auth_headers(holder.id)

    response = client.get("/api/v1/moderation/queue", headers=headers)
    assert response.status_code == status.HTTP_200_OK
    queue = response.json()["data"]
    assert queue["badge_id"] == badge.id
    (entry,) = queue["items"]
    assert entry["content_id"] == item.id
    assert entry["flag_count"] == 2
    assert sorted(entry["reasons"]) == ["abuse", "spam"]
    assert entry["previous_actions"] == []

    response = client.post(
        "/api/v1/moderation/review",
        json={
            "badge_id": badge.id,
            "content_type": "post",
            "content_id": item.id,
            "decision": "remove",
            "reason": "Spam link",
        },
        headers=headers,
    )
    assert response.status_code == status.HTTP_200_OK
    result = response.json()["data"]
    assert result["decision"] == "remove"
    assert result["flags_resolved"] == 2
    assert result["actions_taken"] == 2

    response = client.get("/api/v1/moderation/queue", headers=headers)
    assert response.json()["data"]["items"] == []
    db_session.expire_all()
    assert db_session.get(User, author.id).reputation == 9


def test_review_validation_errors_use_envelope(client, db_session, holder, badge, auth_headers):
    response = client.post(
        "/api/v1/moderation/review",
        json={"badge_id": badge.id, "content_type": "post"},
        headers=auth_headers(holder.id),
    )

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    body = response.json()
    assert body["success"] is False
    assert body["data"] is None
    assert "content_id" in body["error"]


def test_queue_without_badge(client, db_session, factory, auth_headers) -> None:
    member = factory.user("member-1")
    db_session.commit()

    response = client.get("/api/v1/moderation/queue", headers=auth_headers(member.id))

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["error"] == "You do not hold an active badge"


def test_batch_review(client, db_session, factory, group, holder, badge, auth_headers):
    first = factory.flagged(group, flags=1)
    second = factory.flagged(group, flags=3)
    db_session.commit()

    response = client.post(
        "/api/v1/moderation/batch-review",
        json={
            "badge_id": badge.id,
            "decisions": [
                {"content_type": "post", "content_id": first.id, "decision": "keep"},
                {"content_type": "post", "content_id": second.id, "decision": "remove"},
                {"content_type": "post", "content_id": "content-missing", "decision": "keep"},
            ],
        },
        headers=auth_headers(holder.id),
    )

    assert response.status_code == status.HTTP_200_OK
    data = response.json()["data"]
    assert data["processed"] == 3
    assert data["successful"] == 2
    assert [r["success"] for r in data["results"]] == [True, True, False]
    assert data["results"][2]["error"]


def test_pass_badge(client, db_session, holder, badge, auth_headers) -> None:
    response = client.post(
        "/api/v1/moderation/pass-badge",
        json={"badge_id": badge.id, "reason": "Travelling without internet access this week"},
        headers=auth_headers(holder.id),
    )

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["data"]["status"] == BADGE_STATUS_ABANDONED
    assert response.json()["data"]["pass_reason"].startswith("Travelling")

    response = client.get("/api/v1/moderation/my-badge", headers=auth_headers(holder.id))
    assert response.json()["data"] == {"badge": None, "time_remaining_seconds": None}


def test_pass_badge_needs_a_real_reason(client, db_session, holder, badge, auth_headers):
    response = client.post(
        "/api/v1/moderation/pass-badge",
        json={"badge_id": badge.id, "reason": "busy"},
        headers=auth_headers(holder.id),
    )

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_scope_stats(client, db_session, factory, group, holder, badge, auth_headers) -> None:
    factory.flagged(group, flags=1)
    db_session.commit()

    response = client.get(
        "/api/v1/moderation/stats/group/group-alpha", headers=auth_headers(holder.id)
    )

    assert response.status_code == status.HTTP_200_OK
    data = response.json()["data"]
    assert data["scope_type"] == "group"
    assert data["active_badges"] == 1
    assert data["pending_items"] == 1


def test_leaderboard(client, db_session, factory, group, auth_headers) -> None:
    veteran = factory.user("veteran", display_name="Veteran")
    factory.finished_badge(veteran, group, actions_taken=7)
    db_session.commit()
    headers = auth_headers(veteran.id)

    response = client.get(
        "/api/v1/moderation/leaderboard",
        params={"scope_type": "group", "scope_id": "group-alpha", "timeframe": "week"},
        headers=headers,
    )
    assert response.status_code == status.HTTP_200_OK
    (entry,) = response.json()["data"]
    assert entry["rank"] == 1
    assert entry["display_name"] == "Veteran"
    assert entry["total_actions"] == 7

    response = client.get(
        "/api/v1/moderation/leaderboard", params={"timeframe": "year"}, headers=headers
    )
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    response = client.get("/api/v1/moderation/leaderboard", params={"limit": 101}, headers=headers)
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_badge_performance(client, db_session, holder, badge, auth_headers) -> None:
    response = client.get(
        f"/api/v1/moderation/badge/{badge.id}/performance", headers=auth_headers(holder.id)
    )

    assert response.status_code == status.HTTP_200_OK
    data = response.json()["data"]
    assert data["badge_id"] == badge.id
    assert data["performance_status"] == "in_progress"


def test_profile_and_milestones(client, db_session, factory, group, auth_headers) -> None:
    veteran = factory.user("veteran")
    factory.finished_badge(veteran, group, actions_taken=6, ended_days_ago=3)
    db_session.commit()
    headers = auth_headers(veteran.id)

    response = client.get("/api/v1/moderation/profile", headers=headers)
    assert response.status_code == status.HTTP_200_OK
    profile = response.json()["data"]
    assert profile["user_id"] == "veteran"
    assert profile["history"]["completed_badges"] == 1
    assert profile["eligibility"]["eligible"] is False
    assert profile["next_eligible_date"] is not None

    response = client.get("/api/v1/moderation/milestones", headers=headers)
    milestones = {m["key"]: m for m in response.json()["data"]}
    assert milestones["centurion"]["progress"] == 6
    assert milestones["centurion"]["target"] == 100
    assert milestones["veteran_moderator"]["achieved"] is False
