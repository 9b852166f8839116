# tests/conftest.py
from __future__ import annotations

import os
import random
import uuid
from collections.abc import Callable, Generator, Iterator
from datetime import UTC, datetime, timedelta
from itertools import count
from typing import Any

import pytest

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-badge-rotation")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from badge_rotation.core.security import create_access_token
from badge_rotation.core.settings import Settings, settings
from badge_rotation.db.session import Base
from badge_rotation.db.session import get_db as app_get_session
from badge_rotation.main import app as fastapi_app
from badge_rotation.models import (
    BadgeHistory,
    Community,
    CommunityMember,
    ContentFlag,
    ContentItem,
    ModerationBadge,
    TopicArea,
    User,
)
from badge_rotation.models.badge import (
    BADGE_STATUS_ABANDONED,
    BADGE_STATUS_ACTIVE,
    BADGE_STATUS_EXPIRED,
    HISTORY_COMPLETED,
)
from badge_rotation.services.events import ALL_EVENTS, EventBus, RotationEvent
from badge_rotation.services.ledger import LedgerError
from badge_rotation.services.rotation import (
    RotationServices,
    build_rotation_services,
    get_rotation_services,
)

TEST_DB_URL = "sqlite://"
START = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)
OPERATOR_ID = "operator-0001"

_CONTENT_COUNTER = count(1)


class FakeClock:
    """Deterministic clock that only moves when a test advances it."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class FakeLedger:
    """Ledger double recording every event; can be switched to fail.

    ``fail`` raises a :class:`LedgerError`; ``error`` raises whatever it holds.
    """

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.fail = False
        self.error: Exception | None = None

    async def record_event(self, kind: str, payload: Any) -> str | None:
        if self.error is not None:
            raise self.error
        if self.fail:
            raise LedgerError("ledger unavailable")
        self.events.append((kind, dict(payload)))
        return f"ledger-{len(self.events)}"

    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.events]


class FakeTransfer:
    """Token-transfer double returning a fake transaction hash."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.fail = False

    async def transfer(self, from_wallet: str, to_wallet: str, amount: float, memo: str) -> str:
        if self.fail:
            raise LedgerError("transfer rejected")
        self.calls.append(
            {"from": from_wallet, "to": to_wallet, "amount": amount, "memo": memo}
        )
        return f"0xtx{len(self.calls)}"


class EventRecorder:
    """Collects every event published on the bus."""

    def __init__(self, bus: EventBus) -> None:
        self.received: list[RotationEvent] = []
        bus.subscribe(ALL_EVENTS, self.received.append)

    def of_type(self, event_type: str) -> list[RotationEvent]:
        return [event for event in self.received if event.type == event_type]

    def types(self) -> list[str]:
        return [event.type for event in self.received]


class Factory:
    """Builds members, communities and flagged content relative to the fake clock."""

    def __init__(self, db: Session, clock: FakeClock) -> None:
        self.db = db
        self.clock = clock

    def user(
        self,
        user_id: str | None = None,
        *,
        reputation: int = 10,
        age_days: int = 60,
        active_days_ago: float | None = 1,
        mode: str = "standard",
        wallet: str | None = None,
        display_name: str | None = None,
    ) -> User:
        now = self.clock()
        user = User(
            id=user_id or str(uuid.uuid4()),
            display_name=display_name,
            wallet_address=wallet,
            mode=mode,
            reputation=reputation,
            created_at=now - timedelta(days=age_days),
            last_active_at=(
                now - timedelta(days=active_days_ago) if active_days_ago is not None else None
            ),
        )
        self.db.add(user)
        self.db.flush()
        return user

    def topic_area(self, topic_id: str = "topic-science") -> TopicArea:
        area = TopicArea(id=topic_id, name=topic_id.replace("-", " ").title())
        self.db.add(area)
        self.db.flush()
        return area

    def community(
        self,
        community_id: str = "group-alpha",
        *,
        topic_area_id: str | None = None,
        members: list[User] | None = None,
    ) -> Community:
        community = Community(
            id=community_id,
            display_name=community_id.replace("-", " ").title(),
            topic_area_id=topic_area_id,
        )
        self.db.add(community)
        self.db.flush()
        for member in members or []:
            self.join(community, member)
        return community

    def join(self, community: Community, user: User) -> None:
        self.db.add(CommunityMember(community_id=community.id, user_id=user.id))
        self.db.flush()

    def members(self, community: Community, n: int, **kwargs: Any) -> list[User]:
        users = [self.user(**kwargs) for _ in range(n)]
        for user in users:
            self.join(community, user)
        return users

    def flagged(
        self,
        community: Community,
        *,
        flags: int = 1,
        content_id: str | None = None,
        content_type: str = "post",
        author: User | None = None,
        reasons: list[str] | None = None,
        flagged_hours_ago: float = 1,
    ) -> ContentItem:
        item = ContentItem(
            content_type=content_type,
            id=content_id or f"content-{next(_CONTENT_COUNTER):04d}",
            community_id=community.id,
            author_id=author.id if author else None,
            body="flagged body",
        )
        self.db.add(item)
        first = self.clock() - timedelta(hours=flagged_hours_ago)
        reasons = reasons or ["spam"]
        for index in range(flags):
            self.db.add(
                ContentFlag(
                    content_type=content_type,
                    content_id=item.id,
                    community_id=community.id,
                    flagged_by=f"flagger-{index}",
                    reason=reasons[index % len(reasons)],
                    created_at=first + timedelta(minutes=index),
                )
            )
        self.db.flush()
        return item

    def active_badge(
        self,
        holder: User,
        community: Community,
        *,
        scope_type: str = "group",
        scope_id: str | None = None,
        duty_days: int = 5,
        started_days_ago: float = 1,
        actions_taken: int = 0,
        min_actions_required: int = 5,
    ) -> ModerationBadge:
        start = self.clock() - timedelta(days=started_days_ago)
        badge = ModerationBadge(
            scope_type=scope_type,
            scope_id=scope_id or community.id,
            holder_id=holder.id,
            status=BADGE_STATUS_ACTIVE,
            duty_days=duty_days,
            offered_at=start - timedelta(hours=1),
            accepted_at=start,
            start_date=start,
            end_date=start + timedelta(days=duty_days),
            actions_taken=actions_taken,
            min_actions_required=min_actions_required,
        )
        self.db.add(badge)
        self.db.flush()
        return badge

    def finished_badge(
        self,
        holder: User,
        community: Community,
        *,
        scope_type: str = "group",
        scope_id: str | None = None,
        actions_taken: int = 5,
        ended_days_ago: float = 1,
        outcome: str = HISTORY_COMPLETED,
    ) -> ModerationBadge:
        """A settled badge with its history row, ended ``ended_days_ago`` days back."""
        badge = self.active_badge(
            holder,
            community,
            scope_type=scope_type,
            scope_id=scope_id,
            started_days_ago=ended_days_ago + 5,
            actions_taken=actions_taken,
        )
        badge.status = (
            BADGE_STATUS_EXPIRED if outcome == HISTORY_COMPLETED else BADGE_STATUS_ABANDONED
        )
        self.db.add(
            BadgeHistory(
                user_id=holder.id,
                badge_id=badge.id,
                scope_type=badge.scope_type,
                scope_id=badge.scope_id,
                completion_status=outcome,
                completed_at=self.clock() - timedelta(days=ended_days_ago),
            )
        )
        self.db.flush()
        return badge


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture()
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture()
def transfer() -> FakeTransfer:
    return FakeTransfer()


@pytest.fixture()
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture()
def recorder(event_bus: EventBus) -> EventRecorder:
    return EventRecorder(event_bus)


@pytest.fixture()
def test_settings() -> Settings:
    """Runtime settings with the scheduler off and a known operator."""
    return settings.model_copy(
        update={"scheduler_enabled": False, "operator_user_ids": [OPERATOR_ID]}
    )


@pytest.fixture()
def services(
    event_bus: EventBus,
    rng: random.Random,
    clock: FakeClock,
    ledger: FakeLedger,
    transfer: FakeTransfer,
    test_settings: Settings,
) -> RotationServices:
    return build_rotation_services(
        events=event_bus,
        rng=rng,
        clock=clock,
        ledger=ledger,
        transfer=transfer,
        config=test_settings,
    )


@pytest.fixture()
def factory(db_session: Session, clock: FakeClock) -> Factory:
    return Factory(db_session, clock)


@pytest.fixture()
def app(db_session: Session, services: RotationServices) -> Iterator[FastAPI]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    fastapi_app.dependency_overrides[app_get_session] = _get_session_override
    fastapi_app.dependency_overrides[get_rotation_services] = lambda: services
    try:
        yield fastapi_app
    finally:
        fastapi_app.dependency_overrides.pop(app_get_session, None)
        fastapi_app.dependency_overrides.pop(get_rotation_services, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def auth_headers() -> Callable[[str], dict[str, str]]:
    """Return a builder of bearer headers for a user id."""

    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _headers
