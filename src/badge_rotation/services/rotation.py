"""Wiring of the rotation components into one injectable bundle."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from badge_rotation.core.settings import Settings, settings
from badge_rotation.db.time import utcnow
from badge_rotation.services.assignment import AssignmentEngine
from badge_rotation.services.config_store import ModerationConfigStore
from badge_rotation.services.events import EventBus
from badge_rotation.services.housekeeping import Housekeeping
from badge_rotation.services.invitations import InvitationManager
from badge_rotation.services.ledger import Ledger, LedgerClient, TokenTransfer, TokenTransferClient
from badge_rotation.services.queue import ModerationQueueService
from badge_rotation.services.randomness import RandomSource, system_random
from badge_rotation.services.reporting import ReportingService
from badge_rotation.services.settlement import SettlementEngine
from badge_rotation.services.stores import (
    ContentStore,
    IdentityStore,
    MembershipStore,
    SqlContentStore,
    SqlIdentityStore,
    SqlMembershipStore,
)


@dataclass
class RotationServices:
    """Every rotation component, sharing one event bus, clock and random source."""

    events: EventBus
    config_store: ModerationConfigStore
    identity: IdentityStore
    membership: MembershipStore
    content: ContentStore
    ledger: Ledger | None
    transfer: TokenTransfer | None
    assignment: AssignmentEngine
    invitations: InvitationManager
    queue: ModerationQueueService
    settlement: SettlementEngine
    reporting: ReportingService
    housekeeping: Housekeeping
    settings: Settings


def build_rotation_services(
    *,
    events: EventBus | None = None,
    rng: RandomSource | None = None,
    clock: Callable[[], datetime] = utcnow,
    ledger: Ledger | None = None,
    transfer: TokenTransfer | None = None,
    identity: IdentityStore | None = None,
    membership: MembershipStore | None = None,
    content: ContentStore | None = None,
    config: Settings = settings,
) -> RotationServices:
    """Assemble the components; unspecified collaborators get the SQL defaults."""
    events = events or EventBus()
    identity = identity or SqlIdentityStore(clock)
    membership = membership or SqlMembershipStore(clock)
    content = content or SqlContentStore(clock)
    config_store = ModerationConfigStore(config)

    assignment = AssignmentEngine(
        config_store=config_store,
        identity=identity,
        membership=membership,
        events=events,
        rng=rng or system_random(),
        clock=clock,
        config=config,
    )
    invitations = InvitationManager(
        engine=assignment,
        config_store=config_store,
        identity=identity,
        events=events,
        ledger=ledger,
        clock=clock,
        config=config,
    )
    queue = ModerationQueueService(
        identity=identity,
        content=content,
        events=events,
        ledger=ledger,
        clock=clock,
        config=config,
    )
    settlement = SettlementEngine(
        config_store=config_store,
        identity=identity,
        events=events,
        ledger=ledger,
        transfer=transfer,
        clock=clock,
        config=config,
    )
    reporting = ReportingService(
        engine=assignment,
        invitations=invitations,
        settlement=settlement,
        content=content,
        clock=clock,
        config=config,
    )
    return RotationServices(
        events=events,
        config_store=config_store,
        identity=identity,
        membership=membership,
        content=content,
        ledger=ledger,
        transfer=transfer,
        assignment=assignment,
        invitations=invitations,
        queue=queue,
        settlement=settlement,
        reporting=reporting,
        housekeeping=Housekeeping(clock=clock, config=config),
        settings=config,
    )


class _RotationServicesSingleton:
    """Process-wide services wired to the HTTP ledger and token-transfer clients."""

    _instance: RotationServices | None = None

    @classmethod
    def get_instance(cls) -> RotationServices:
        if cls._instance is None:
            cls._instance = build_rotation_services(
                ledger=LedgerClient(),
                transfer=TokenTransferClient(),
            )
        return cls._instance


def get_rotation_services() -> RotationServices:
    """Return the singleton rotation services bundle."""
    return _RotationServicesSingleton.get_instance()
