"""Rotation engine services."""

from .assignment import AssignmentEngine, BackfillQueue
from .events import EventBus, RotationEvent
from .invitations import InvitationManager
from .queue import Decision, ModerationQueueService
from .rotation import RotationServices, build_rotation_services, get_rotation_services
from .settlement import SettlementEngine

__all__ = [
    "AssignmentEngine",
    "BackfillQueue",
    "Decision",
    "EventBus",
    "InvitationManager",
    "ModerationQueueService",
    "RotationEvent",
    "RotationServices",
    "SettlementEngine",
    "build_rotation_services",
    "get_rotation_services",
]
