"""In-process publish/subscribe bus for rotation lifecycle events.

Delivery contract:

- Events are published only after the transaction that produced them has
  committed; a rolled-back transition never emits.
- Publication is fire-and-forget. The publisher never waits on a subscriber
  and subscriber exceptions are logged, not propagated.
- Delivery is at-least-once from the consumer's point of view: a retried
  sweep may publish the same logical transition again, so every event
  carries a unique ``event_id`` and the badge id for de-duplication.

Coroutine subscribers are scheduled on the running event loop. Publishers on
worker threads hand them to the loop registered with :meth:`EventBus.bind_loop`;
with neither available they are skipped with a warning.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from badge_rotation.db.time import utcnow

logger = logging.getLogger(__name__)

BADGE_OFFERED = "badge:offered"
BADGE_ACCEPTED = "badge:accepted"
BADGE_DECLINED = "badge:declined"
BADGE_TIMEOUT = "badge:timeout"
BADGE_ABANDONED = "badge:abandoned"
BADGE_PASSED = "badge:passed"
BADGE_EXPIRED = "badge:expired"
CONTENT_REMOVED = "moderation:content_removed"
CONTENT_KEPT = "moderation:content_kept"
REWARD_DISTRIBUTED = "moderation:reward_distributed"

ALL_EVENTS = "*"

EventHandler = Callable[["RotationEvent"], Any]


@dataclass(frozen=True)
class RotationEvent:
    """A single lifecycle notification."""

    type: str
    data: dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))


class EventBus:
    """Explicit message-passing interface injected into every component."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._tasks: set[asyncio.Task[Any]] = set()
        self._loop: asyncio.AbstractEventLoop | None = None

    def bind_loop(self, loop: asyncio.AbstractEventLoop | None) -> None:
        """Register the loop that runs coroutine subscribers for thread publishers."""
        self._loop = loop

    def subscribe(self, event_type: str, handler: EventHandler) -> Callable[[], None]:
        """Register ``handler`` for ``event_type`` (or ``"*"``); return an unsubscribe callable."""
        self._handlers[event_type].append(handler)

        def _unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def publish(self, event_type: str, data: dict[str, Any]) -> RotationEvent:
        """Deliver an event to every matching subscriber and return it."""
        event = RotationEvent(type=event_type, data=dict(data))
        handlers = [*self._handlers.get(event_type, []), *self._handlers.get(ALL_EVENTS, [])]
        logger.debug("Publishing %s to %d subscriber(s)", event_type, len(handlers))

        for handler in handlers:
            try:
                result = handler(event)
            except Exception:
                logger.exception("Subscriber %r failed on %s", handler, event_type)
                continue
            if inspect.isawaitable(result):
                self._schedule(result, event_type)
        return event

    def _schedule(self, awaitable: Any, event_type: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            bound = self._loop
            if bound is not None and bound.is_running() and inspect.iscoroutine(awaitable):
                asyncio.run_coroutine_threadsafe(awaitable, bound)
                return
            logger.warning("No running loop; dropping async subscriber for %s", event_type)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(awaitable)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async subscriber failed", exc_info=task.exception())
