"""
Phoenix Event Bus

One-way notification channel between the timers of the main service.
Publishers never wait on subscribers; each delivery runs as its own task.
Recent events are kept in a bounded history served by the status API.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

import structlog

from phoenix.systems.process.models import Event

logger = structlog.get_logger(__name__)

EventHandler = Callable[[Event], Any]


@dataclass
class Subscription:
    """A handler bound to a channel (``health.redundancy_low``, ``worker.*``)."""
    id: str
    channel: str
    handler: EventHandler
    subscriber_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    delivered: int = 0


def channel_matches(channel: str, event_type: str) -> bool:
    """Exact match, with ``*`` standing for exactly one dotted segment."""
    wanted = channel.split(".")
    actual = event_type.split(".")
    if len(wanted) != len(actual):
        return False
    return all(w == "*" or w == a for w, a in zip(wanted, actual))


class EventBus:
    """
    Event channel between Phoenix components.

    A failing handler is logged and counted; it never reaches the publisher.
    """

    def __init__(self, max_history: int = 1000):
        self.max_history = max_history

        self._subscriptions: Dict[str, List[Subscription]] = defaultdict(list)
        self._by_id: Dict[str, Subscription] = {}
        self._history: deque[Event] = deque(maxlen=max_history)

        # In-flight deliveries, kept so they are not garbage collected
        self._handler_tasks: Set[asyncio.Task] = set()

        self._published = 0
        self._delivered = 0
        self._failed = 0

    def publish(self, event: Event) -> list[asyncio.Task]:
        """
        Schedule delivery of ``event`` and return without waiting.

        Must be called from inside the running event loop. The delivery tasks
        are returned for callers that want to await them.
        """
        self._published += 1
        self._history.append(event)

        tasks = []
        for channel, subscriptions in self._subscriptions.items():
            if not channel_matches(channel, event.type):
                continue
            for sub in subscriptions:
                task = asyncio.create_task(self._deliver(sub, event))
                self._handler_tasks.add(task)
                task.add_done_callback(self._handler_tasks.discard)
                tasks.append(task)
        return tasks

    async def _deliver(self, sub: Subscription, event: Event) -> None:
        try:
            result = sub.handler(event)
            if asyncio.iscoroutine(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._failed += 1
            logger.error(
                "Event handler failed",
                event_type=event.type,
                event_id=event.id,
                subscriber_id=sub.subscriber_id,
                error=str(e),
            )
            return

        sub.delivered += 1
        self._delivered += 1

    def subscribe(
        self,
        channel: str,
        handler: EventHandler,
        subscriber_id: Optional[str] = None,
    ) -> str:
        """Register ``handler`` (sync or async) for ``channel``; returns the subscription id."""
        sub = Subscription(
            id=str(uuid.uuid4()),
            channel=channel,
            handler=handler,
            subscriber_id=subscriber_id,
        )
        self._subscriptions[channel].append(sub)
        self._by_id[sub.id] = sub

        logger.debug("Created subscription", channel=channel, subscriber_id=subscriber_id)
        return sub.id

    def unsubscribe_by_id(self, subscription_id: str) -> bool:
        sub = self._by_id.pop(subscription_id, None)
        if sub is None:
            return False

        remaining = [s for s in self._subscriptions[sub.channel] if s.id != subscription_id]
        if remaining:
            self._subscriptions[sub.channel] = remaining
        else:
            del self._subscriptions[sub.channel]
        return True

    async def shutdown(self) -> None:
        """Wait briefly for in-flight deliveries, then cancel the rest."""
        pending = list(self._handler_tasks)
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=1.0)
            for task in still_running:
                task.cancel()

        logger.info(
            "Event Bus shutdown complete",
            published=self._published,
            delivered=self._delivered,
        )

    def get_history(self, channel: Optional[str] = None, limit: int = 100) -> list[Event]:
        """Most recent events, oldest first, optionally restricted to ``channel``."""
        events = [
            e for e in self._history
            if channel is None or channel_matches(channel, e.type)
        ]
        return events[-limit:] if limit > 0 else []

    def get_stats(self) -> dict[str, Any]:
        return {
            "events_published": self._published,
            "events_delivered": self._delivered,
            "events_failed": self._failed,
            "active_subscriptions": len(self._by_id),
            "history_size": len(self._history),
        }
