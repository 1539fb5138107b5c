"""In-process domain event bus.

Services never notify listeners directly.  They queue a ``DomainEvent`` on
the session with ``queue_event()``; the unit of work publishes queued events
only after the transaction commits, so a rolled back request emits nothing.

Subscribers register per resource type ("pick_list", "pick_item", "load")
or for everything with "*":

    bus.subscribe("load", notify_yard_screen)

Events:  PickListStarted, PickListCompleted, PickItemUpdated,
         LoadDispatched, LoadRecalled, OrderAddedToLoad, OrderRemovedFromLoad
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Awaitable, Callable

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession

from pickflow.database import on_commit

logger = logging.getLogger(__name__)

Handler = Callable[["DomainEvent"], Awaitable[None]]


@dataclass
class DomainEvent:
    name: str
    resource_type: str
    resource_id: str
    payload: dict = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=datetime.utcnow)

    def to_json(self) -> str:
        data = asdict(self)
        data["occurred_at"] = self.occurred_at.isoformat()
        return json.dumps(data, default=str)


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, resource_type: str, handler: Handler) -> None:
        if handler not in self._handlers[resource_type]:
            self._handlers[resource_type].append(handler)

    def unsubscribe(self, resource_type: str, handler: Handler) -> None:
        if handler in self._handlers.get(resource_type, []):
            self._handlers[resource_type].remove(handler)

    def clear(self) -> None:
        self._handlers.clear()

    async def publish(self, event: DomainEvent) -> None:
        """Deliver to resource-type subscribers, then wildcard subscribers.

        A failing subscriber is logged and does not stop delivery to the rest.
        """
        handlers = self._handlers.get(event.resource_type, []) + self._handlers.get("*", [])
        for handler in handlers:
            try:
                await handler(event)
            except Exception:
                logger.exception(
                    "Event subscriber failed for %s", event.name,
                    extra={"event": event.name, "resource_id": event.resource_id},
                )


bus = EventBus()


def queue_event(
    db: AsyncSession,
    name: str,
    resource_type: str,
    resource_id: str,
    payload: dict | None = None,
) -> DomainEvent:
    """Queue an event for publication once ``db`` commits."""
    event = DomainEvent(
        name=name,
        resource_type=resource_type,
        resource_id=resource_id,
        payload=payload or {},
    )

    async def _publish() -> None:
        await bus.publish(event)

    on_commit(db, _publish)
    return event


# ── Built-in subscribers ────────────────────────────────────

async def log_event(event: DomainEvent) -> None:
    logger.info(
        "Domain event %s on %s %s",
        event.name, event.resource_type, event.resource_id,
        extra={"event": event.name, "payload": event.payload},
    )


async def publish_to_redis(event: DomainEvent) -> None:
    """Mirror the event on Redis pub/sub channel ``pickflow:<resource_type>``."""
    from pickflow.utils.redis import get_redis

    try:
        client = await get_redis()
        await client.publish(f"pickflow:{event.resource_type}", event.to_json())
    except redis.RedisError as e:
        logger.warning("Redis error publishing %s: %s", event.name, e)


def register_default_subscribers(publish_redis: bool = False) -> None:
    bus.subscribe("*", log_event)
    if publish_redis:
        bus.subscribe("*", publish_to_redis)
