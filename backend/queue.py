"""
Queue abstraction for event dispatching.

Supports an in-memory fallback for tests/local runs and a Redis-backed
implementation for production. Events are serialized as JSON.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from typing import Optional, Protocol

import redis
from redis import exceptions as redis_exceptions


@dataclass
class Event:
    """A named event with a JSON payload, consumed by registered job functions."""

    name: str
    data: dict = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    attempt: int = 0
    # Set on retries so only the failed function runs again.
    function_id: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str | bytes) -> "Event":
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        payload = json.loads(raw)
        return cls(
            name=payload["name"],
            data=payload.get("data") or {},
            id=payload.get("id") or uuid.uuid4().hex,
            attempt=int(payload.get("attempt") or 0),
            function_id=payload.get("function_id"),
        )


class JobQueue(Protocol):
    """Minimal queue interface for dispatching events to workers."""

    def enqueue(self, event: Event) -> None:
        ...

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[Event]:
        ...


@dataclass
class InMemoryJobQueue:
    """Simple FIFO queue for testing/dev."""

    items: list[Event] = field(default_factory=list)

    def enqueue(self, event: Event) -> None:
        self.items.append(event)

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[Event]:
        if not self.items:
            return None
        return self.items.pop(0)


@dataclass
class RedisJobQueue:
    """Redis-backed queue using list push/pop operations."""

    url: str
    queue_key: str = "listwell:events"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def enqueue(self, event: Event) -> None:
        self.client.rpush(self.queue_key, event.to_json())

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[Event]:
        try:
            if block:
                result = self.client.blpop(self.queue_key, timeout=timeout or 0)
                if result is None:
                    return None
                _, raw = result
            else:
                raw = self.client.lpop(self.queue_key)
                if raw is None:
                    return None
        except redis_exceptions.ConnectionError:
            # Connection resets can happen on managed Redis. Treat as empty queue
            # and allow the worker loop to retry.
            self.client = redis.Redis.from_url(self.url)
            return None
        return Event.from_json(raw)


def send_event(queue: JobQueue, name: str, data: dict) -> str:
    """Enqueue an event and return its id."""
    event = Event(name=name, data=data)
    queue.enqueue(event)
    return event.id
