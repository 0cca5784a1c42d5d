"""
Domain types shared by the API, the job functions and the listing agent.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Optional


class ListingStatus(StrEnum):
    DRAFT = "DRAFT"
    PROCESSING = "PROCESSING"
    READY = "READY"
    LISTED = "LISTED"
    SOLD = "SOLD"
    ARCHIVED = "ARCHIVED"


class PipelineStep(StrEnum):
    PENDING = "PENDING"
    ANALYZING = "ANALYZING"
    RESEARCHING = "RESEARCHING"
    GENERATING = "GENERATING"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"


class ImageType(StrEnum):
    ORIGINAL = "ORIGINAL"
    ENHANCED = "ENHANCED"


class AgentLogType(StrEnum):
    STATUS = "status"
    SEARCH = "search"
    FETCH = "fetch"
    TEXT = "text"
    WRITE = "write"
    COMPLETE = "complete"
    ERROR = "error"


class ThemePreference(StrEnum):
    SYSTEM = "system"
    LIGHT = "light"
    DARK = "dark"


class PushSubscriptionType(StrEnum):
    WEB = "web"
    APNS = "apns"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class AgentLogEntry:
    """One line of progress shown while a listing is being generated."""

    type: AgentLogType
    content: str
    ts: int = field(default_factory=now_ms)

    def as_dict(self) -> dict:
        return {"ts": self.ts, "type": self.type.value, "content": self.content}


@dataclass
class Comparable:
    """A comparable sold or listed item found during price research."""

    title: str
    price: float
    source: str
    url: Optional[str] = None
    condition: Optional[str] = None
    sold_date: Optional[str] = None

    def as_dict(self) -> dict:
        payload = {"title": self.title, "price": self.price, "source": self.source}
        if self.url is not None:
            payload["url"] = self.url
        if self.condition is not None:
            payload["condition"] = self.condition
        if self.sold_date is not None:
            payload["soldDate"] = self.sold_date
        return payload
