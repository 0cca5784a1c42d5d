"""
Registry of background job functions and the events that trigger them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

LISTING_SUBMITTED = "listing.submitted"
IMAGE_ENHANCE_REQUESTED = "image.enhance.requested"


@dataclass
class JobContext:
    """Clients a job function needs, built by the worker."""

    db: Any
    storage: Any
    agent_provider: Any = None
    gemini_api_key: Optional[str] = None


JobHandler = Callable[[dict, JobContext], Any]


@dataclass
class JobFunction:
    id: str
    event: str
    handler: JobHandler
    retries: int = 1


_functions: dict[str, JobFunction] = {}


def job_function(id: str, event: str, retries: int = 1):
    """Registers the decorated callable to run whenever ``event`` is received."""

    def decorator(handler: JobHandler) -> JobHandler:
        _functions[id] = JobFunction(id=id, event=event, handler=handler, retries=retries)
        return handler

    return decorator


def functions_for(event_name: str) -> list[JobFunction]:
    return [fn for fn in _functions.values() if fn.event == event_name]


def get_function(function_id: str) -> Optional[JobFunction]:
    return _functions.get(function_id)


def list_functions() -> list[JobFunction]:
    return list(_functions.values())
