"""
Worker loop that consumes queued events and runs the job functions bound to them.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from backend import jobs  # noqa: F401  registers job functions
from backend.config import get_settings
from backend.db import DbClient
from backend.dependencies import (
    get_agent_provider,
    get_db_client,
    get_queue_client,
    get_storage_client,
)
from backend.events import JobContext, JobFunction, functions_for, get_function
from backend.queue import Event, JobQueue

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)

SESSION_CLEANUP_INTERVAL_SECONDS = 3600


def build_context(db: Optional[DbClient] = None) -> JobContext:
    settings = get_settings()
    return JobContext(
        db=db or get_db_client(),
        storage=get_storage_client(),
        agent_provider=get_agent_provider(),
        gemini_api_key=settings.gemini_api_key,
    )


def _targets(event: Event) -> list[JobFunction]:
    if event.function_id:
        fn = get_function(event.function_id)
        return [fn] if fn else []
    return functions_for(event.name)


def run_function(fn: JobFunction, event: Event, ctx: JobContext, queue: JobQueue) -> bool:
    """Runs one function for an event, re-enqueueing it on failure while retries remain."""
    try:
        result = fn.handler(event.data, ctx)
    except Exception:
        if event.attempt < fn.retries:
            logger.warning(
                "[%s] %s failed on attempt %d, retrying",
                event.id,
                fn.id,
                event.attempt + 1,
                exc_info=True,
            )
            queue.enqueue(
                Event(
                    name=event.name,
                    data=event.data,
                    id=event.id,
                    attempt=event.attempt + 1,
                    function_id=fn.id,
                )
            )
        else:
            logger.exception(
                "[%s] %s failed after %d attempt(s)", event.id, fn.id, event.attempt + 1
            )
        return False
    logger.info("[%s] %s completed: %s", event.id, fn.id, result)
    return True


def process_next(
    *,
    db: Optional[DbClient] = None,
    queue: Optional[JobQueue] = None,
    ctx: Optional[JobContext] = None,
    block: bool = True,
    timeout: Optional[int] = None,
) -> bool:
    """
    Fetch and handle one event from the queue. Returns True if an event was handled.
    """
    queue = queue or get_queue_client()
    event = queue.dequeue(block=block, timeout=timeout)
    if event is None:
        return False

    targets = _targets(event)
    if not targets:
        logger.warning("[%s] No job functions registered for %s", event.id, event.name)
        return True

    ctx = ctx or build_context(db)
    for fn in targets:
        run_function(fn, event, ctx, queue)
    return True


def run_loop(poll_interval_seconds: float = 2.0) -> None:
    """
    Blocking loop over the queue. Intended to be run under systemd/supervisor.
    """
    db = get_db_client()
    queue = get_queue_client()
    ctx = build_context(db)
    last_cleanup = 0.0
    while True:
        if time.monotonic() - last_cleanup > SESSION_CLEANUP_INTERVAL_SECONDS:
            try:
                removed = db.delete_expired_sessions()
                if removed:
                    logger.info("Removed %d expired session(s)", removed)
            except Exception:
                logger.exception("Failed to delete expired sessions")
            last_cleanup = time.monotonic()
        processed = process_next(
            queue=queue, ctx=ctx, block=True, timeout=int(poll_interval_seconds)
        )
        if not processed:
            time.sleep(poll_interval_seconds)


if __name__ == "__main__":
    run_loop()
