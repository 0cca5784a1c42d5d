"""
Dependency wiring for the FastAPI app and the worker.
"""

from __future__ import annotations

from backend.config import get_settings
from backend.db import DbClient, InMemoryDbClient, PostgresDbClient
from backend.queue import InMemoryJobQueue, JobQueue, RedisJobQueue
from backend.storage import InMemoryStorageClient, S3StorageClient, StorageClient
from models.agent import get_agent_provider as _provider_for
from models.agent_provider import AgentProvider

_db_client: DbClient | None = None
_storage_client: StorageClient | None = None
_queue_client: JobQueue | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.s3_bucket:
        _storage_client = InMemoryStorageClient()
    else:
        _storage_client = S3StorageClient(
            bucket=settings.s3_bucket,
            endpoint=settings.s3_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
            public_base_url=settings.s3_public_url or "",
            region=settings.s3_region,
        )
    return _storage_client


def get_queue_client() -> JobQueue:
    """
    Return a singleton queue client for dispatching events to workers.
    """
    global _queue_client
    if _queue_client:
        return _queue_client

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _queue_client = RedisJobQueue(
            url=settings.redis_url,
            queue_key=settings.redis_queue_key,
        )
    else:
        _queue_client = InMemoryJobQueue()
    return _queue_client


def get_agent_provider() -> AgentProvider:
    settings = get_settings()
    if settings.agent_provider == "openai":
        return _provider_for("openai", settings.openai_api_key)
    return _provider_for("gemini", settings.gemini_api_key)
