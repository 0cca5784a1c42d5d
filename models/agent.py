"""
Runs the listing agent for a listing: downloads its photos, runs the configured
provider and keeps the listing's pipeline step and progress log current.
"""

from __future__ import annotations

import logging
import mimetypes
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING, Optional
from urllib.parse import urlparse

import requests

from models.agent_output import AgentError, ListingAgentOutput
from models.agent_provider import AgentImage, AgentProvider
from shared.types import AgentLogEntry, AgentLogType, PipelineStep

if TYPE_CHECKING:
    from backend.db import DbClient
    from backend.storage import StorageClient

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30


@dataclass
class RunAgentResult:
    output: ListingAgentOutput
    cost_usd: float
    transcript_url: Optional[str]


@lru_cache(maxsize=None)
def get_agent_provider(name: str = "gemini", api_key: Optional[str] = None) -> AgentProvider:
    """Returns a provider instance, cached per provider name and key."""
    if name == "openai":
        from models.openai_client import OpenAIListingAgent

        return OpenAIListingAgent(api_key=api_key)
    if name == "gemini":
        from models.gemini import GeminiListingAgent

        return GeminiListingAgent(api_key=api_key)
    raise ValueError(f"Unknown agent provider: {name}")


def _guess_mime_type(url: str, header_value: Optional[str]) -> str:
    if header_value and header_value != "application/octet-stream":
        return header_value.split(";")[0].strip()
    guessed, _ = mimetypes.guess_type(urlparse(url).path)
    return guessed or "image/jpeg"


def download_images(image_urls: list[str]) -> list[AgentImage]:
    images = []
    for index, url in enumerate(image_urls, start=1):
        response = requests.get(url, timeout=REQUEST_TIMEOUT)
        if not response.ok:
            raise AgentError(
                f"Failed to download image {index}: HTTP {response.status_code} from {url}"
            )
        if not response.content:
            raise AgentError(f"Image {index} is empty (0 bytes) from {url}")

        ext = os.path.splitext(urlparse(url).path)[1] or ".jpg"
        images.append(
            AgentImage(
                filename=f"photo-{index}{ext}",
                data=response.content,
                mime_type=_guess_mime_type(url, response.headers.get("content-type")),
            )
        )
    return images


def upload_transcript(
    storage: "StorageClient", listing_id: str, lines: list[str]
) -> Optional[str]:
    if not lines:
        return None
    try:
        result = storage.upload_bytes(
            f"transcripts/{listing_id}.jsonl",
            "\n".join(lines).encode("utf-8"),
            "application/jsonl",
        )
    except Exception:
        logger.warning("[%s] Failed to upload agent transcript", listing_id, exc_info=True)
        return None
    return result["url"]


class _AgentLog:
    """Accumulates progress entries and writes them through to the listing."""

    def __init__(self, db: "DbClient", listing_id: str):
        self.db = db
        self.listing_id = listing_id
        self.entries: list[AgentLogEntry] = []

    def add(self, log_type: AgentLogType, content: str) -> None:
        self.entries.append(AgentLogEntry(type=log_type, content=content))
        self.flush()

    def flush(self) -> None:
        self.db.update_listing(
            self.listing_id, agent_log=[e.as_dict() for e in self.entries]
        )

    def on_progress(self, entry: AgentLogEntry) -> None:
        self.entries.append(entry)
        try:
            self.flush()
            if entry.type == AgentLogType.SEARCH:
                self.db.update_listing(
                    self.listing_id, pipeline_step=PipelineStep.RESEARCHING
                )
        except Exception:
            logger.warning(
                "[%s] Failed to record agent progress", self.listing_id, exc_info=True
            )


def run_listing_agent(
    listing_id: str,
    image_urls: list[str],
    user_description: Optional[str],
    *,
    db: "DbClient",
    storage: "StorageClient",
    provider: AgentProvider,
) -> RunAgentResult:
    db.update_listing(listing_id, pipeline_step=PipelineStep.ANALYZING)
    log = _AgentLog(db, listing_id)
    log.add(AgentLogType.STATUS, "Starting analysis...")

    transcript_lines: list[str] = []
    try:
        images = download_images(image_urls)
        log.add(AgentLogType.STATUS, f"Downloaded {len(images)} image(s) for analysis")

        logger.info("[%s] Running %s listing agent", listing_id, provider.name)
        result = provider.run(images, user_description, log.on_progress)
        transcript_lines = result.transcript_lines

        db.update_listing(listing_id, pipeline_step=PipelineStep.GENERATING)
        log.add(AgentLogType.COMPLETE, "Listing generated")
    except Exception as exc:
        message = str(exc) or "Unknown error occurred"
        log.add(AgentLogType.ERROR, message)
        transcript_url = upload_transcript(storage, listing_id, transcript_lines)
        if isinstance(exc, AgentError):
            exc.transcript_url = transcript_url
            raise
        raise AgentError(message, transcript_url=transcript_url) from exc

    transcript_url = upload_transcript(storage, listing_id, transcript_lines)
    return RunAgentResult(
        output=result.output, cost_usd=result.cost_usd, transcript_url=transcript_url
    )
