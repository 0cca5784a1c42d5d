"""
Validation of listing agent output and conversion of agent messages to log entries.
"""

from __future__ import annotations

import json
import re
from typing import Any, Iterable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from shared.types import AgentLogEntry, AgentLogType, Comparable, now_ms

TEXT_LOG_LIMIT = 200

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")


class AgentError(Exception):
    """Raised when the listing agent fails or produces unusable output."""

    def __init__(self, message: str, transcript_url: Optional[str] = None):
        super().__init__(message)
        self.transcript_url = transcript_url


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ComparableOutput(_CamelModel):
    title: str
    price: float
    source: str
    url: Optional[str] = None
    condition: Optional[str] = None
    sold_date: Optional[str] = None


class ListingAgentOutput(_CamelModel):
    title: str
    description: str
    suggested_price: float
    price_range_low: float
    price_range_high: float
    category: str
    condition: Literal["New", "Like New", "Good", "Fair", "Poor"]
    brand: str
    model: Optional[str] = None
    research_notes: str
    comparables: list[ComparableOutput] = Field(default_factory=list)

    def comparables_json(self) -> list[dict]:
        return [Comparable(**c.model_dump()).as_dict() for c in self.comparables]


def parse_agent_output(raw: Any) -> ListingAgentOutput:
    try:
        return ListingAgentOutput.model_validate(raw)
    except ValidationError as exc:
        raise AgentError(f"Agent output validation failed: {exc}") from exc


def extract_json(text: str) -> Any:
    """
    Pulls a JSON document out of model text that may carry fences or prose around it.
    """
    trimmed = text.strip()
    try:
        return json.loads(trimmed)
    except json.JSONDecodeError:
        pass

    match = _FENCE_PATTERN.search(trimmed)
    if match:
        try:
            return json.loads(match.group(1).strip())
        except json.JSONDecodeError as exc:
            raise AgentError(f"Could not parse JSON from agent response: {exc}") from exc

    first = trimmed.find("{")
    last = trimmed.rfind("}")
    if first != -1 and last > first:
        try:
            return json.loads(trimmed[first:last + 1])
        except json.JSONDecodeError as exc:
            raise AgentError(f"Could not parse JSON from agent response: {exc}") from exc

    raise AgentError("Could not extract JSON from agent response")


# tool name -> (log type, input field, prefix)
TOOL_LOG_MAP = {
    "WebSearch": (AgentLogType.SEARCH, "query", "Searching"),
    "WebFetch": (AgentLogType.FETCH, "url", "Fetching"),
    "Write": (AgentLogType.WRITE, "", "Writing listing output"),
}


def extract_log_entries(content_blocks: Iterable[dict]) -> list[AgentLogEntry]:
    """Converts assistant content blocks into progress log entries."""
    entries: list[AgentLogEntry] = []
    ts = now_ms()

    for block in content_blocks:
        block_type = block.get("type")
        if block_type == "text" and block.get("text"):
            entries.append(
                AgentLogEntry(
                    type=AgentLogType.TEXT,
                    content=block["text"][:TEXT_LOG_LIMIT],
                    ts=ts,
                )
            )
            continue

        if block_type != "tool_use" or not block.get("name"):
            continue

        mapping = TOOL_LOG_MAP.get(block["name"])
        if not mapping:
            continue

        log_type, input_field, prefix = mapping
        value = (block.get("input") or {}).get(input_field) if input_field else None
        content = f"{prefix}: {value}" if isinstance(value, str) and value else prefix
        entries.append(AgentLogEntry(type=log_type, content=content, ts=ts))

    return entries
