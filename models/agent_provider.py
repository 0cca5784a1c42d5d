"""
Interface shared by the listing agent providers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from models.agent_output import ListingAgentOutput
from shared.types import AgentLogEntry

ProgressCallback = Callable[[AgentLogEntry], None]


@dataclass
class AgentImage:
    filename: str
    data: bytes
    mime_type: str


@dataclass
class AgentProviderResult:
    output: ListingAgentOutput
    cost_usd: float = 0.0
    transcript_lines: list[str] = field(default_factory=list)


class AgentProvider(Protocol):
    name: str

    def run(
        self,
        images: list[AgentImage],
        user_description: Optional[str],
        on_progress: ProgressCallback,
    ) -> AgentProviderResult:
        ...


def estimate_cost(
    input_tokens: int,
    output_tokens: int,
    input_cost_per_m: float,
    output_cost_per_m: float,
) -> float:
    return (input_tokens / 1_000_000) * input_cost_per_m + (
        output_tokens / 1_000_000
    ) * output_cost_per_m
