"""
OpenAI clients: Whisper transcription and a Responses API listing agent.
"""

import base64
import json
import logging
import time
from typing import Optional

from openai import OpenAI

from models import prompts
from models.agent_output import extract_json, extract_log_entries, parse_agent_output
from models.agent_provider import (
    AgentImage,
    AgentProviderResult,
    ProgressCallback,
    estimate_cost,
)

logger = logging.getLogger(__name__)

TRANSCRIBE_MODEL = "whisper-1"
LISTING_MODEL = "gpt-4.1"
MAX_OUTPUT_TOKENS = 8192

INPUT_COST_PER_M = 2.0
OUTPUT_COST_PER_M = 8.0


class OpenAIInvalidResponseException(Exception):
    pass


def _client(api_key: Optional[str], timeout_s: int = 120) -> OpenAI:
    # OpenAI() reads OPENAI_API_KEY itself when api_key is None.
    return OpenAI(api_key=api_key, timeout=timeout_s)


def transcribe_audio(
    filename: str,
    data: bytes,
    content_type: str,
    api_key: Optional[str] = None,
) -> str:
    """Transcribes a voice description of an item to English text."""
    client = _client(api_key)
    start_time = time.time()
    result = client.audio.transcriptions.create(
        model=TRANSCRIBE_MODEL,
        file=(filename, data, content_type),
        language="en",
    )
    logger.info("Transcribed %s (%d bytes) in %.2fs", filename, len(data), time.time() - start_time)
    return result.text


def _web_search_blocks(response) -> list[dict]:
    blocks = []
    for item in getattr(response, "output", None) or []:
        if getattr(item, "type", None) != "web_search_call":
            continue
        action = getattr(item, "action", None)
        query = getattr(action, "query", None) if action is not None else None
        blocks.append({"type": "tool_use", "name": "WebSearch", "input": {"query": query}})
    return blocks


class OpenAIListingAgent:
    """Listing agent backed by the OpenAI Responses API with web search."""

    name = "openai"

    def __init__(self, api_key: Optional[str] = None, model: str = LISTING_MODEL):
        self.api_key = api_key
        self.model = model

    def run(
        self,
        images: list[AgentImage],
        user_description: Optional[str],
        on_progress: ProgressCallback,
    ) -> AgentProviderResult:
        client = _client(self.api_key, timeout_s=300)
        content = [
            {
                "type": "input_image",
                "image_url": f"data:{image.mime_type};base64,"
                + base64.b64encode(image.data).decode("ascii"),
            }
            for image in images
        ]
        content.append(
            {
                "type": "input_text",
                "text": prompts.build_user_prompt(len(images), user_description),
            }
        )

        transcript_lines = [
            json.dumps(
                {
                    "type": "request",
                    "model": self.model,
                    "images": [image.filename for image in images],
                    "userDescription": user_description,
                }
            )
        ]

        start_time = time.time()
        response = client.responses.create(
            model=self.model,
            instructions=prompts.build_system_prompt(),
            input=[{"role": "user", "content": content}],
            tools=[{"type": "web_search_preview"}],
            max_output_tokens=MAX_OUTPUT_TOKENS,
        )
        logger.info("OpenAI listing generation took %.2fs", time.time() - start_time)
        transcript_lines.append(response.model_dump_json(exclude_none=True))

        for entry in extract_log_entries(_web_search_blocks(response)):
            on_progress(entry)

        text = (response.output_text or "").strip()
        if not text:
            raise OpenAIInvalidResponseException("OpenAI returned no listing text")

        output = parse_agent_output(extract_json(text))

        usage = response.usage
        cost = 0.0
        if usage is not None:
            cost = estimate_cost(
                usage.input_tokens or 0,
                usage.output_tokens or 0,
                INPUT_COST_PER_M,
                OUTPUT_COST_PER_M,
            )
        return AgentProviderResult(
            output=output, cost_usd=cost, transcript_lines=transcript_lines
        )
