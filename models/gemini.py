import json
import logging
import time
from typing import Optional

from google import genai
from google.genai import types

from models import prompts
from models.agent_output import extract_json, extract_log_entries, parse_agent_output
from models.agent_provider import (
    AgentImage,
    AgentProviderResult,
    ProgressCallback,
    estimate_cost,
)

logger = logging.getLogger(__name__)

LISTING_MODEL = "gemini-2.5-flash"
ENHANCE_MODEL = "gemini-2.5-flash-image"

# Rough cost per million tokens for LISTING_MODEL.
INPUT_COST_PER_M = 0.30
OUTPUT_COST_PER_M = 2.50


class GeminiInvalidResponseException(Exception):
    pass


def _client(api_key: Optional[str]) -> genai.Client:
    if api_key:
        return genai.Client(api_key=api_key)
    # Falls back to GEMINI_API_KEY / GOOGLE_API_KEY from the environment.
    return genai.Client()


def enhance_image(
    image_bytes: bytes,
    mime_type: str,
    prompt: str,
    model: str = ENHANCE_MODEL,
    api_key: Optional[str] = None,
) -> tuple[bytes, str]:
    """
    Sends a photo to Gemini with an enhancement prompt.

    Returns:
        tuple[bytes, str]: The enhanced image bytes and their mime type.
    """
    client = _client(api_key)
    start_time = time.time()
    response = client.models.generate_content(
        model=model,
        contents=[
            types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
            prompt,
        ],
        config=types.GenerateContentConfig(response_modalities=["IMAGE", "TEXT"]),
    )
    logger.info("Gemini image enhancement took %.2fs", time.time() - start_time)

    if not response.candidates:
        raise GeminiInvalidResponseException(
            "No response from Gemini image enhancement"
        )

    content = response.candidates[0].content
    for part in (content.parts if content else None) or []:
        inline = part.inline_data
        if inline is not None and inline.data:
            return inline.data, inline.mime_type or "image/png"

    raise GeminiInvalidResponseException("Gemini did not return an enhanced image")


def _grounding_blocks(response: types.GenerateContentResponse) -> list[dict]:
    """Turns search grounding metadata into tool-use style content blocks."""
    if not response.candidates:
        return []
    metadata = response.candidates[0].grounding_metadata
    if metadata is None:
        return []

    blocks = [
        {"type": "tool_use", "name": "WebSearch", "input": {"query": query}}
        for query in metadata.web_search_queries or []
    ]
    for chunk in metadata.grounding_chunks or []:
        if chunk.web and chunk.web.uri:
            blocks.append(
                {"type": "tool_use", "name": "WebFetch", "input": {"url": chunk.web.uri}}
            )
    return blocks


class GeminiListingAgent:
    """Listing agent backed by Gemini with Google Search grounding."""

    name = "gemini"

    def __init__(self, api_key: Optional[str] = None, model: str = LISTING_MODEL):
        self.api_key = api_key
        self.model = model

    def run(
        self,
        images: list[AgentImage],
        user_description: Optional[str],
        on_progress: ProgressCallback,
    ) -> AgentProviderResult:
        client = _client(self.api_key)
        contents = [
            types.Part.from_bytes(data=image.data, mime_type=image.mime_type)
            for image in images
        ]
        contents.append(prompts.build_user_prompt(len(images), user_description))

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
        response = client.models.generate_content(
            model=self.model,
            contents=contents,
            config=types.GenerateContentConfig(
                system_instruction=prompts.build_system_prompt(),
                tools=[types.Tool(google_search=types.GoogleSearch())],
                temperature=0.4,
            ),
        )
        logger.info("Gemini listing generation took %.2fs", time.time() - start_time)
        transcript_lines.append(response.model_dump_json(exclude_none=True))

        for entry in extract_log_entries(_grounding_blocks(response)):
            on_progress(entry)

        if not response.text:
            raise GeminiInvalidResponseException("Gemini returned no listing text")

        output = parse_agent_output(extract_json(response.text))

        usage = response.usage_metadata
        cost = 0.0
        if usage is not None:
            cost = estimate_cost(
                usage.prompt_token_count or 0,
                usage.candidates_token_count or 0,
                INPUT_COST_PER_M,
                OUTPUT_COST_PER_M,
            )
        return AgentProviderResult(
            output=output, cost_usd=cost, transcript_lines=transcript_lines
        )
