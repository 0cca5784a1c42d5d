"""
Background job functions: listing generation and photo enhancement.
"""

from __future__ import annotations

import logging

import requests

from backend.events import (
    IMAGE_ENHANCE_REQUESTED,
    LISTING_SUBMITTED,
    JobContext,
    job_function,
)
from backend.notifications import send_listing_ready_notification
from models import gemini
from models.agent import run_listing_agent
from models.prompts import build_enhancement_prompt
from shared.types import ImageType, ListingStatus, PipelineStep, now_ms

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30


@job_function("generate-listing", event=LISTING_SUBMITTED, retries=1)
def generate_listing(data: dict, ctx: JobContext) -> dict:
    listing_id = data["listingId"]
    image_urls = list(data.get("imageUrls") or [])
    user_description = data.get("userDescription")
    db = ctx.db

    db.update_listing(
        listing_id,
        status=ListingStatus.PROCESSING,
        pipeline_step=PipelineStep.PENDING,
        pipeline_error=None,
    )
    logger.info("[%s] Generating listing from %d image(s)", listing_id, len(image_urls))

    try:
        result = run_listing_agent(
            listing_id,
            image_urls,
            user_description,
            db=db,
            storage=ctx.storage,
            provider=ctx.agent_provider,
        )
    except Exception as exc:
        db.update_listing(
            listing_id,
            status=ListingStatus.DRAFT,
            pipeline_step=PipelineStep.ERROR,
            pipeline_error=str(exc) or "Agent execution failed",
        )
        raise

    output = result.output
    listing = db.update_listing(
        listing_id,
        title=output.title,
        description=output.description,
        suggested_price=output.suggested_price,
        price_range_low=output.price_range_low,
        price_range_high=output.price_range_high,
        category=output.category,
        condition=output.condition,
        brand=output.brand,
        model=output.model,
        research_notes=output.research_notes,
        comparables=output.comparables_json(),
        agent_transcript_url=result.transcript_url,
        status=ListingStatus.READY,
        pipeline_step=PipelineStep.COMPLETE,
        pipeline_error=None,
    )
    logger.info(
        "[%s] Listing ready (cost ~$%.4f)", listing_id, result.cost_usd
    )

    if listing:
        send_listing_ready_notification(db, listing.user_id, listing_id, output.title)

    return {"listingId": listing_id, "status": ListingStatus.READY.value}


def _content_type_for(url: str, header_value: str | None) -> str:
    if header_value and header_value != "application/octet-stream":
        return header_value
    if url.endswith(".png"):
        return "image/png"
    return "image/jpeg"


@job_function("enhance-image", event=IMAGE_ENHANCE_REQUESTED, retries=1)
def enhance_image(data: dict, ctx: JobContext) -> dict:
    image_id = data["imageId"]
    listing_id = data["listingId"]
    db = ctx.db

    image = db.get_image(image_id)
    if not image:
        raise ValueError(f"Image {image_id} not found")
    if image.type != ImageType.ORIGINAL:
        raise ValueError("Can only enhance original images")

    listing = db.get_listing(listing_id)

    response = requests.get(image.blob_url, timeout=REQUEST_TIMEOUT)
    if not response.ok:
        raise RuntimeError(f"Failed to download image: {response.status_code}")
    content_type = _content_type_for(image.blob_url, response.headers.get("content-type"))

    prompt = build_enhancement_prompt(
        category=listing.category if listing else None,
        condition=listing.condition if listing else None,
        title=listing.title if listing else None,
    )
    logger.info("[%s] Enhancing image %s", listing_id, image_id)
    enhanced_bytes, mime_type = gemini.enhance_image(
        response.content, content_type, prompt, api_key=ctx.gemini_api_key
    )

    ext = "png" if "png" in mime_type else "jpg"
    blob = ctx.storage.upload_bytes(
        f"listings/{listing_id}/enhanced-{now_ms()}.{ext}", enhanced_bytes, mime_type
    )

    existing_variants = db.list_variants(image_id)
    new_image = db.add_image(
        listing_id,
        blob_url=blob["url"],
        blob_key=blob["key"],
        type=ImageType.ENHANCED,
        parent_image_id=image_id,
        sort_order=image.sort_order,
        is_primary=False,
        gemini_prompt=prompt,
    )
    return {
        "imageId": new_image.id,
        "blobUrl": new_image.blob_url,
        "variantCount": len(existing_variants) + 1,
    }
