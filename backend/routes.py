"""
HTTP routes for the Listwell API.
"""

from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import (
    APIRouter,
    Body,
    Depends,
    File,
    Header,
    HTTPException,
    Query,
    UploadFile,
)

from backend import jobs  # noqa: F401  registers job functions
from backend.auth import require_user
from backend.config import get_settings
from backend.db import DbClient, ImageUpload, ListingRecord, UserRecord
from backend.dependencies import get_db_client, get_queue_client, get_storage_client
from backend.events import (
    IMAGE_ENHANCE_REQUESTED,
    LISTING_SUBMITTED,
    list_functions,
)
from backend.queue import JobQueue, send_event
from backend.schemas import (
    CreateListingPayload,
    EnhancePayload,
    EnhanceResponse,
    HealthResponse,
    JobFunctionSchema,
    JobFunctionsResponse,
    ListingSchema,
    MeResponse,
    PreferencesSchema,
    PresignPayload,
    PresignResponse,
    SendEventPayload,
    SendEventResponse,
    SubscribePayload,
    SuccessResponse,
    TranscribeResponse,
    UnsubscribePayload,
)
from backend.storage import StorageClient, StorageError
from models import openai_client
from shared.types import ImageType, PushSubscriptionType, ThemePreference

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_LISTING_IMAGES = 5
MAX_UPLOAD_FILES = 5
ALLOWED_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/webp", "image/heic"})
MAX_AUDIO_BYTES = 25 * 1024 * 1024
ALLOWED_AUDIO_TYPES = frozenset(
    {
        "audio/webm",
        "audio/mp4",
        "audio/mpeg",
        "audio/mp3",
        "audio/wav",
        "audio/ogg",
        "audio/flac",
        "audio/m4a",
    }
)

# camelCase request field -> listing column
LISTING_PATCH_FIELDS = {
    "title": "title",
    "description": "description",
    "suggestedPrice": "suggested_price",
    "status": "status",
    "rawDescription": "raw_description",
    "category": "category",
    "condition": "condition",
    "pipelineStep": "pipeline_step",
    "pipelineError": "pipeline_error",
}


def _listing_response(listing: ListingRecord) -> ListingSchema:
    return ListingSchema.model_validate(listing)


def _owned_listing(db: DbClient, listing_id: str, user: UserRecord) -> ListingRecord:
    listing = db.get_listing(listing_id, user_id=user.id)
    if not listing:
        raise HTTPException(status_code=404, detail="Listing not found")
    return listing


def _submit_listing(
    queue: JobQueue, listing_id: str, image_urls: list[str], user_description: Optional[str]
) -> str:
    return send_event(
        queue,
        LISTING_SUBMITTED,
        {
            "listingId": listing_id,
            "imageUrls": image_urls,
            "userDescription": user_description,
        },
    )


@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(
        status="ok", timestamp=datetime.now(timezone.utc).isoformat()
    )


@router.get("/me", response_model=MeResponse)
def me(user: UserRecord = Depends(require_user)):
    return MeResponse(id=user.id, name=user.name, email=user.email)


@router.get("/listings", response_model=list[ListingSchema])
def list_listings(
    user: UserRecord = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    return [_listing_response(listing) for listing in db.list_listings(user.id)]


@router.post("/listings", response_model=ListingSchema, status_code=201)
def create_listing(
    payload: CreateListingPayload,
    user: UserRecord = Depends(require_user),
    db: DbClient = Depends(get_db_client),
    queue: JobQueue = Depends(get_queue_client),
):
    images = payload.images or []
    if not images:
        raise HTTPException(status_code=400, detail="At least one image is required")
    if len(images) > MAX_LISTING_IMAGES:
        raise HTTPException(
            status_code=400, detail=f"Maximum {MAX_LISTING_IMAGES} images allowed"
        )

    listing = db.create_listing(
        user.id,
        payload.description,
        [ImageUpload(key=i.key, url=i.url, filename=i.filename) for i in images],
    )
    event_id = _submit_listing(
        queue, listing.id, [i.blob_url for i in listing.images], payload.description
    )
    listing = db.update_listing(listing.id, job_run_id=event_id)
    logger.info("Listing %s submitted with %d image(s)", listing.id, len(images))
    return _listing_response(listing)


@router.get("/listings/{listing_id}", response_model=ListingSchema)
def get_listing(
    listing_id: str,
    user: UserRecord = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    return _listing_response(_owned_listing(db, listing_id, user))


@router.patch("/listings/{listing_id}", response_model=ListingSchema)
def update_listing(
    listing_id: str,
    body: dict[str, Any] = Body(...),
    user: UserRecord = Depends(require_user),
    db: DbClient = Depends(get_db_client),
    queue: JobQueue = Depends(get_queue_client),
):
    _owned_listing(db, listing_id, user)

    updates = {
        column: body[field]
        for field, column in LISTING_PATCH_FIELDS.items()
        if field in body
    }
    if not updates:
        raise HTTPException(status_code=400, detail="No valid fields to update")

    try:
        updated = db.update_listing(listing_id, **updates)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    if body.get("retry"):
        original_urls = [
            image.blob_url for image in updated.images if image.type == ImageType.ORIGINAL
        ]
        event_id = _submit_listing(
            queue, listing_id, original_urls, updated.raw_description
        )
        updated = db.update_listing(listing_id, job_run_id=event_id)
        logger.info("Listing %s resubmitted for generation", listing_id)

    return _listing_response(updated)


@router.delete("/listings/{listing_id}", response_model=SuccessResponse)
def delete_listing(
    listing_id: str,
    user: UserRecord = Depends(require_user),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    listing = _owned_listing(db, listing_id, user)
    storage.delete_urls([image.blob_url for image in listing.images])
    db.delete_listing(listing_id)
    return SuccessResponse()


@router.delete("/listings/{listing_id}/images", response_model=SuccessResponse)
def delete_listing_image(
    listing_id: str,
    image_id: Optional[str] = Query(None, alias="imageId"),
    user: UserRecord = Depends(require_user),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    _owned_listing(db, listing_id, user)
    if not image_id:
        raise HTTPException(
            status_code=400, detail="imageId query parameter is required"
        )

    image = db.get_image(image_id, listing_id=listing_id)
    if not image:
        raise HTTPException(status_code=404, detail="Image not found")

    if len(db.list_images(listing_id)) <= 1:
        raise HTTPException(
            status_code=400,
            detail="Cannot delete the last image. Delete the listing instead.",
        )

    storage.delete_urls([image.blob_url])
    db.delete_image(image_id)
    return SuccessResponse()


@router.post("/listings/{listing_id}/enhance", response_model=EnhanceResponse)
def enhance_listing_image(
    listing_id: str,
    payload: EnhancePayload,
    user: UserRecord = Depends(require_user),
    db: DbClient = Depends(get_db_client),
    queue: JobQueue = Depends(get_queue_client),
):
    _owned_listing(db, listing_id, user)
    if not payload.image_id:
        raise HTTPException(status_code=400, detail="imageId is required")

    image = db.get_image(payload.image_id, listing_id=listing_id)
    if not image:
        raise HTTPException(status_code=404, detail="Image not found")
    if image.type != ImageType.ORIGINAL:
        raise HTTPException(status_code=400, detail="Can only enhance original images")

    send_event(
        queue,
        IMAGE_ENHANCE_REQUESTED,
        {"imageId": payload.image_id, "listingId": listing_id},
    )
    return EnhanceResponse(status="processing")


def _safe_filename(filename: str) -> str:
    return re.sub(r"[^a-zA-Z0-9._-]", "_", filename)


@router.post("/upload/presign", response_model=PresignResponse)
def presign_uploads(
    payload: PresignPayload,
    user: UserRecord = Depends(require_user),
    storage: StorageClient = Depends(get_storage_client),
):
    files = payload.files or []
    if not files:
        raise HTTPException(status_code=400, detail="At least one file is required")
    if len(files) > MAX_UPLOAD_FILES:
        raise HTTPException(
            status_code=400, detail=f"Maximum {MAX_UPLOAD_FILES} files allowed"
        )
    for file in files:
        if file.content_type not in ALLOWED_IMAGE_TYPES:
            raise HTTPException(
                status_code=400, detail=f"Unsupported file type: {file.content_type}"
            )

    session_id = secrets.token_hex(8)
    try:
        uploads = [
            storage.create_presigned_upload(
                f"listings/{session_id}/{secrets.token_hex(6)}-{_safe_filename(file.filename)}",
                file.content_type,
            )
            for file in files
        ]
    except StorageError:
        logger.exception("[presign] Failed to generate presigned URLs")
        raise HTTPException(status_code=500, detail="Failed to generate upload URLs")

    logger.info(
        "[presign] Generated %d presigned URL(s) for session %s", len(uploads), session_id
    )
    return PresignResponse.model_validate({"uploads": uploads})


@router.post("/transcribe", response_model=TranscribeResponse)
async def transcribe(
    audio: Optional[UploadFile] = File(None),
    user: UserRecord = Depends(require_user),
):
    if audio is None:
        raise HTTPException(status_code=400, detail="No audio file provided")

    data = await audio.read()
    if len(data) > MAX_AUDIO_BYTES:
        raise HTTPException(status_code=400, detail="Audio file too large (max 25MB)")
    content_type = audio.content_type or ""
    if content_type and content_type not in ALLOWED_AUDIO_TYPES:
        raise HTTPException(status_code=400, detail="Unsupported audio format")

    text = openai_client.transcribe_audio(
        audio.filename or "audio.webm",
        data,
        content_type or "audio/webm",
        api_key=get_settings().openai_api_key,
    )
    return TranscribeResponse(text=text)


def _preferences_response(db: DbClient, user_id: str) -> PreferencesSchema:
    record = db.get_preferences(user_id)
    if record is None:
        return PreferencesSchema()
    return PreferencesSchema.model_validate(record)


@router.get("/preferences", response_model=PreferencesSchema)
def get_preferences(
    user: UserRecord = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    return _preferences_response(db, user.id)


@router.patch("/preferences", response_model=PreferencesSchema)
def update_preferences(
    body: dict[str, Any] = Body(...),
    user: UserRecord = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    updates: dict[str, Any] = {}
    if "themePreference" in body:
        theme = body["themePreference"]
        if theme not in {t.value for t in ThemePreference}:
            raise HTTPException(
                status_code=400,
                detail="themePreference must be one of: system, light, dark",
            )
        updates["theme_preference"] = ThemePreference(theme)
    if "notificationsEnabled" in body:
        enabled = body["notificationsEnabled"]
        if not isinstance(enabled, bool):
            raise HTTPException(
                status_code=400, detail="notificationsEnabled must be a boolean"
            )
        updates["notifications_enabled"] = enabled
    if not updates:
        raise HTTPException(status_code=400, detail="No valid fields to update")

    db.upsert_preferences(user.id, **updates)
    return _preferences_response(db, user.id)


@router.post("/push/subscribe", response_model=SuccessResponse)
def subscribe_push(
    payload: SubscribePayload,
    user: UserRecord = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    if payload.type == PushSubscriptionType.APNS:
        if not payload.device_token:
            raise HTTPException(status_code=400, detail="deviceToken is required")
        if not db.find_push_subscription(user.id, device_token=payload.device_token):
            db.add_push_subscription(
                user.id, PushSubscriptionType.APNS, device_token=payload.device_token
            )
        return SuccessResponse()

    if not (payload.endpoint and payload.p256dh and payload.auth):
        raise HTTPException(
            status_code=400, detail="endpoint, p256dh, and auth are required"
        )
    existing = db.find_push_subscription(user.id, endpoint=payload.endpoint)
    if existing:
        db.update_push_subscription_keys(existing.id, payload.p256dh, payload.auth)
    else:
        db.add_push_subscription(
            user.id,
            PushSubscriptionType.WEB,
            endpoint=payload.endpoint,
            p256dh=payload.p256dh,
            auth=payload.auth,
        )
    return SuccessResponse()


@router.delete("/push/subscribe", response_model=SuccessResponse)
def unsubscribe_push(
    payload: UnsubscribePayload,
    user: UserRecord = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    if payload.device_token:
        db.delete_push_subscriptions(user.id, device_token=payload.device_token)
    elif payload.endpoint:
        db.delete_push_subscriptions(user.id, endpoint=payload.endpoint)
    else:
        raise HTTPException(
            status_code=400, detail="endpoint or deviceToken is required"
        )
    return SuccessResponse()


def _check_signing_key(authorization: Optional[str]) -> None:
    signing_key = get_settings().jobs_signing_key
    if not signing_key:
        return
    expected = f"Bearer {signing_key}"
    if not authorization or not secrets.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/jobs", response_model=JobFunctionsResponse)
def describe_jobs(authorization: Optional[str] = Header(None)):
    _check_signing_key(authorization)
    return JobFunctionsResponse(
        functions=[
            JobFunctionSchema(id=fn.id, event=fn.event, retries=fn.retries)
            for fn in list_functions()
        ]
    )


@router.post("/jobs", response_model=SendEventResponse, status_code=202)
def send_job_event(
    payload: SendEventPayload,
    authorization: Optional[str] = Header(None),
    queue: JobQueue = Depends(get_queue_client),
):
    _check_signing_key(authorization)
    event_id = send_event(queue, payload.name, payload.data)
    logger.info("[%s] Received %s via webhook", event_id, payload.name)
    return SendEventResponse(ids=[event_id])
