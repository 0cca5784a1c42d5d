"""
Pydantic schemas for the Listwell API. JSON fields are camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shared.types import ImageType, ListingStatus, PipelineStep, ThemePreference


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class UserSchema(ApiModel):
    id: str
    name: str
    email: str
    email_verified: bool = False
    image: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class SessionSchema(ApiModel):
    id: str
    user_id: str
    token: str
    expires_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime


class AuthResponse(ApiModel):
    token: str
    user: UserSchema


class SessionResponse(ApiModel):
    session: SessionSchema
    user: UserSchema


class MeResponse(ApiModel):
    id: str
    name: str
    email: str


class HealthResponse(ApiModel):
    status: Literal["ok"]
    timestamp: str


class ListingImageSchema(ApiModel):
    id: str
    listing_id: str
    type: ImageType
    blob_url: str
    blob_key: str
    parent_image_id: Optional[str] = None
    sort_order: int
    is_primary: bool
    gemini_prompt: Optional[str] = None
    created_at: datetime


class ListingSchema(ApiModel):
    id: str
    user_id: str
    raw_description: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    suggested_price: Optional[float] = None
    price_range_low: Optional[float] = None
    price_range_high: Optional[float] = None
    category: Optional[str] = None
    condition: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    research_notes: Optional[str] = None
    comparables: Optional[list[dict[str, Any]]] = None
    status: ListingStatus
    pipeline_step: PipelineStep
    pipeline_error: Optional[str] = None
    agent_log: Optional[list[dict[str, Any]]] = None
    agent_transcript_url: Optional[str] = None
    job_run_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    images: list[ListingImageSchema] = Field(default_factory=list)


class ImageInput(ApiModel):
    key: str
    url: str
    filename: Optional[str] = None


class CreateListingPayload(ApiModel):
    description: Optional[str] = None
    images: Optional[list[ImageInput]] = None


class EnhancePayload(ApiModel):
    image_id: Optional[str] = None


class EnhanceResponse(ApiModel):
    status: Literal["processing"]


class PresignFile(ApiModel):
    filename: str
    content_type: str


class PresignPayload(ApiModel):
    files: Optional[list[PresignFile]] = None


class PresignedUpload(ApiModel):
    presigned_url: str
    key: str
    public_url: str


class PresignResponse(ApiModel):
    uploads: list[PresignedUpload]


class TranscribeResponse(ApiModel):
    text: str


class PreferencesSchema(ApiModel):
    theme_preference: ThemePreference = ThemePreference.SYSTEM
    notifications_enabled: bool = True


class SubscribePayload(ApiModel):
    type: Optional[Literal["web", "apns"]] = None
    endpoint: Optional[str] = None
    p256dh: Optional[str] = None
    auth: Optional[str] = None
    device_token: Optional[str] = None


class UnsubscribePayload(ApiModel):
    endpoint: Optional[str] = None
    device_token: Optional[str] = None


class SuccessResponse(ApiModel):
    success: bool = True


class JobFunctionSchema(ApiModel):
    id: str
    event: str
    retries: int


class JobFunctionsResponse(ApiModel):
    functions: list[JobFunctionSchema]


class SendEventPayload(ApiModel):
    name: str = Field(..., min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)


class SendEventResponse(ApiModel):
    ids: list[str]
