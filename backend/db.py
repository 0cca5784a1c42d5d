"""
Database abstraction for Postgres and an in-memory test implementation.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    select,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from shared.types import (
    ImageType,
    ListingStatus,
    PipelineStep,
    PushSubscriptionType,
    ThemePreference,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back out.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# Listing columns that callers may write through update_listing.
LISTING_COLUMNS = frozenset(
    {
        "raw_description",
        "title",
        "description",
        "suggested_price",
        "price_range_low",
        "price_range_high",
        "category",
        "condition",
        "brand",
        "model",
        "research_notes",
        "comparables",
        "status",
        "pipeline_step",
        "pipeline_error",
        "agent_log",
        "agent_transcript_url",
        "job_run_id",
    }
)

PREFERENCE_COLUMNS = frozenset({"theme_preference", "notifications_enabled"})


@dataclass
class UserRecord:
    id: str
    name: str
    email: str
    email_verified: bool = False
    image: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class AccountRecord:
    id: str
    user_id: str
    account_id: str
    provider_id: str
    password: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class SessionRecord:
    id: str
    user_id: str
    token: str
    expires_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class ImageUpload:
    """An image already uploaded to storage, referenced by a new listing."""

    key: str
    url: str
    filename: Optional[str] = None


@dataclass
class ListingImageRecord:
    id: str
    listing_id: str
    blob_url: str
    blob_key: str
    type: ImageType = ImageType.ORIGINAL
    parent_image_id: Optional[str] = None
    sort_order: int = 0
    is_primary: bool = False
    gemini_prompt: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class ListingRecord:
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
    comparables: Optional[list] = None
    status: ListingStatus = ListingStatus.DRAFT
    pipeline_step: PipelineStep = PipelineStep.PENDING
    pipeline_error: Optional[str] = None
    agent_log: Optional[list] = None
    agent_transcript_url: Optional[str] = None
    job_run_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    images: list[ListingImageRecord] = field(default_factory=list)


@dataclass
class PreferencesRecord:
    id: str
    user_id: str
    theme_preference: ThemePreference = ThemePreference.SYSTEM
    notifications_enabled: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class PushSubscriptionRecord:
    id: str
    user_id: str
    type: PushSubscriptionType = PushSubscriptionType.WEB
    endpoint: Optional[str] = None
    p256dh: Optional[str] = None
    auth: Optional[str] = None
    device_token: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


class DbClient(Protocol):
    """Interface for database access."""

    # Users, accounts and sessions

    def create_user(self, name: str, email: str) -> UserRecord:
        ...

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        ...

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    def create_account(
        self,
        user_id: str,
        provider_id: str,
        account_id: str,
        password: Optional[str] = None,
    ) -> AccountRecord:
        ...

    def get_account(self, user_id: str, provider_id: str) -> Optional[AccountRecord]:
        ...

    def create_session(
        self,
        user_id: str,
        token: str,
        expires_at: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SessionRecord:
        ...

    def get_session_by_token(self, token: str) -> Optional[SessionRecord]:
        ...

    def delete_session(self, token: str) -> None:
        ...

    def delete_expired_sessions(self) -> int:
        ...

    # Listings and images

    def create_listing(
        self,
        user_id: str,
        raw_description: Optional[str],
        images: Iterable[ImageUpload],
    ) -> ListingRecord:
        ...

    def list_listings(self, user_id: str) -> list[ListingRecord]:
        ...

    def get_listing(
        self, listing_id: str, user_id: Optional[str] = None
    ) -> Optional[ListingRecord]:
        ...

    def update_listing(self, listing_id: str, **fields) -> Optional[ListingRecord]:
        ...

    def delete_listing(self, listing_id: str) -> None:
        ...

    def get_image(
        self, image_id: str, listing_id: Optional[str] = None
    ) -> Optional[ListingImageRecord]:
        ...

    def list_images(self, listing_id: str) -> list[ListingImageRecord]:
        ...

    def add_image(
        self,
        listing_id: str,
        *,
        blob_url: str,
        blob_key: str,
        type: ImageType = ImageType.ORIGINAL,
        parent_image_id: Optional[str] = None,
        sort_order: int = 0,
        is_primary: bool = False,
        gemini_prompt: Optional[str] = None,
    ) -> ListingImageRecord:
        ...

    def list_variants(self, parent_image_id: str) -> list[ListingImageRecord]:
        ...

    def delete_image(self, image_id: str) -> None:
        ...

    # Preferences

    def get_preferences(self, user_id: str) -> Optional[PreferencesRecord]:
        ...

    def upsert_preferences(self, user_id: str, **updates) -> PreferencesRecord:
        ...

    # Push subscriptions

    def list_push_subscriptions(self, user_id: str) -> list[PushSubscriptionRecord]:
        ...

    def find_push_subscription(
        self,
        user_id: str,
        *,
        endpoint: Optional[str] = None,
        device_token: Optional[str] = None,
    ) -> Optional[PushSubscriptionRecord]:
        ...

    def add_push_subscription(
        self,
        user_id: str,
        type: PushSubscriptionType,
        *,
        endpoint: Optional[str] = None,
        p256dh: Optional[str] = None,
        auth: Optional[str] = None,
        device_token: Optional[str] = None,
    ) -> PushSubscriptionRecord:
        ...

    def update_push_subscription_keys(
        self, subscription_id: str, p256dh: str, auth: str
    ) -> None:
        ...

    def delete_push_subscription(self, subscription_id: str) -> None:
        ...

    def delete_push_subscriptions(
        self,
        user_id: str,
        *,
        endpoint: Optional[str] = None,
        device_token: Optional[str] = None,
    ) -> int:
        ...


def _normalize_listing_fields(fields: dict) -> dict:
    unknown = set(fields) - LISTING_COLUMNS
    if unknown:
        raise ValueError(f"Unknown listing fields: {sorted(unknown)}")
    normalized = dict(fields)
    if normalized.get("status") is not None:
        normalized["status"] = ListingStatus(normalized["status"])
    if normalized.get("pipeline_step") is not None:
        normalized["pipeline_step"] = PipelineStep(normalized["pipeline_step"])
    return normalized


def _image_sort_key(image: ListingImageRecord) -> tuple:
    return (image.sort_order, image.created_at)


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.users: Dict[str, UserRecord] = {}
        self.accounts: Dict[str, AccountRecord] = {}
        self.sessions: Dict[str, SessionRecord] = {}
        self.listings: Dict[str, ListingRecord] = {}
        self.images: Dict[str, ListingImageRecord] = {}
        self.preferences: Dict[str, PreferencesRecord] = {}
        self.push_subscriptions: Dict[str, PushSubscriptionRecord] = {}

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.users.clear()
        self.accounts.clear()
        self.sessions.clear()
        self.listings.clear()
        self.images.clear()
        self.preferences.clear()
        self.push_subscriptions.clear()

    def create_user(self, name: str, email: str) -> UserRecord:
        record = UserRecord(id=new_id(), name=name, email=email)
        self.users[record.id] = record
        return replace(record)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        user = self.users.get(user_id)
        return replace(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        for user in self.users.values():
            if user.email == email:
                return replace(user)
        return None

    def create_account(
        self,
        user_id: str,
        provider_id: str,
        account_id: str,
        password: Optional[str] = None,
    ) -> AccountRecord:
        record = AccountRecord(
            id=new_id(),
            user_id=user_id,
            account_id=account_id,
            provider_id=provider_id,
            password=password,
        )
        self.accounts[record.id] = record
        return replace(record)

    def get_account(self, user_id: str, provider_id: str) -> Optional[AccountRecord]:
        for account in self.accounts.values():
            if account.user_id == user_id and account.provider_id == provider_id:
                return replace(account)
        return None

    def create_session(
        self,
        user_id: str,
        token: str,
        expires_at: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SessionRecord:
        record = SessionRecord(
            id=new_id(),
            user_id=user_id,
            token=token,
            expires_at=expires_at,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.sessions[token] = record
        return replace(record)

    def get_session_by_token(self, token: str) -> Optional[SessionRecord]:
        record = self.sessions.get(token)
        if not record or record.expires_at <= utcnow():
            return None
        return replace(record)

    def delete_session(self, token: str) -> None:
        self.sessions.pop(token, None)

    def delete_expired_sessions(self) -> int:
        now = utcnow()
        expired = [t for t, s in self.sessions.items() if s.expires_at <= now]
        for token in expired:
            del self.sessions[token]
        return len(expired)

    def _with_images(self, listing: ListingRecord) -> ListingRecord:
        return replace(listing, images=self.list_images(listing.id))

    def create_listing(
        self,
        user_id: str,
        raw_description: Optional[str],
        images: Iterable[ImageUpload],
    ) -> ListingRecord:
        listing = ListingRecord(
            id=new_id(), user_id=user_id, raw_description=raw_description
        )
        self.listings[listing.id] = listing
        for index, image in enumerate(images):
            self.add_image(
                listing.id,
                blob_url=image.url,
                blob_key=image.key,
                sort_order=index,
                is_primary=index == 0,
            )
        return self._with_images(listing)

    def list_listings(self, user_id: str) -> list[ListingRecord]:
        owned = [l for l in self.listings.values() if l.user_id == user_id]
        owned.sort(key=lambda l: l.created_at, reverse=True)
        return [self._with_images(l) for l in owned]

    def get_listing(
        self, listing_id: str, user_id: Optional[str] = None
    ) -> Optional[ListingRecord]:
        listing = self.listings.get(listing_id)
        if not listing or (user_id is not None and listing.user_id != user_id):
            return None
        return self._with_images(listing)

    def update_listing(self, listing_id: str, **fields) -> Optional[ListingRecord]:
        fields = _normalize_listing_fields(fields)
        listing = self.listings.get(listing_id)
        if not listing:
            return None
        for name, value in fields.items():
            setattr(listing, name, value)
        listing.updated_at = utcnow()
        return self._with_images(listing)

    def delete_listing(self, listing_id: str) -> None:
        self.listings.pop(listing_id, None)
        for image_id in [i.id for i in self.images.values() if i.listing_id == listing_id]:
            del self.images[image_id]

    def get_image(
        self, image_id: str, listing_id: Optional[str] = None
    ) -> Optional[ListingImageRecord]:
        image = self.images.get(image_id)
        if not image or (listing_id is not None and image.listing_id != listing_id):
            return None
        return replace(image)

    def list_images(self, listing_id: str) -> list[ListingImageRecord]:
        images = [replace(i) for i in self.images.values() if i.listing_id == listing_id]
        images.sort(key=_image_sort_key)
        return images

    def add_image(
        self,
        listing_id: str,
        *,
        blob_url: str,
        blob_key: str,
        type: ImageType = ImageType.ORIGINAL,
        parent_image_id: Optional[str] = None,
        sort_order: int = 0,
        is_primary: bool = False,
        gemini_prompt: Optional[str] = None,
    ) -> ListingImageRecord:
        record = ListingImageRecord(
            id=new_id(),
            listing_id=listing_id,
            blob_url=blob_url,
            blob_key=blob_key,
            type=type,
            parent_image_id=parent_image_id,
            sort_order=sort_order,
            is_primary=is_primary,
            gemini_prompt=gemini_prompt,
        )
        self.images[record.id] = record
        return replace(record)

    def list_variants(self, parent_image_id: str) -> list[ListingImageRecord]:
        variants = [
            replace(i) for i in self.images.values() if i.parent_image_id == parent_image_id
        ]
        variants.sort(key=lambda i: i.created_at)
        return variants

    def delete_image(self, image_id: str) -> None:
        self.images.pop(image_id, None)

    def get_preferences(self, user_id: str) -> Optional[PreferencesRecord]:
        record = self.preferences.get(user_id)
        return replace(record) if record else None

    def upsert_preferences(self, user_id: str, **updates) -> PreferencesRecord:
        unknown = set(updates) - PREFERENCE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown preference fields: {sorted(unknown)}")
        record = self.preferences.get(user_id)
        if record is None:
            record = PreferencesRecord(id=new_id(), user_id=user_id)
            self.preferences[user_id] = record
        for name, value in updates.items():
            setattr(record, name, value)
        record.updated_at = utcnow()
        return replace(record)

    def list_push_subscriptions(self, user_id: str) -> list[PushSubscriptionRecord]:
        return [
            replace(s) for s in self.push_subscriptions.values() if s.user_id == user_id
        ]

    def _matching_subscriptions(
        self,
        user_id: str,
        endpoint: Optional[str],
        device_token: Optional[str],
    ) -> list[PushSubscriptionRecord]:
        if endpoint is None and device_token is None:
            raise ValueError("endpoint or device_token is required")
        matches = []
        for sub in self.push_subscriptions.values():
            if sub.user_id != user_id:
                continue
            if device_token is not None and sub.device_token == device_token:
                matches.append(sub)
            elif device_token is None and endpoint is not None and sub.endpoint == endpoint:
                matches.append(sub)
        return matches

    def find_push_subscription(
        self,
        user_id: str,
        *,
        endpoint: Optional[str] = None,
        device_token: Optional[str] = None,
    ) -> Optional[PushSubscriptionRecord]:
        matches = self._matching_subscriptions(user_id, endpoint, device_token)
        return replace(matches[0]) if matches else None

    def add_push_subscription(
        self,
        user_id: str,
        type: PushSubscriptionType,
        *,
        endpoint: Optional[str] = None,
        p256dh: Optional[str] = None,
        auth: Optional[str] = None,
        device_token: Optional[str] = None,
    ) -> PushSubscriptionRecord:
        record = PushSubscriptionRecord(
            id=new_id(),
            user_id=user_id,
            type=type,
            endpoint=endpoint,
            p256dh=p256dh,
            auth=auth,
            device_token=device_token,
        )
        self.push_subscriptions[record.id] = record
        return replace(record)

    def update_push_subscription_keys(
        self, subscription_id: str, p256dh: str, auth: str
    ) -> None:
        sub = self.push_subscriptions.get(subscription_id)
        if sub:
            sub.p256dh = p256dh
            sub.auth = auth

    def delete_push_subscription(self, subscription_id: str) -> None:
        self.push_subscriptions.pop(subscription_id, None)

    def delete_push_subscriptions(
        self,
        user_id: str,
        *,
        endpoint: Optional[str] = None,
        device_token: Optional[str] = None,
    ) -> int:
        matches = self._matching_subscriptions(user_id, endpoint, device_token)
        for sub in matches:
            del self.push_subscriptions[sub.id]
        return len(matches)


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str, *, create_schema: bool = True, **engine_kwargs):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        engine_options = {"future": True, "pool_pre_ping": True}
        if not database_url.startswith("sqlite"):
            engine_options["pool_recycle"] = 1800
        engine_options.update(engine_kwargs)
        self.engine = create_engine(database_url, **engine_options)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        if create_schema:
            Base.metadata.create_all(self.engine)

    # Row conversion

    def _to_user(self, row: "UserRow") -> UserRecord:
        return UserRecord(
            id=row.id,
            name=row.name,
            email=row.email,
            email_verified=row.email_verified,
            image=row.image,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

    def _to_account(self, row: "AccountRow") -> AccountRecord:
        return AccountRecord(
            id=row.id,
            user_id=row.user_id,
            account_id=row.account_id,
            provider_id=row.provider_id,
            password=row.password,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

    def _to_session(self, row: "SessionRow") -> SessionRecord:
        return SessionRecord(
            id=row.id,
            user_id=row.user_id,
            token=row.token,
            expires_at=_aware(row.expires_at),
            ip_address=row.ip_address,
            user_agent=row.user_agent,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

    def _to_image(self, row: "ListingImageRow") -> ListingImageRecord:
        return ListingImageRecord(
            id=row.id,
            listing_id=row.listing_id,
            blob_url=row.blob_url,
            blob_key=row.blob_key,
            type=ImageType(row.type),
            parent_image_id=row.parent_image_id,
            sort_order=row.sort_order,
            is_primary=row.is_primary,
            gemini_prompt=row.gemini_prompt,
            created_at=_aware(row.created_at),
        )

    def _to_listing(
        self, row: "ListingRow", images: Iterable["ListingImageRow"] = ()
    ) -> ListingRecord:
        return ListingRecord(
            id=row.id,
            user_id=row.user_id,
            raw_description=row.raw_description,
            title=row.title,
            description=row.description,
            suggested_price=row.suggested_price,
            price_range_low=row.price_range_low,
            price_range_high=row.price_range_high,
            category=row.category,
            condition=row.condition,
            brand=row.brand,
            model=row.model,
            research_notes=row.research_notes,
            comparables=row.comparables,
            status=ListingStatus(row.status),
            pipeline_step=PipelineStep(row.pipeline_step),
            pipeline_error=row.pipeline_error,
            agent_log=row.agent_log,
            agent_transcript_url=row.agent_transcript_url,
            job_run_id=row.job_run_id,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
            images=[self._to_image(i) for i in images],
        )

    def _to_preferences(self, row: "UserPreferencesRow") -> PreferencesRecord:
        return PreferencesRecord(
            id=row.id,
            user_id=row.user_id,
            theme_preference=ThemePreference(row.theme_preference),
            notifications_enabled=row.notifications_enabled,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

    def _to_subscription(self, row: "PushSubscriptionRow") -> PushSubscriptionRecord:
        return PushSubscriptionRecord(
            id=row.id,
            user_id=row.user_id,
            type=PushSubscriptionType(row.type),
            endpoint=row.endpoint,
            p256dh=row.p256dh,
            auth=row.auth,
            device_token=row.device_token,
            created_at=_aware(row.created_at),
        )

    def _images_for(self, session: Session, listing_id: str) -> list["ListingImageRow"]:
        stmt = (
            select(ListingImageRow)
            .where(ListingImageRow.listing_id == listing_id)
            .order_by(ListingImageRow.sort_order.asc(), ListingImageRow.created_at.asc())
        )
        return list(session.execute(stmt).scalars())

    # Users, accounts and sessions

    def create_user(self, name: str, email: str) -> UserRecord:
        now = utcnow()
        with self.Session() as session:
            row = UserRow(
                id=new_id(), name=name, email=email, created_at=now, updated_at=now
            )
            session.add(row)
            session.commit()
            return self._to_user(row)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            return self._to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.execute(
                select(UserRow).where(UserRow.email == email)
            ).scalar_one_or_none()
            return self._to_user(row) if row else None

    def create_account(
        self,
        user_id: str,
        provider_id: str,
        account_id: str,
        password: Optional[str] = None,
    ) -> AccountRecord:
        now = utcnow()
        with self.Session() as session:
            row = AccountRow(
                id=new_id(),
                user_id=user_id,
                account_id=account_id,
                provider_id=provider_id,
                password=password,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            return self._to_account(row)

    def get_account(self, user_id: str, provider_id: str) -> Optional[AccountRecord]:
        with self.Session() as session:
            stmt = select(AccountRow).where(
                AccountRow.user_id == user_id, AccountRow.provider_id == provider_id
            )
            row = session.execute(stmt).scalars().first()
            return self._to_account(row) if row else None

    def create_session(
        self,
        user_id: str,
        token: str,
        expires_at: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SessionRecord:
        now = utcnow()
        with self.Session() as session:
            row = SessionRow(
                id=new_id(),
                user_id=user_id,
                token=token,
                expires_at=expires_at,
                ip_address=ip_address,
                user_agent=user_agent,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            return self._to_session(row)

    def get_session_by_token(self, token: str) -> Optional[SessionRecord]:
        with self.Session() as session:
            stmt = select(SessionRow).where(
                SessionRow.token == token, SessionRow.expires_at > utcnow()
            )
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_session(row) if row else None

    def delete_session(self, token: str) -> None:
        with self.Session() as session:
            session.execute(delete(SessionRow).where(SessionRow.token == token))
            session.commit()

    def delete_expired_sessions(self) -> int:
        with self.Session() as session:
            result = session.execute(
                delete(SessionRow).where(SessionRow.expires_at <= utcnow())
            )
            session.commit()
            return result.rowcount or 0

    # Listings and images

    def create_listing(
        self,
        user_id: str,
        raw_description: Optional[str],
        images: Iterable[ImageUpload],
    ) -> ListingRecord:
        now = utcnow()
        with self.Session() as session:
            row = ListingRow(
                id=new_id(),
                user_id=user_id,
                raw_description=raw_description,
                status=ListingStatus.DRAFT.value,
                pipeline_step=PipelineStep.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            image_rows = []
            for index, image in enumerate(images):
                image_row = ListingImageRow(
                    id=new_id(),
                    listing_id=row.id,
                    type=ImageType.ORIGINAL.value,
                    blob_url=image.url,
                    blob_key=image.key,
                    sort_order=index,
                    is_primary=index == 0,
                    created_at=now,
                )
                session.add(image_row)
                image_rows.append(image_row)
            session.commit()
            return self._to_listing(row, image_rows)

    def list_listings(self, user_id: str) -> list[ListingRecord]:
        with self.Session() as session:
            stmt = (
                select(ListingRow)
                .where(ListingRow.user_id == user_id)
                .order_by(ListingRow.created_at.desc())
            )
            rows = list(session.execute(stmt).scalars())
            if not rows:
                return []
            image_stmt = (
                select(ListingImageRow)
                .where(ListingImageRow.listing_id.in_([r.id for r in rows]))
                .order_by(
                    ListingImageRow.sort_order.asc(), ListingImageRow.created_at.asc()
                )
            )
            by_listing: dict[str, list[ListingImageRow]] = {}
            for image in session.execute(image_stmt).scalars():
                by_listing.setdefault(image.listing_id, []).append(image)
            return [self._to_listing(r, by_listing.get(r.id, [])) for r in rows]

    def get_listing(
        self, listing_id: str, user_id: Optional[str] = None
    ) -> Optional[ListingRecord]:
        with self.Session() as session:
            row = session.get(ListingRow, listing_id)
            if not row or (user_id is not None and row.user_id != user_id):
                return None
            return self._to_listing(row, self._images_for(session, listing_id))

    def update_listing(self, listing_id: str, **fields) -> Optional[ListingRecord]:
        fields = _normalize_listing_fields(fields)
        with self.Session() as session:
            row = session.get(ListingRow, listing_id)
            if not row:
                return None
            for name, value in fields.items():
                if name in ("status", "pipeline_step") and value is not None:
                    value = value.value
                setattr(row, name, value)
            row.updated_at = utcnow()
            session.commit()
            return self._to_listing(row, self._images_for(session, listing_id))

    def delete_listing(self, listing_id: str) -> None:
        with self.Session() as session:
            session.execute(
                delete(ListingImageRow).where(ListingImageRow.listing_id == listing_id)
            )
            session.execute(delete(ListingRow).where(ListingRow.id == listing_id))
            session.commit()

    def get_image(
        self, image_id: str, listing_id: Optional[str] = None
    ) -> Optional[ListingImageRecord]:
        with self.Session() as session:
            row = session.get(ListingImageRow, image_id)
            if not row or (listing_id is not None and row.listing_id != listing_id):
                return None
            return self._to_image(row)

    def list_images(self, listing_id: str) -> list[ListingImageRecord]:
        with self.Session() as session:
            return [self._to_image(r) for r in self._images_for(session, listing_id)]

    def add_image(
        self,
        listing_id: str,
        *,
        blob_url: str,
        blob_key: str,
        type: ImageType = ImageType.ORIGINAL,
        parent_image_id: Optional[str] = None,
        sort_order: int = 0,
        is_primary: bool = False,
        gemini_prompt: Optional[str] = None,
    ) -> ListingImageRecord:
        with self.Session() as session:
            row = ListingImageRow(
                id=new_id(),
                listing_id=listing_id,
                type=ImageType(type).value,
                blob_url=blob_url,
                blob_key=blob_key,
                parent_image_id=parent_image_id,
                sort_order=sort_order,
                is_primary=is_primary,
                gemini_prompt=gemini_prompt,
                created_at=utcnow(),
            )
            session.add(row)
            session.commit()
            return self._to_image(row)

    def list_variants(self, parent_image_id: str) -> list[ListingImageRecord]:
        with self.Session() as session:
            stmt = (
                select(ListingImageRow)
                .where(ListingImageRow.parent_image_id == parent_image_id)
                .order_by(ListingImageRow.created_at.asc())
            )
            return [self._to_image(r) for r in session.execute(stmt).scalars()]

    def delete_image(self, image_id: str) -> None:
        with self.Session() as session:
            session.execute(delete(ListingImageRow).where(ListingImageRow.id == image_id))
            session.commit()

    # Preferences

    def get_preferences(self, user_id: str) -> Optional[PreferencesRecord]:
        with self.Session() as session:
            row = session.execute(
                select(UserPreferencesRow).where(UserPreferencesRow.user_id == user_id)
            ).scalar_one_or_none()
            return self._to_preferences(row) if row else None

    def upsert_preferences(self, user_id: str, **updates) -> PreferencesRecord:
        unknown = set(updates) - PREFERENCE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown preference fields: {sorted(unknown)}")
        now = utcnow()
        with self.Session() as session:
            row = session.execute(
                select(UserPreferencesRow).where(UserPreferencesRow.user_id == user_id)
            ).scalar_one_or_none()
            if row is None:
                row = UserPreferencesRow(
                    id=new_id(),
                    user_id=user_id,
                    theme_preference=ThemePreference.SYSTEM.value,
                    notifications_enabled=True,
                    created_at=now,
                )
                session.add(row)
            for name, value in updates.items():
                if name == "theme_preference":
                    value = ThemePreference(value).value
                setattr(row, name, value)
            row.updated_at = now
            session.commit()
            return self._to_preferences(row)

    # Push subscriptions

    def list_push_subscriptions(self, user_id: str) -> list[PushSubscriptionRecord]:
        with self.Session() as session:
            stmt = select(PushSubscriptionRow).where(PushSubscriptionRow.user_id == user_id)
            return [self._to_subscription(r) for r in session.execute(stmt).scalars()]

    def _subscription_filter(
        self,
        user_id: str,
        endpoint: Optional[str],
        device_token: Optional[str],
    ) -> list:
        criteria = [PushSubscriptionRow.user_id == user_id]
        if device_token is not None:
            criteria.append(PushSubscriptionRow.device_token == device_token)
        elif endpoint is not None:
            criteria.append(PushSubscriptionRow.endpoint == endpoint)
        else:
            raise ValueError("endpoint or device_token is required")
        return criteria

    def find_push_subscription(
        self,
        user_id: str,
        *,
        endpoint: Optional[str] = None,
        device_token: Optional[str] = None,
    ) -> Optional[PushSubscriptionRecord]:
        criteria = self._subscription_filter(user_id, endpoint, device_token)
        with self.Session() as session:
            row = session.execute(
                select(PushSubscriptionRow).where(*criteria)
            ).scalars().first()
            return self._to_subscription(row) if row else None

    def add_push_subscription(
        self,
        user_id: str,
        type: PushSubscriptionType,
        *,
        endpoint: Optional[str] = None,
        p256dh: Optional[str] = None,
        auth: Optional[str] = None,
        device_token: Optional[str] = None,
    ) -> PushSubscriptionRecord:
        with self.Session() as session:
            row = PushSubscriptionRow(
                id=new_id(),
                user_id=user_id,
                type=PushSubscriptionType(type).value,
                endpoint=endpoint,
                p256dh=p256dh,
                auth=auth,
                device_token=device_token,
                created_at=utcnow(),
            )
            session.add(row)
            session.commit()
            return self._to_subscription(row)

    def update_push_subscription_keys(
        self, subscription_id: str, p256dh: str, auth: str
    ) -> None:
        with self.Session() as session:
            row = session.get(PushSubscriptionRow, subscription_id)
            if not row:
                return
            row.p256dh = p256dh
            row.auth = auth
            session.commit()

    def delete_push_subscription(self, subscription_id: str) -> None:
        with self.Session() as session:
            session.execute(
                delete(PushSubscriptionRow).where(PushSubscriptionRow.id == subscription_id)
            )
            session.commit()

    def delete_push_subscriptions(
        self,
        user_id: str,
        *,
        endpoint: Optional[str] = None,
        device_token: Optional[str] = None,
    ) -> int:
        criteria = self._subscription_filter(user_id, endpoint, device_token)
        with self.Session() as session:
            result = session.execute(delete(PushSubscriptionRow).where(*criteria))
            session.commit()
            return result.rowcount or 0


Base = declarative_base()


# Auth tables share names and columns with the email/password session schema.


class UserRow(Base):
    __tablename__ = "user"

    id = Column(String, primary_key=True)
    name = Column(Text, nullable=False)
    email = Column(Text, nullable=False, unique=True)
    email_verified = Column(Boolean, nullable=False, default=False)
    image = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class SessionRow(Base):
    __tablename__ = "session"

    id = Column(String, primary_key=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    token = Column(Text, nullable=False, unique=True)
    ip_address = Column(Text, nullable=True)
    user_agent = Column(Text, nullable=True)
    user_id = Column(
        String, ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class AccountRow(Base):
    __tablename__ = "account"

    id = Column(String, primary_key=True)
    account_id = Column(Text, nullable=False)
    provider_id = Column(Text, nullable=False)
    user_id = Column(
        String, ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True
    )
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    id_token = Column(Text, nullable=True)
    access_token_expires_at = Column(DateTime(timezone=True), nullable=True)
    refresh_token_expires_at = Column(DateTime(timezone=True), nullable=True)
    scope = Column(Text, nullable=True)
    password = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class VerificationRow(Base):
    __tablename__ = "verification"

    id = Column(String, primary_key=True)
    identifier = Column(Text, nullable=False, index=True)
    value = Column(Text, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class UserPreferencesRow(Base):
    __tablename__ = "user_preferences"

    id = Column(String, primary_key=True)
    user_id = Column(
        String, ForeignKey("user.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    theme_preference = Column(Text, nullable=False, default=ThemePreference.SYSTEM.value)
    notifications_enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class PushSubscriptionRow(Base):
    __tablename__ = "push_subscriptions"

    id = Column(String, primary_key=True)
    user_id = Column(
        String, ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type = Column(Text, nullable=False, default=PushSubscriptionType.WEB.value)
    endpoint = Column(Text, nullable=True, index=True)
    p256dh = Column(Text, nullable=True)
    auth = Column(Text, nullable=True)
    device_token = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class ListingRow(Base):
    __tablename__ = "listings"

    id = Column(String, primary_key=True)
    user_id = Column(
        String, ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True
    )
    raw_description = Column(Text, nullable=True)
    title = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    suggested_price = Column(Float, nullable=True)
    price_range_low = Column(Float, nullable=True)
    price_range_high = Column(Float, nullable=True)
    category = Column(Text, nullable=True)
    condition = Column(Text, nullable=True)
    brand = Column(Text, nullable=True)
    model = Column(Text, nullable=True)
    research_notes = Column(Text, nullable=True)
    comparables = Column(JSON, nullable=True)
    status = Column(
        Enum(*[s.value for s in ListingStatus], name="listing_status"),
        nullable=False,
        default=ListingStatus.DRAFT.value,
    )
    pipeline_step = Column(
        Enum(*[s.value for s in PipelineStep], name="pipeline_step"),
        nullable=False,
        default=PipelineStep.PENDING.value,
    )
    pipeline_error = Column(Text, nullable=True)
    agent_log = Column(JSON, nullable=True)
    agent_transcript_url = Column(Text, nullable=True)
    job_run_id = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class ListingImageRow(Base):
    __tablename__ = "listing_images"

    id = Column(String, primary_key=True)
    listing_id = Column(
        String, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type = Column(
        Enum(*[t.value for t in ImageType], name="image_type"),
        nullable=False,
        default=ImageType.ORIGINAL.value,
    )
    blob_url = Column(Text, nullable=False)
    blob_key = Column(Text, nullable=False)
    parent_image_id = Column(String, nullable=True, index=True)
    sort_order = Column(Integer, nullable=False, default=0)
    is_primary = Column(Boolean, nullable=False, default=False)
    gemini_prompt = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
