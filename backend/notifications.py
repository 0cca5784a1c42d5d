"""
Push notifications for finished listings.

Web push goes out through pywebpush when VAPID keys are configured. APNs
tokens are stored but delivery to Apple is not wired up here, so those
notifications are only logged.
"""

from __future__ import annotations

import json
import logging
from typing import Optional
from urllib.parse import urlparse

from pywebpush import WebPushException, webpush

from backend.config import get_settings
from backend.db import DbClient, PushSubscriptionRecord
from shared.types import PushSubscriptionType

logger = logging.getLogger(__name__)

NOTIFICATION_ICON = "/icon-192x192.png"
GONE_STATUSES = (404, 410)


def _vapid_subject() -> str:
    settings = get_settings()
    if settings.vapid_subject:
        return settings.vapid_subject
    hostname = urlparse(settings.web_url).hostname or "localhost"
    return f"mailto:admin@{hostname}"


def _send_web_push(
    db: DbClient, subscriptions: list[PushSubscriptionRecord], payload: dict
) -> int:
    settings = get_settings()
    web_subs = [s for s in subscriptions if s.endpoint and s.p256dh and s.auth]
    if not web_subs:
        return 0
    if not (settings.vapid_public_key and settings.vapid_private_key):
        logger.info(
            "VAPID keys not configured; skipping %d web push notification(s): %s",
            len(web_subs),
            payload.get("title"),
        )
        return 0

    data = json.dumps(payload)
    delivered = 0
    for sub in web_subs:
        try:
            webpush(
                subscription_info={
                    "endpoint": sub.endpoint,
                    "keys": {"p256dh": sub.p256dh, "auth": sub.auth},
                },
                data=data,
                vapid_private_key=settings.vapid_private_key,
                vapid_claims={"sub": _vapid_subject()},
            )
            delivered += 1
        except WebPushException as exc:
            status = exc.response.status_code if exc.response is not None else None
            if status in GONE_STATUSES:
                logger.info("Removing expired push subscription %s", sub.id)
                db.delete_push_subscription(sub.id)
            else:
                logger.warning("Web push to subscription %s failed: %s", sub.id, exc)
        except Exception:
            logger.warning("Web push to subscription %s failed", sub.id, exc_info=True)

    if delivered == 0:
        logger.error("[push] All %d web push notifications failed", len(web_subs))
    return delivered


def _send_apns(subscriptions: list[PushSubscriptionRecord], payload: dict) -> None:
    tokens = [s.device_token for s in subscriptions if s.device_token]
    if tokens:
        logger.info(
            "APNs delivery not configured; %d device(s) would receive: %s",
            len(tokens),
            payload.get("title"),
        )


def send_push_notification(db: DbClient, user_id: str, payload: dict) -> None:
    """Sends a notification to every device the user registered. Never raises."""
    try:
        subscriptions = db.list_push_subscriptions(user_id)
        if not subscriptions:
            return

        preferences = db.get_preferences(user_id)
        if preferences is not None and not preferences.notifications_enabled:
            logger.info("Notifications disabled for user %s", user_id)
            return

        _send_web_push(
            db, [s for s in subscriptions if s.type == PushSubscriptionType.WEB], payload
        )
        _send_apns(
            [s for s in subscriptions if s.type == PushSubscriptionType.APNS], payload
        )
    except Exception:
        logger.exception("Failed to send push notification to user %s", user_id)


def build_listing_ready_payload(listing_id: str, title: Optional[str]) -> dict:
    return {
        "title": "Listing Ready!",
        "body": title or "Your listing has been generated",
        "icon": NOTIFICATION_ICON,
        "badge": NOTIFICATION_ICON,
        "data": {"url": f"/listings/{listing_id}", "listingId": listing_id},
    }


def send_listing_ready_notification(
    db: DbClient, user_id: str, listing_id: str, title: Optional[str]
) -> None:
    send_push_notification(db, user_id, build_listing_ready_payload(listing_id, title))
