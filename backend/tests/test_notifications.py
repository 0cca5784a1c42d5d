import json
import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import requests
from pywebpush import WebPushException

from backend import notifications
from backend.db import InMemoryDbClient
from shared.types import PushSubscriptionType


def _settings(**overrides):
    values = dict(
        web_url="https://listwell.app",
        vapid_public_key="public",
        vapid_private_key="private",
        vapid_subject=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class NotificationTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.user = self.db.create_user("Sam", "sam@example.com")
        settings_patch = patch.object(notifications, "get_settings", return_value=_settings())
        self.get_settings = settings_patch.start()
        self.addCleanup(settings_patch.stop)

    def _web_subscription(self, endpoint="https://push.example/1"):
        return self.db.add_push_subscription(
            self.user.id,
            PushSubscriptionType.WEB,
            endpoint=endpoint,
            p256dh="p256dh-key",
            auth="auth-key",
        )

    def test_listing_ready_payload(self):
        payload = notifications.build_listing_ready_payload("abc", None)
        self.assertEqual(payload["title"], "Listing Ready!")
        self.assertEqual(payload["body"], "Your listing has been generated")
        self.assertEqual(payload["icon"], "/icon-192x192.png")
        self.assertEqual(payload["data"], {"url": "/listings/abc", "listingId": "abc"})
        self.assertEqual(
            notifications.build_listing_ready_payload("abc", "Drill")["body"], "Drill"
        )

    @patch("backend.notifications.webpush")
    def test_sends_web_push(self, mock_webpush):
        self._web_subscription()
        notifications.send_listing_ready_notification(self.db, self.user.id, "abc", "Drill")

        mock_webpush.assert_called_once()
        kwargs = mock_webpush.call_args.kwargs
        self.assertEqual(kwargs["subscription_info"]["endpoint"], "https://push.example/1")
        self.assertEqual(kwargs["subscription_info"]["keys"]["auth"], "auth-key")
        self.assertEqual(json.loads(kwargs["data"])["body"], "Drill")
        self.assertEqual(kwargs["vapid_private_key"], "private")
        self.assertEqual(kwargs["vapid_claims"], {"sub": "mailto:admin@listwell.app"})

    @patch("backend.notifications.webpush")
    def test_gone_subscription_is_removed(self, mock_webpush):
        gone = self._web_subscription("https://push.example/gone")
        kept = self._web_subscription("https://push.example/flaky")

        def fail(subscription_info, **kwargs):
            status = 410 if subscription_info["endpoint"].endswith("gone") else 500
            raise WebPushException("push failed", response=MagicMock(status_code=status))

        mock_webpush.side_effect = fail
        notifications.send_push_notification(self.db, self.user.id, {"title": "Hi"})

        remaining = [s.id for s in self.db.list_push_subscriptions(self.user.id)]
        self.assertEqual(remaining, [kept.id])
        self.assertNotIn(gone.id, remaining)

    @patch("backend.notifications.webpush")
    def test_connection_error_does_not_stop_other_deliveries(self, mock_webpush):
        self._web_subscription("https://push.example/unreachable")
        self._web_subscription("https://push.example/ok")
        self.db.add_push_subscription(
            self.user.id, PushSubscriptionType.APNS, device_token="device"
        )

        def deliver(subscription_info, **kwargs):
            if subscription_info["endpoint"].endswith("unreachable"):
                raise requests.exceptions.ConnectionError("connection refused")

        mock_webpush.side_effect = deliver
        with self.assertLogs("backend.notifications", level="INFO") as logs:
            notifications.send_push_notification(self.db, self.user.id, {"title": "Hi"})

        endpoints = [
            c.kwargs["subscription_info"]["endpoint"] for c in mock_webpush.call_args_list
        ]
        self.assertEqual(
            endpoints, ["https://push.example/unreachable", "https://push.example/ok"]
        )
        self.assertEqual(len(self.db.list_push_subscriptions(self.user.id)), 3)
        self.assertTrue(any("APNs delivery not configured" in line for line in logs.output))

    @patch("backend.notifications.webpush")
    def test_notifications_disabled(self, mock_webpush):
        self._web_subscription()
        self.db.upsert_preferences(self.user.id, notifications_enabled=False)
        notifications.send_push_notification(self.db, self.user.id, {"title": "Hi"})
        mock_webpush.assert_not_called()

    @patch("backend.notifications.webpush")
    def test_no_subscriptions(self, mock_webpush):
        notifications.send_push_notification(self.db, self.user.id, {"title": "Hi"})
        mock_webpush.assert_not_called()

    @patch("backend.notifications.webpush")
    def test_missing_vapid_keys_skips_web_push(self, mock_webpush):
        self.get_settings.return_value = _settings(vapid_private_key=None)
        self._web_subscription()
        notifications.send_push_notification(self.db, self.user.id, {"title": "Hi"})
        mock_webpush.assert_not_called()
        self.assertEqual(len(self.db.list_push_subscriptions(self.user.id)), 1)

    @patch("backend.notifications.webpush")
    def test_apns_only_is_logged(self, mock_webpush):
        self.db.add_push_subscription(
            self.user.id, PushSubscriptionType.APNS, device_token="device"
        )
        with self.assertLogs("backend.notifications", level="INFO") as logs:
            notifications.send_push_notification(self.db, self.user.id, {"title": "Hi"})
        mock_webpush.assert_not_called()
        self.assertIn("APNs delivery not configured", logs.output[0])

    def test_errors_are_swallowed(self):
        db = MagicMock()
        db.list_push_subscriptions.side_effect = RuntimeError("db down")
        notifications.send_push_notification(db, self.user.id, {"title": "Hi"})

    def test_vapid_subject_override(self):
        self.get_settings.return_value = _settings(vapid_subject="mailto:ops@example.com")
        self.assertEqual(notifications._vapid_subject(), "mailto:ops@example.com")


if __name__ == "__main__":
    unittest.main()
