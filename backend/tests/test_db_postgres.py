import os
import tempfile
import unittest
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import patch

from backend.db import ImageUpload, PostgresDbClient, utcnow
from backend.migrate import run_migrations
from shared.types import ImageType, ListingStatus, PipelineStep, PushSubscriptionType, ThemePreference


class PostgresDbClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the Postgres client logic.
    """

    def setUp(self):
        self.db = PostgresDbClient("sqlite+pysqlite:///:memory:")
        self.user = self.db.create_user("Sam", "sam@example.com")

    def tearDown(self):
        self.db.engine.dispose()

    def _listing(self, count=2):
        return self.db.create_listing(
            self.user.id,
            "A used drill",
            [ImageUpload(key=f"k{i}", url=f"https://x/k{i}.jpg") for i in range(count)],
        )

    def test_user_account_roundtrip(self):
        self.assertEqual(self.db.get_user_by_email("sam@example.com").id, self.user.id)
        self.db.create_account(self.user.id, "credential", self.user.id, password="hash")
        account = self.db.get_account(self.user.id, "credential")
        self.assertEqual(account.password, "hash")
        self.assertIsNone(self.db.get_account(self.user.id, "google"))

    def test_sessions_expire(self):
        self.db.create_session(self.user.id, "live", utcnow() + timedelta(hours=1))
        self.db.create_session(self.user.id, "stale", utcnow() - timedelta(hours=1))

        session = self.db.get_session_by_token("live")
        self.assertEqual(session.user_id, self.user.id)
        self.assertIsNotNone(session.expires_at.tzinfo)
        self.assertIsNone(self.db.get_session_by_token("stale"))

        self.assertEqual(self.db.delete_expired_sessions(), 1)
        self.db.delete_session("live")
        self.assertIsNone(self.db.get_session_by_token("live"))

    def test_create_listing_with_images(self):
        listing = self._listing()
        self.assertEqual(listing.status, ListingStatus.DRAFT)
        self.assertEqual(listing.pipeline_step, PipelineStep.PENDING)
        self.assertEqual([i.sort_order for i in listing.images], [0, 1])
        self.assertEqual([i.is_primary for i in listing.images], [True, False])

        fetched = self.db.get_listing(listing.id, user_id=self.user.id)
        self.assertEqual(len(fetched.images), 2)
        self.assertIsNone(self.db.get_listing(listing.id, user_id="someone-else"))

    def test_list_listings_newest_first(self):
        first = self._listing()
        second = self._listing()
        ids = [l.id for l in self.db.list_listings(self.user.id)]
        self.assertEqual(set(ids), {first.id, second.id})
        self.assertEqual(len(self.db.list_listings(self.user.id)[0].images), 2)

    def test_update_listing_fields(self):
        listing = self._listing()
        updated = self.db.update_listing(
            listing.id,
            status="READY",
            pipeline_step=PipelineStep.COMPLETE,
            title="Drill",
            comparables=[{"title": "Drill", "price": 40, "source": "eBay Sold"}],
            agent_log=[{"ts": 1, "type": "status", "content": "Starting analysis..."}],
        )
        self.assertEqual(updated.status, ListingStatus.READY)
        self.assertEqual(updated.pipeline_step, PipelineStep.COMPLETE)
        self.assertEqual(updated.comparables[0]["source"], "eBay Sold")
        self.assertEqual(updated.agent_log[0]["type"], "status")

        with self.assertRaises(ValueError):
            self.db.update_listing(listing.id, not_a_column=1)
        with self.assertRaises(ValueError):
            self.db.update_listing(listing.id, status="BOGUS")
        self.assertIsNone(self.db.update_listing("missing", title="x"))

    def test_image_variants_and_delete(self):
        listing = self._listing()
        original = listing.images[0]
        variant = self.db.add_image(
            listing.id,
            blob_url="https://x/e.png",
            blob_key="e.png",
            type=ImageType.ENHANCED,
            parent_image_id=original.id,
            sort_order=original.sort_order,
            gemini_prompt="Enhance",
        )
        self.assertEqual(variant.type, ImageType.ENHANCED)
        self.assertEqual([v.id for v in self.db.list_variants(original.id)], [variant.id])
        self.assertIsNone(self.db.get_image(variant.id, listing_id="other"))

        self.db.delete_image(variant.id)
        self.assertEqual(len(self.db.list_images(listing.id)), 2)

        self.db.delete_listing(listing.id)
        self.assertIsNone(self.db.get_listing(listing.id))
        self.assertEqual(self.db.list_images(listing.id), [])

    def test_preferences_upsert(self):
        self.assertIsNone(self.db.get_preferences(self.user.id))
        prefs = self.db.upsert_preferences(self.user.id, theme_preference=ThemePreference.DARK)
        self.assertEqual(prefs.theme_preference, ThemePreference.DARK)
        self.assertTrue(prefs.notifications_enabled)

        prefs = self.db.upsert_preferences(self.user.id, notifications_enabled=False)
        self.assertEqual(prefs.theme_preference, ThemePreference.DARK)
        self.assertFalse(prefs.notifications_enabled)

    def test_push_subscriptions(self):
        web = self.db.add_push_subscription(
            self.user.id,
            PushSubscriptionType.WEB,
            endpoint="https://push/1",
            p256dh="k",
            auth="a",
        )
        self.db.add_push_subscription(
            self.user.id, PushSubscriptionType.APNS, device_token="device"
        )
        self.assertEqual(
            self.db.find_push_subscription(self.user.id, endpoint="https://push/1").id,
            web.id,
        )
        self.db.update_push_subscription_keys(web.id, "k2", "a2")
        subs = {s.id: s for s in self.db.list_push_subscriptions(self.user.id)}
        self.assertEqual(subs[web.id].p256dh, "k2")

        self.assertEqual(
            self.db.delete_push_subscriptions(self.user.id, device_token="device"), 1
        )
        with self.assertRaises(ValueError):
            self.db.delete_push_subscriptions(self.user.id)
        self.db.delete_push_subscription(web.id)
        self.assertEqual(self.db.list_push_subscriptions(self.user.id), [])


class MigrateTests(unittest.TestCase):
    def test_creates_schema(self):
        self.assertEqual(run_migrations("sqlite+pysqlite:///:memory:"), 0)

    def test_rerun_keeps_existing_rows(self):
        with tempfile.TemporaryDirectory() as tmp:
            url = f"sqlite+pysqlite:///{os.path.join(tmp, 'listwell.db')}"
            self.assertEqual(run_migrations(url), 0)
            db = PostgresDbClient(url, create_schema=False)
            user = db.create_user("Sam", "sam@example.com")
            db.engine.dispose()

            self.assertEqual(run_migrations(url), 0)
            db = PostgresDbClient(url, create_schema=False)
            self.assertEqual(db.get_user_by_email("sam@example.com").id, user.id)
            db.engine.dispose()

    @patch("backend.migrate.get_settings", return_value=SimpleNamespace(database_url=None))
    def test_missing_database_url(self, _settings):
        with self.assertLogs("backend.migrate", level="ERROR"):
            self.assertEqual(run_migrations(), 1)


if __name__ == "__main__":
    unittest.main()
