import unittest
from unittest.mock import MagicMock, patch

from backend import jobs
from backend.db import ImageUpload, InMemoryDbClient
from backend.events import IMAGE_ENHANCE_REQUESTED, LISTING_SUBMITTED, JobContext
from backend.queue import Event, InMemoryJobQueue, RedisJobQueue, send_event
from backend.storage import InMemoryStorageClient
from backend.worker import process_next
from models.agent_output import AgentError, ListingAgentOutput
from models.agent_provider import AgentProviderResult
from shared.types import AgentLogEntry, AgentLogType, ImageType, ListingStatus, PipelineStep

AGENT_OUTPUT = {
    "title": "DeWalt 20V Cordless Drill Good Condition",
    "description": "Selling my DeWalt drill. Works great.",
    "suggestedPrice": 85,
    "priceRangeLow": 60,
    "priceRangeHigh": 95,
    "category": "Tools",
    "condition": "Good",
    "brand": "DeWalt",
    "researchNotes": "Plenty of comps on eBay.",
    "comparables": [{"title": "DeWalt DCD771", "price": 70, "source": "eBay Sold"}],
}


def _image_response(content=b"jpeg-bytes", content_type="image/jpeg", status=200):
    response = MagicMock()
    response.ok = status < 400
    response.status_code = status
    response.content = content
    response.headers = {"content-type": content_type} if content_type else {}
    return response


class FakeProvider:
    name = "fake"

    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def run(self, images, user_description, on_progress):
        self.calls.append((images, user_description))
        on_progress(AgentLogEntry(type=AgentLogType.SEARCH, content="Searching: drill"))
        if self.error:
            raise self.error
        return AgentProviderResult(
            output=ListingAgentOutput.model_validate(AGENT_OUTPUT),
            cost_usd=0.01,
            transcript_lines=['{"type": "response"}'],
        )


class WorkerTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.queue = InMemoryJobQueue()
        self.storage = InMemoryStorageClient()
        self.user = self.db.create_user("Sam", "sam@example.com")
        self.listing = self.db.create_listing(
            self.user.id,
            "drill",
            [ImageUpload(key="listings/a/1.jpg", url="https://example.test/storage/listings/a/1.jpg")],
        )

    def _ctx(self, provider):
        return JobContext(db=self.db, storage=self.storage, agent_provider=provider)

    def _submit(self):
        send_event(
            self.queue,
            LISTING_SUBMITTED,
            {
                "listingId": self.listing.id,
                "imageUrls": [i.blob_url for i in self.listing.images],
                "userDescription": "drill",
            },
        )

    def test_process_next_no_events(self):
        processed = process_next(queue=self.queue, ctx=self._ctx(FakeProvider()), block=False)
        self.assertFalse(processed)

    @patch("backend.jobs.send_listing_ready_notification")
    @patch("models.agent.requests.get")
    def test_generate_listing_success(self, mock_get, mock_notify):
        mock_get.return_value = _image_response()
        provider = FakeProvider()
        self._submit()

        processed = process_next(queue=self.queue, ctx=self._ctx(provider), block=False)
        self.assertTrue(processed)

        listing = self.db.get_listing(self.listing.id)
        self.assertEqual(listing.status, ListingStatus.READY)
        self.assertEqual(listing.pipeline_step, PipelineStep.COMPLETE)
        self.assertIsNone(listing.pipeline_error)
        self.assertEqual(listing.title, AGENT_OUTPUT["title"])
        self.assertEqual(listing.suggested_price, 85)
        self.assertEqual(listing.comparables[0]["source"], "eBay Sold")
        self.assertTrue(
            listing.agent_transcript_url.endswith(f"transcripts/{self.listing.id}.jsonl")
        )
        log_types = [entry["type"] for entry in listing.agent_log]
        self.assertEqual(log_types, ["status", "status", "search", "complete"])

        images, description = provider.calls[0]
        self.assertEqual(images[0].data, b"jpeg-bytes")
        self.assertEqual(description, "drill")
        mock_notify.assert_called_once_with(
            self.db, self.user.id, self.listing.id, AGENT_OUTPUT["title"]
        )
        self.assertEqual(self.queue.items, [])

    @patch("backend.jobs.send_listing_ready_notification")
    @patch("models.agent.requests.get")
    def test_generate_listing_failure_retries_then_marks_error(self, mock_get, mock_notify):
        mock_get.return_value = _image_response()
        provider = FakeProvider(error=AgentError("Agent output validation failed: bad"))
        self._submit()

        self.assertTrue(process_next(queue=self.queue, ctx=self._ctx(provider), block=False))
        listing = self.db.get_listing(self.listing.id)
        self.assertEqual(listing.status, ListingStatus.DRAFT)
        self.assertEqual(listing.pipeline_step, PipelineStep.ERROR)
        self.assertEqual(listing.pipeline_error, "Agent output validation failed: bad")
        self.assertEqual(listing.agent_log[-1]["type"], "error")

        # One retry is queued for the failed function.
        self.assertEqual(len(self.queue.items), 1)
        retry = self.queue.items[0]
        self.assertEqual(retry.attempt, 1)
        self.assertEqual(retry.function_id, "generate-listing")

        self.assertTrue(process_next(queue=self.queue, ctx=self._ctx(provider), block=False))
        self.assertEqual(self.queue.items, [])
        self.assertEqual(len(provider.calls), 2)
        mock_notify.assert_not_called()

    @patch("models.agent.requests.get")
    def test_generate_listing_download_error(self, mock_get):
        mock_get.return_value = _image_response(status=404)
        provider = FakeProvider()
        self._submit()

        process_next(queue=self.queue, ctx=self._ctx(provider), block=False)
        listing = self.db.get_listing(self.listing.id)
        self.assertEqual(
            listing.pipeline_error,
            f"Failed to download image 1: HTTP 404 from {self.listing.images[0].blob_url}",
        )
        self.assertEqual(provider.calls, [])

    @patch("backend.jobs.gemini.enhance_image")
    @patch("backend.jobs.requests.get")
    def test_enhance_image_creates_variant(self, mock_get, mock_enhance):
        mock_get.return_value = _image_response(content_type="application/octet-stream")
        mock_enhance.return_value = (b"png-bytes", "image/png")
        self.db.update_listing(self.listing.id, title="DeWalt Drill", category="Tools")
        original = self.listing.images[0]

        result = jobs.enhance_image(
            {"imageId": original.id, "listingId": self.listing.id},
            self._ctx(FakeProvider()),
        )

        self.assertEqual(result["variantCount"], 1)
        args = mock_enhance.call_args.args
        self.assertEqual(args[0], b"jpeg-bytes")
        self.assertEqual(args[1], "image/jpeg")
        self.assertIn("The item is: DeWalt Drill.", args[2])
        self.assertIn("Category-specific guidance (Tools)", args[2])

        variant = self.db.get_image(result["imageId"])
        self.assertEqual(variant.type, ImageType.ENHANCED)
        self.assertEqual(variant.parent_image_id, original.id)
        self.assertEqual(variant.sort_order, original.sort_order)
        self.assertFalse(variant.is_primary)
        self.assertEqual(variant.gemini_prompt, args[2])
        self.assertRegex(variant.blob_key, rf"^listings/{self.listing.id}/enhanced-\d+\.png$")
        self.assertIn(variant.blob_key, self.storage.stored_objects)

        second = jobs.enhance_image(
            {"imageId": original.id, "listingId": self.listing.id},
            self._ctx(FakeProvider()),
        )
        self.assertEqual(second["variantCount"], 2)

    def test_enhance_image_rejects_enhanced_source(self):
        enhanced = self.db.add_image(
            self.listing.id,
            blob_url="https://example.test/e.png",
            blob_key="e.png",
            type=ImageType.ENHANCED,
        )
        with self.assertRaisesRegex(ValueError, "Can only enhance original images"):
            jobs.enhance_image(
                {"imageId": enhanced.id, "listingId": self.listing.id},
                self._ctx(FakeProvider()),
            )

    def test_unknown_event_is_consumed(self):
        self.queue.enqueue(Event(name="something.else"))
        self.assertTrue(
            process_next(queue=self.queue, ctx=self._ctx(FakeProvider()), block=False)
        )
        self.assertEqual(self.queue.items, [])

    @patch("backend.jobs.gemini.enhance_image", side_effect=RuntimeError("boom"))
    @patch("backend.jobs.requests.get")
    def test_enhance_event_failure_is_retried_once(self, mock_get, mock_enhance):
        mock_get.return_value = _image_response()
        send_event(
            self.queue,
            IMAGE_ENHANCE_REQUESTED,
            {"imageId": self.listing.images[0].id, "listingId": self.listing.id},
        )
        ctx = self._ctx(FakeProvider())
        process_next(queue=self.queue, ctx=ctx, block=False)
        self.assertEqual(len(self.queue.items), 1)
        process_next(queue=self.queue, ctx=ctx, block=False)
        self.assertEqual(self.queue.items, [])
        self.assertEqual(mock_enhance.call_count, 2)


class RedisJobQueueTests(unittest.TestCase):
    @patch("backend.queue.redis.Redis.from_url")
    def test_enqueue_and_dequeue(self, mock_from_url):
        client = mock_from_url.return_value
        queue = RedisJobQueue(url="redis://localhost:6379/0")
        event = Event(
            name=LISTING_SUBMITTED,
            data={"listingId": "abc"},
            attempt=1,
            function_id="generate-listing",
        )

        queue.enqueue(event)
        key, raw = client.rpush.call_args.args
        self.assertEqual(key, "listwell:events")

        client.lpop.return_value = raw.encode("utf-8")
        self.assertEqual(queue.dequeue(block=False), event)

        client.blpop.return_value = None
        self.assertIsNone(queue.dequeue(timeout=1))


if __name__ == "__main__":
    unittest.main()
