"""Unit tests for the canonical message record and its wire payload."""

import json
import os
import sys
import unittest


# Provide minimal env for Settings validation during import.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("USE_AWS_SERVICES", "true")
os.environ.setdefault("MINIO_BUCKET", "test-bucket")

# Ensure the package is importable when running from repo root.
TEST_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if TEST_ROOT not in sys.path:
    sys.path.insert(0, TEST_ROOT)


from evidence_ingest.schemas import (  # noqa: E402
    EMPTY_FILENAME,
    NULL_SENTINEL,
    Attachment,
    Message,
    is_null,
    null_if_empty,
)


class TestNullSentinel(unittest.TestCase):
    def test_empty_and_whitespace_strings_become_null(self):
        self.assertEqual(null_if_empty(""), NULL_SENTINEL)
        self.assertEqual(null_if_empty("   \t"), NULL_SENTINEL)
        self.assertEqual(null_if_empty("x"), "x")
        self.assertEqual(null_if_empty(0), 0)

    def test_is_null(self):
        self.assertTrue(is_null(None))
        self.assertTrue(is_null("NULL"))
        self.assertTrue(is_null("  "))
        self.assertFalse(is_null("<id@example.com>"))


class TestMessagePayload(unittest.TestCase):
    def test_payload_replaces_empty_fields_and_uses_from_alias(self):
        message = Message(uuid="m1", project_uuid="p1", sender="alice@example.com")
        payload = message.to_payload()

        self.assertEqual(payload["from"], "alice@example.com")
        self.assertNotIn("sender", payload)
        for key in ("message_id", "subject", "to", "cc", "size", "body", "headers"):
            self.assertEqual(payload[key], NULL_SENTINEL, key)
        self.assertEqual(payload["received"], 0)
        self.assertEqual(payload["attachments"], [])

    def test_json_round_trips_through_alias(self):
        message = Message(
            uuid="m1",
            project_uuid="p1",
            subject="Hello",
            attachments=[Attachment(uuid="a1", name="report.pdf")],
        )
        decoded = json.loads(message.to_json())
        again = Message.model_validate(decoded)
        self.assertEqual(again.subject, "Hello")
        self.assertEqual(again.attachments[0].name, "report.pdf")
        self.assertEqual(again.sender, NULL_SENTINEL)

    def test_negative_received_is_clamped(self):
        self.assertEqual(Message(uuid="m", project_uuid="p", received=-86400).received, 0)
        self.assertEqual(Message(uuid="m", project_uuid="p", received="junk").received, 0)
        self.assertEqual(Message(uuid="m", project_uuid="p", received=None).received, 0)
        self.assertEqual(Message(uuid="m", project_uuid="p", received=1700000000).received, 1700000000)


class TestAttachment(unittest.TestCase):
    def test_missing_name_defaults_to_sentinel(self):
        self.assertEqual(Attachment(uuid="a").name, EMPTY_FILENAME)
        self.assertEqual(Attachment(uuid="a", name=None).name, EMPTY_FILENAME)
        self.assertEqual(Attachment(uuid="a", name="  ").name, EMPTY_FILENAME)


if __name__ == "__main__":
    unittest.main()
