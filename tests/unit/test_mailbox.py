"""Unit tests for live mailbox ingestion and its reconnect handling."""

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
HERE = os.path.dirname(os.path.abspath(__file__))
if HERE not in sys.path:
    sys.path.insert(0, HERE)


from evidence_ingest.errors import (  # noqa: E402
    ConnectionClosedError,
    InvalidMessageSetError,
    MailboxError,
    MailboxReconnectLimitError,
    PublishError,
)
from evidence_ingest.mailbox import (  # noqa: E402
    LiveMailboxIngestor,
    ProgressFeed,
    _mailbox_name,
    parse_envelope,
    xoauth2_string,
)
from fakes import FakeBus, FakeMailboxSession, envelopes  # noqa: E402


class SessionFactory:
    """Hands out scripted sessions in order, one per (re)connect."""

    def __init__(self, *sessions):
        self.sessions = list(sessions)
        self.created = []

    def __call__(self):
        session = self.sessions[len(self.created)]
        self.created.append(session)
        return session


class TestProgressFeed(unittest.TestCase):
    def test_values_then_closure(self):
        feed = ProgressFeed()
        feed.report(50)
        feed.report(100)
        feed.close()
        feed.close()
        self.assertEqual(list(feed), [50, 100])
        self.assertEqual(list(feed), [])
        self.assertTrue(feed.closed)

    def test_report_after_close_fails(self):
        feed = ProgressFeed()
        feed.close()
        with self.assertRaises(RuntimeError):
            feed.report(10)


class TestLiveMailboxIngestor(unittest.TestCase):
    def test_reconnect_resumes_with_unvisited_mailboxes(self):
        boxes = {"X": envelopes("x", 3), "Y": envelopes("y", 2), "Z": envelopes("z", 1)}
        first = FakeMailboxSession(boxes, select_errors={"Y": ConnectionClosedError("closed")})
        second = FakeMailboxSession(boxes)
        factory = SessionFactory(first, second)
        bus = FakeBus()

        result = LiveMailboxIngestor(factory, bus, "proj", batch_size=100).run()

        self.assertEqual(first.selected, ["X", "Y"])
        self.assertEqual(second.selected, ["Y", "Z"])
        self.assertEqual(result.completed, ["X", "Y", "Z"])
        self.assertEqual(result.reconnects, 1)
        subjects = [
            json.loads(payload)["subject"] for batch in bus.batches for _key, payload in batch
        ]
        self.assertEqual(sum(1 for s in subjects if s.startswith("x ")), 3)
        self.assertEqual(len(subjects), 6)
        self.assertTrue(first.logged_out)
        self.assertTrue(second.logged_out)

    def test_progress_after_each_flush_ends_at_100(self):
        session = FakeMailboxSession({"INBOX": envelopes("i", 5)})
        progress = ProgressFeed()
        LiveMailboxIngestor(
            SessionFactory(session), FakeBus(), "proj", progress=progress, batch_size=2
        ).run()
        self.assertEqual(list(progress), [40, 80, 100])

    def test_exact_multiple_reports_threshold_progress_only(self):
        session = FakeMailboxSession({"INBOX": envelopes("i", 4)})
        progress = ProgressFeed()
        LiveMailboxIngestor(
            SessionFactory(session), FakeBus(), "proj", progress=progress, batch_size=2
        ).run()
        self.assertEqual(list(progress), [50, 100])

    def test_invalid_message_set_skips_mailbox_with_warning(self):
        boxes = {"Calendar": envelopes("c", 1), "INBOX": envelopes("i", 1)}
        session = FakeMailboxSession(
            boxes, fetch_errors={"Calendar": InvalidMessageSetError("The specified message set is invalid.")}
        )
        bus = FakeBus()
        with self.assertLogs("evidence_ingest.mailbox", level="WARNING"):
            result = LiveMailboxIngestor(SessionFactory(session), bus, "proj").run()

        self.assertEqual(result.skipped, ["Calendar"])
        self.assertEqual(result.completed, ["INBOX"])
        self.assertEqual(len(bus.keys), 2)

    def test_other_errors_are_fatal_and_close_progress(self):
        session = FakeMailboxSession(
            {"INBOX": envelopes("i", 1)}, fetch_errors={"INBOX": MailboxError("NO server error")}
        )
        progress = ProgressFeed()
        with self.assertRaises(MailboxError):
            LiveMailboxIngestor(SessionFactory(session), FakeBus(), "proj", progress=progress).run()
        self.assertTrue(progress.closed)
        self.assertTrue(session.logged_out)

    def test_consumer_failure_still_awaits_producer(self):
        session = FakeMailboxSession({"INBOX": envelopes("i", 50)})
        with self.assertRaises(PublishError):
            LiveMailboxIngestor(
                SessionFactory(session), FakeBus(fail_on_call=1), "proj", batch_size=2
            ).run()

    def test_drop_while_fetching_discards_buffer_and_refetches(self):
        boxes = {"Y": envelopes("y", 5)}
        first = FakeMailboxSession(boxes, fetch_errors={"Y": ConnectionClosedError("closed")})
        second = FakeMailboxSession(boxes)
        bus = FakeBus()
        progress = ProgressFeed()

        with self.assertLogs("evidence_ingest.mailbox", level="WARNING"):
            result = LiveMailboxIngestor(
                SessionFactory(first, second), bus, "proj", progress=progress, batch_size=100
            ).run()

        subjects = [
            json.loads(payload)["subject"] for batch in bus.batches for _key, payload in batch
        ]
        self.assertEqual(sorted(subjects), [f"y {i}" for i in range(5)])
        self.assertEqual(list(progress), [100])
        self.assertEqual(result.completed, ["Y"])
        self.assertEqual(result.published, 5)
        self.assertEqual(result.reconnects, 1)
        self.assertTrue(first.logged_out)

    def test_drop_after_threshold_flush_keeps_delivered_batches_only(self):
        boxes = {"Y": envelopes("y", 5)}
        first = FakeMailboxSession(boxes, fetch_errors={"Y": ConnectionClosedError("closed")})
        second = FakeMailboxSession(boxes)
        bus = FakeBus()
        progress = ProgressFeed()

        result = LiveMailboxIngestor(
            SessionFactory(first, second), bus, "proj", progress=progress, batch_size=2
        ).run()

        # Two full batches went out before the drop; the fifth message did not.
        self.assertEqual([len(batch) for batch in bus.batches], [2, 2, 2, 2, 1])
        self.assertEqual(list(progress), [40, 80, 40, 80, 100])
        self.assertEqual(result.published, 5)

    def test_reconnect_limit(self):
        boxes = {"X": envelopes("x", 1)}
        closed = {"X": ConnectionClosedError("closed")}
        sessions = [FakeMailboxSession(boxes, select_errors=closed) for _ in range(3)]
        with self.assertRaises(MailboxReconnectLimitError):
            LiveMailboxIngestor(SessionFactory(*sessions), FakeBus(), "proj", max_reconnects=2).run()

    def test_empty_mailbox_is_completed_without_fetch(self):
        session = FakeMailboxSession({"Empty": []})
        progress = ProgressFeed()
        result = LiveMailboxIngestor(SessionFactory(session), FakeBus(), "proj", progress=progress).run()
        self.assertEqual(result.completed, ["Empty"])
        self.assertEqual(list(progress), [])


class TestImapHelpers(unittest.TestCase):
    def test_xoauth2_string(self):
        self.assertEqual(
            xoauth2_string("user@example.com", "tok"),
            "user=user@example.com\x01auth=Bearer tok\x01\x01",
        )

    def test_mailbox_name_from_list_response(self):
        self.assertEqual(_mailbox_name(b'(\\HasNoChildren) "/" "INBOX"'), "INBOX")
        self.assertEqual(_mailbox_name(b'(\\HasChildren) "/" "Sent Items"'), "Sent Items")
        self.assertEqual(_mailbox_name(b'(\\Noselect) "/" Archive'), "Archive")
        self.assertIsNone(_mailbox_name(b"garbage"))

    def test_parse_envelope(self):
        raw = (
            b"Message-ID: <abc@example.com>\r\n"
            b"Subject: Quarterly numbers\r\n"
            b"From: Alice <alice@example.com>\r\n"
            b"To: bob@example.com, Carol <carol@example.com>\r\n"
            b"Date: Thu, 01 Jan 1970 00:01:40 +0000\r\n\r\n"
        )
        envelope = parse_envelope(raw)
        self.assertEqual(envelope.message_id, "<abc@example.com>")
        self.assertEqual(envelope.subject, "Quarterly numbers")
        self.assertEqual(envelope.sender, "alice@example.com")
        self.assertEqual(envelope.to, "bob@example.com, carol@example.com")
        self.assertIsNone(envelope.cc)
        self.assertEqual(int(envelope.date.timestamp()), 100)


if __name__ == "__main__":
    unittest.main()
