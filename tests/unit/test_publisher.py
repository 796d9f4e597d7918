"""Unit tests for fixed-size batch publishing."""

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


from evidence_ingest.errors import PublishError  # noqa: E402
from evidence_ingest.publisher import BatchPublisher  # noqa: E402
from evidence_ingest.schemas import Message  # noqa: E402
from fakes import FakeBus  # noqa: E402


def _messages(count):
    return [Message(uuid=f"m{i:03d}", project_uuid="p", subject=f"s{i}") for i in range(count)]


class TestBatchPublisher(unittest.TestCase):
    def test_250_messages_publish_as_100_100_50_in_order(self):
        bus = FakeBus()
        publisher = BatchPublisher(bus, batch_size=100)
        messages = _messages(250)
        for message in messages:
            publisher.add(message)
        publisher.close()

        self.assertEqual([len(b) for b in bus.batches], [100, 100, 50])
        self.assertEqual(bus.keys, [m.uuid for m in messages])
        self.assertEqual(publisher.publish_calls, 3)
        self.assertEqual(publisher.published_count, 250)

    def test_payload_is_message_json(self):
        bus = FakeBus()
        publisher = BatchPublisher(bus, batch_size=10)
        publisher.add(Message(uuid="m1", project_uuid="p", subject="Hi"))
        publisher.flush()

        key, payload = bus.batches[0][0]
        self.assertEqual(key, "m1")
        self.assertEqual(json.loads(payload)["subject"], "Hi")

    def test_flush_without_buffer_does_not_publish(self):
        bus = FakeBus()
        publisher = BatchPublisher(bus, batch_size=5)
        for message in _messages(5):
            publisher.add(message)
        publisher.flush()
        self.assertEqual(bus.calls, 1)
        self.assertEqual(publisher.pending, 0)

    def test_on_flush_reports_totals_and_trailing_flag(self):
        seen = []
        publisher = BatchPublisher(
            FakeBus(), batch_size=2, on_flush=lambda total, trailing: seen.append((total, trailing))
        )
        for message in _messages(5):
            publisher.add(message)
        publisher.flush()
        self.assertEqual(seen, [(2, False), (4, False), (5, True)])

    def test_discard_drops_buffer_without_publishing(self):
        bus = FakeBus()
        publisher = BatchPublisher(bus, batch_size=10)
        for message in _messages(3):
            publisher.add(message)
        self.assertEqual(publisher.discard(), 3)
        publisher.flush()
        self.assertEqual(bus.calls, 0)
        self.assertEqual(publisher.published_count, 0)

    def test_publish_error_propagates(self):
        publisher = BatchPublisher(FakeBus(fail_on_call=1), batch_size=2)
        publisher.add(_messages(1)[0])
        with self.assertRaises(PublishError):
            publisher.add(_messages(2)[1])


if __name__ == "__main__":
    unittest.main()
