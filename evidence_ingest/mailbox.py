"""
Live mailbox ingestion over IMAP.

Each mailbox is streamed by a producer thread that fetches envelopes into a
queue while the calling thread normalizes and batch-publishes them. A dropped
connection re-authenticates and resumes with the mailboxes not yet completed,
up to MAILBOX_MAX_RECONNECTS times.
"""

from __future__ import annotations

import imaplib
import logging
import queue
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email import policy
from email.parser import BytesParser
from email.utils import getaddresses, parsedate_to_datetime
from typing import Any, Callable, Iterator, Protocol

from .bus import MessageBus
from .config import settings
from .errors import (
    ConnectionClosedError,
    InvalidMessageSetError,
    MailboxError,
    MailboxReconnectLimitError,
)
from .normalizer import MessageNormalizer
from .publisher import BatchPublisher

logger = logging.getLogger(__name__)

INVALID_MESSAGE_SET = "the specified message set is invalid"
ENVELOPE_FIELDS = "(BODY.PEEK[HEADER.FIELDS (MESSAGE-ID SUBJECT FROM TO CC DATE)])"

_LIST_RE = re.compile(rb'\((?P<flags>[^)]*)\) (?P<delim>"[^"]*"|NIL) (?P<name>.+)')
_END = object()


class ProgressFeed:
    """Thread-safe stream of progress percentages, closed exactly once."""

    def __init__(self) -> None:
        self._queue: queue.Queue[Any] = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False

    def report(self, percent: int) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("progress feed is closed")
            self._queue.put(percent)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_END)

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self) -> Iterator[int]:
        while True:
            item = self._queue.get()
            if item is _END:
                # Leave the sentinel for any other reader.
                self._queue.put(_END)
                return
            yield item


@dataclass
class Envelope:
    message_id: str | None = None
    subject: str | None = None
    sender: str | None = None
    to: str | None = None
    cc: str | None = None
    date: datetime | None = None


class MailboxSession(Protocol):
    def list_mailboxes(self) -> list[str]: ...

    def select(self, name: str) -> int: ...

    def fetch_envelopes(self, count: int) -> Iterator[Envelope]: ...

    def logout(self) -> None: ...


def xoauth2_string(user: str, token: str) -> str:
    return f"user={user}\x01auth=Bearer {token}\x01\x01"


def _addresses(value: Any) -> str | None:
    if value is None:
        return None
    pairs = getaddresses([str(value)])
    return ", ".join(addr or name for name, addr in pairs if addr or name)


def parse_envelope(raw_headers: bytes) -> Envelope:
    msg = BytesParser(policy=policy.default).parsebytes(raw_headers, headersonly=True)
    envelope = Envelope(
        message_id=str(msg["Message-ID"]).strip() if msg["Message-ID"] else None,
        subject=str(msg["Subject"]) if msg["Subject"] is not None else None,
        sender=_addresses(msg["From"]),
        to=_addresses(msg["To"]),
        cc=_addresses(msg["Cc"]),
    )
    date = msg["Date"]
    if date:
        try:
            parsed = parsedate_to_datetime(str(date))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            envelope.date = parsed
        except (TypeError, ValueError) as e:
            logger.debug("Unparseable envelope date %r: %s", str(date), e)
    return envelope


def _mailbox_name(line: bytes) -> str | None:
    match = _LIST_RE.match(line)
    if not match:
        return None
    name = match.group("name").strip()
    if name.startswith(b'"') and name.endswith(b'"'):
        name = name[1:-1].replace(b'\\"', b'"').replace(b"\\\\", b"\\")
    return name.decode("utf-8", errors="replace")


def _quote(name: str) -> str:
    return '"' + name.replace("\\", "\\\\").replace('"', '\\"') + '"'


class ImapMailboxSession:
    """IMAP4 over TLS authenticated with XOAUTH2."""

    def __init__(
        self,
        user: str,
        token: str,
        host: str | None = None,
        port: int | None = None,
        timeout: float | None = None,
        connect: Callable[..., imaplib.IMAP4] = imaplib.IMAP4_SSL,
    ) -> None:
        self.user = user
        host = host or settings.IMAP_HOST
        port = port or settings.IMAP_PORT
        timeout = timeout or settings.IMAP_TIMEOUT_S
        try:
            self.client = connect(host, port, timeout=timeout)
            self.client.authenticate(
                "XOAUTH2", lambda _challenge: xoauth2_string(user, token).encode()
            )
        except imaplib.IMAP4.abort as e:
            raise ConnectionClosedError(str(e)) from e
        except (imaplib.IMAP4.error, OSError) as e:
            raise MailboxError(f"IMAP authentication failed for {user}: {e}") from e
        logger.info("Authenticated IMAP session for %s", user)

    def _command(self, name: str, *args: Any) -> tuple[str, list[Any]]:
        try:
            typ, data = getattr(self.client, name)(*args)
        except imaplib.IMAP4.abort as e:
            raise ConnectionClosedError(str(e)) from e
        except OSError as e:
            raise ConnectionClosedError(str(e)) from e
        except imaplib.IMAP4.error as e:
            if INVALID_MESSAGE_SET in str(e).lower():
                raise InvalidMessageSetError(str(e)) from e
            raise MailboxError(f"IMAP {name} failed: {e}") from e
        if typ != "OK":
            text = b" ".join(d for d in data if isinstance(d, bytes)).decode(
                "utf-8", errors="replace"
            )
            if INVALID_MESSAGE_SET in text.lower():
                raise InvalidMessageSetError(text)
            raise MailboxError(f"IMAP {name} returned {typ}: {text}")
        return typ, data

    def list_mailboxes(self) -> list[str]:
        _, data = self._command("list")
        names: list[str] = []
        for line in data:
            if not isinstance(line, bytes):
                continue
            name = _mailbox_name(line)
            if name is not None:
                names.append(name)
        return names

    def select(self, name: str) -> int:
        _, data = self._command("select", _quote(name), True)
        try:
            return int(data[0])
        except (TypeError, ValueError, IndexError):
            return 0

    def fetch_envelopes(self, count: int) -> Iterator[Envelope]:
        _, data = self._command("fetch", f"1:{count}", ENVELOPE_FIELDS)
        for item in data:
            if isinstance(item, tuple) and len(item) >= 2 and isinstance(item[1], bytes):
                yield parse_envelope(item[1])

    def logout(self) -> None:
        try:
            self.client.logout()
        except (imaplib.IMAP4.error, OSError) as e:
            raise ConnectionClosedError(str(e)) from e


@dataclass
class LiveIngestResult:
    completed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    published: int = 0
    reconnects: int = 0


class LiveMailboxIngestor:
    def __init__(
        self,
        session_factory: Callable[[], MailboxSession],
        bus: MessageBus,
        project_id: str,
        progress: ProgressFeed | None = None,
        max_reconnects: int | None = None,
        batch_size: int | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.bus = bus
        self.project_id = project_id
        self.progress = progress or ProgressFeed()
        self.max_reconnects = (
            settings.MAILBOX_MAX_RECONNECTS if max_reconnects is None else max_reconnects
        )
        self.batch_size = batch_size
        self.normalizer = MessageNormalizer(None, project_id)

    def run(self) -> LiveIngestResult:
        """Ingest every mailbox once; closes the progress feed on exit."""
        result = LiveIngestResult()
        session: MailboxSession | None = None
        try:
            session = self.session_factory()
            names = session.list_mailboxes()
            visited: set[str] = set()
            pending = list(names)
            while pending:
                name = pending[0]
                try:
                    published = self._ingest_mailbox(session, name, result)
                except ConnectionClosedError as e:
                    if result.reconnects >= self.max_reconnects:
                        raise MailboxReconnectLimitError(
                            f"gave up after {result.reconnects} reconnects"
                        ) from e
                    result.reconnects += 1
                    logger.warning(
                        "IMAP connection closed, retrying (%d/%d): %s",
                        result.reconnects,
                        self.max_reconnects,
                        e,
                    )
                    self._logout(session)
                    session = None
                    session = self.session_factory()
                    pending = [n for n in names if n not in visited]
                    continue
                result.published += published
                visited.add(name)
                pending.pop(0)
        finally:
            self.progress.close()
            if session is not None:
                self._logout(session)
        logger.info(
            "Live ingestion finished: %d mailboxes, %d messages, %d reconnects",
            len(result.completed),
            result.published,
            result.reconnects,
        )
        return result

    def _ingest_mailbox(
        self, session: MailboxSession, name: str, result: LiveIngestResult
    ) -> int:
        logger.info("Parsing mailbox: %s", name)
        count = session.select(name)
        if count <= 0:
            logger.info("Mailbox %s is empty", name)
            result.completed.append(name)
            return 0

        def report(total: int, trailing: bool) -> None:
            self.progress.report(100 if trailing else int(total / count * 100))

        publisher = BatchPublisher(self.bus, self.batch_size, on_flush=report)
        items: queue.Queue[Any] = queue.Queue(maxsize=publisher.batch_size * 2)
        stop = threading.Event()

        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="imap-fetch") as executor:
            future = executor.submit(self._produce, session, count, items, stop)
            try:
                self._consume(items, publisher)
            finally:
                stop.set()
                producer_error = future.exception()

        if producer_error is not None and not isinstance(producer_error, InvalidMessageSetError):
            # The mailbox is fetched again from the start after a reconnect.
            dropped = publisher.discard()
            if dropped:
                logger.warning("Discarded %d unpublished messages from %s", dropped, name)
            raise producer_error

        publisher.flush()
        if isinstance(producer_error, InvalidMessageSetError):
            logger.warning("Skipping mailbox %s: %s", name, producer_error)
            result.skipped.append(name)
            return publisher.published_count

        result.completed.append(name)
        return publisher.published_count

    @staticmethod
    def _logout(session: MailboxSession) -> None:
        try:
            session.logout()
        except MailboxError as e:
            logger.warning("IMAP logout failed: %s", e)

    @staticmethod
    def _offer(items: queue.Queue[Any], item: Any, stop: threading.Event) -> bool:
        while not stop.is_set():
            try:
                items.put(item, timeout=0.1)
                return True
            except queue.Full:
                continue
        return False

    def _produce(
        self,
        session: MailboxSession,
        count: int,
        items: queue.Queue[Any],
        stop: threading.Event,
    ) -> None:
        try:
            for envelope in session.fetch_envelopes(count):
                if not self._offer(items, envelope, stop):
                    return
        finally:
            self._offer(items, _END, stop)

    def _consume(self, items: queue.Queue[Any], publisher: BatchPublisher) -> None:
        while True:
            envelope = items.get()
            if envelope is _END:
                return
            publisher.add(
                self.normalizer.from_envelope(
                    message_id=envelope.message_id,
                    subject=envelope.subject,
                    sender=envelope.sender,
                    to=envelope.to,
                    cc=envelope.cc,
                    received=envelope.date,
                )
            )
