"""
Error taxonomy for evidence ingestion.

Fatal to an evidence item:
    DecoderError, UnsupportedEvidenceError, EvidenceAlreadyParsedError,
    TreePersistError, PublishError
Recoverable per record:
    AttachmentExtractionError
Recoverable per mailbox (live ingestion):
    ConnectionClosedError, InvalidMessageSetError

Only the top-level entry points (ingest.ingest_evidence and
LiveMailboxIngestor.run) decide whether an error is fatal.
"""

from __future__ import annotations


class IngestError(Exception):
    """Base class for ingestion failures."""


class DecoderError(IngestError):
    """The container could not be opened or has an invalid structure."""


class UnsupportedEvidenceError(IngestError):
    """No registered decoder supports the evidence file."""


class EvidenceAlreadyParsedError(IngestError):
    """The evidence item has already been ingested."""


class TreePersistError(IngestError):
    """A TreeNode could not be persisted."""


class PublishError(IngestError):
    """The message bus rejected a batch."""


class AttachmentExtractionError(IngestError):
    """A single attachment could not be written, uploaded or cleaned up."""

    def __init__(self, attachment_id: str, name: str, stage: str, cause: BaseException):
        self.attachment_id = attachment_id
        self.name = name
        self.stage = stage
        self.cause = cause
        super().__init__(f"attachment {attachment_id} ({name}) failed at {stage}: {cause}")


class AttachmentNotFoundError(IngestError):
    """The attachment object does not exist in the sink."""


class SinkNotConfiguredError(IngestError):
    """Attachment extraction was attempted without an attachment sink."""


class MailboxError(IngestError):
    """Base class for live mailbox failures."""


class ConnectionClosedError(MailboxError):
    """The mailbox session dropped its connection."""


class InvalidMessageSetError(MailboxError):
    """The server rejected the fetched message set."""


class MailboxReconnectLimitError(MailboxError):
    """Too many reconnects during one live ingestion."""
