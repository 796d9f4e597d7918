"""
Evidence ingestion entry point.

ingest_evidence() is the only place that decides whether a failure aborts an
evidence item. Fatal errors roll back the session so the tree store is left
untouched and the evidence stays unparsed; attachment failures are collected
and only raised when ATTACHMENT_FAILURES_FATAL is set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePath
from typing import Sequence

from sqlalchemy.orm import Session

from .bus import MessageBus
from .config import settings
from .decoders import DecodedContainer, DecodedFolder, FormatDecoder, select_decoder
from .errors import AttachmentExtractionError, EvidenceAlreadyParsedError, IngestError
from .models import Evidence, TreeNode
from .normalizer import MessageNormalizer
from .publisher import BatchPublisher
from .storage import AttachmentSink, object_key
from .tree import FolderTreeBuilder, TreeArena, TreeStore

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    evidence_id: str
    decoder: str
    tree_nodes: int = 0
    messages: int = 0
    publish_calls: int = 0
    attachment_failures: list[AttachmentExtractionError] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "evidence_id": self.evidence_id,
            "decoder": self.decoder,
            "tree_nodes": self.tree_nodes,
            "messages": self.messages,
            "publish_calls": self.publish_calls,
            "attachment_failures": len(self.attachment_failures),
        }


def load_evidence(session: Session, evidence_id: str) -> Evidence:
    evidence = session.get(Evidence, evidence_id)
    if evidence is None:
        raise IngestError(f"evidence {evidence_id} not found")
    return evidence


def _walk_and_publish(
    session: Session,
    evidence: Evidence,
    container: DecodedContainer,
    normalizer: MessageNormalizer,
    publisher: BatchPublisher,
    result: IngestResult,
    attachment_failures_fatal: bool,
) -> TreeArena:
    def visit(folder: DecodedFolder, node: TreeNode) -> None:
        count = 0
        for decoded in container.list_messages(folder):
            normalized = normalizer.normalize(decoded, container, node.folder_id, evidence.id)
            for error in normalized.errors:
                if attachment_failures_fatal:
                    raise error
                result.attachment_failures.append(error)
            publisher.add(normalized.message)
            count += 1
        if count:
            logger.info("Found %d messages in %s", count, folder.display_name)
        result.messages += count

    builder = FolderTreeBuilder(TreeStore(session), evidence)
    arena = builder.build(container, visit)
    publisher.flush()
    return arena


def ingest_evidence(
    session: Session,
    evidence: Evidence,
    sink: AttachmentSink,
    bus: MessageBus,
    decoders: Sequence[FormatDecoder] | None = None,
    evidence_path: str | Path | None = None,
    temp_dir: str | Path | None = None,
    batch_size: int | None = None,
    attachment_failures_fatal: bool | None = None,
) -> IngestResult:
    """
    Decode one evidence container into tree nodes and published messages.

    Args:
        session: Session owning the evidence row; committed on success
        evidence: Evidence row to ingest
        sink: Attachment sink; also the source of the evidence file when
            evidence_path is not given
        bus: Message bus the batches are published to
        decoders: Decoder registry override
        evidence_path: Local copy of the container, if already on disk

    Raises:
        EvidenceAlreadyParsedError: evidence.is_parsed is already set
        UnsupportedEvidenceError: no decoder claims the file extension
        DecoderError, TreePersistError, PublishError: the item is aborted
    """
    if evidence.is_parsed:
        raise EvidenceAlreadyParsedError(f"evidence {evidence.id} is already parsed")

    decoder = select_decoder(evidence.file_name, decoders)
    if attachment_failures_fatal is None:
        attachment_failures_fatal = settings.ATTACHMENT_FAILURES_FATAL
    temp_root = Path(temp_dir or settings.TEMP_DIR)
    result = IngestResult(evidence_id=evidence.id, decoder=decoder.name)

    downloaded: Path | None = None
    try:
        if evidence_path is None:
            temp_root.mkdir(parents=True, exist_ok=True)
            suffix = PurePath(evidence.file_name).suffix.lower()
            downloaded = temp_root / f"{evidence.id}{suffix}"
            sink.download_to(object_key(evidence.project_id, evidence.file_hash), downloaded)
            evidence_path = downloaded

        logger.info("Parsing file: %s with %s decoder", evidence.file_hash, decoder.name)
        container = decoder.open(Path(evidence_path))
        try:
            normalizer = MessageNormalizer(sink, evidence.project_id, temp_root)
            publisher = BatchPublisher(bus, batch_size=batch_size)
            arena = _walk_and_publish(
                session,
                evidence,
                container,
                normalizer,
                publisher,
                result,
                attachment_failures_fatal,
            )
        finally:
            container.close()

        result.tree_nodes = len(arena)
        result.publish_calls = publisher.publish_calls
        evidence.is_parsed = True
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error("Failed to parse evidence %s: %s", result.evidence_id, e)
        raise
    finally:
        if downloaded is not None:
            try:
                downloaded.unlink(missing_ok=True)
            except OSError as cleanup_error:
                logger.warning("Failed to remove %s: %s", downloaded, cleanup_error)

    if result.attachment_failures:
        logger.warning(
            "Evidence %s parsed with %d attachment failures",
            evidence.id,
            len(result.attachment_failures),
        )
    logger.info("Finished parsing file: %s (%s)", evidence.file_hash, result.to_dict())
    return result
