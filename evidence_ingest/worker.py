"""
Celery tasks.

Ingestion runs one supervised unit of work per evidence item or mailbox
account; the remaining tasks read the indexed corpus for a project.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from celery import Celery

from .bus import RedisStreamBus
from .config import settings
from .db import SessionLocal
from .errors import IngestError
from .export import export_attachments
from .ingest import ingest_evidence, load_evidence
from .mailbox import ImapMailboxSession, LiveMailboxIngestor, ProgressFeed
from .network import get_network
from .search import MessageIndex, opensearch_client
from .storage import AttachmentSink, s3_client
from .tree import TreeStore

logger = logging.getLogger(__name__)

celery_app = Celery(
    "evidence-ingest", broker=settings.REDIS_URL, backend=settings.REDIS_URL
)

_sink: AttachmentSink | None = None
_bus: RedisStreamBus | None = None
_index: MessageIndex | None = None
_clients_lock = threading.Lock()


def get_sink() -> AttachmentSink:
    global _sink
    with _clients_lock:
        if _sink is None:
            _sink = AttachmentSink(s3_client())
        return _sink


def get_bus() -> RedisStreamBus:
    global _bus
    with _clients_lock:
        if _bus is None:
            _bus = RedisStreamBus.from_settings()
        return _bus


def get_index() -> MessageIndex:
    global _index
    with _clients_lock:
        if _index is None:
            _index = MessageIndex(opensearch_client())
            _index.ensure_index()
        return _index


@celery_app.task(
    name="evidence_ingest.worker.ingest_evidence_task",
    queue=settings.CELERY_INGEST_QUEUE,
    soft_time_limit=settings.INGEST_TASK_SOFT_TIME_LIMIT_S,
    time_limit=settings.INGEST_TASK_TIME_LIMIT_S,
)
def ingest_evidence_task(evidence_id: str) -> dict[str, Any]:
    logger.info("Starting evidence ingestion for %s", evidence_id)
    db = SessionLocal()
    try:
        try:
            evidence = load_evidence(db, evidence_id)
        except IngestError as e:
            logger.error("%s", e)
            return {"error": "Evidence not found"}
        result = ingest_evidence(db, evidence, get_sink(), get_bus())
        return result.to_dict()
    finally:
        db.close()


@celery_app.task(
    bind=True,
    name="evidence_ingest.worker.ingest_mailbox_task",
    queue=settings.CELERY_INGEST_QUEUE,
    soft_time_limit=settings.INGEST_TASK_SOFT_TIME_LIMIT_S,
    time_limit=settings.INGEST_TASK_TIME_LIMIT_S,
)
def ingest_mailbox_task(self: Any, project_id: str, email: str, token: str) -> dict[str, Any]:
    logger.info("Starting live mailbox ingestion for %s", email)
    progress = ProgressFeed()
    # request context is thread-local
    task_id = self.request.id

    def forward_progress() -> None:
        for percent in progress:
            self.update_state(task_id=task_id, state="PROGRESS", meta={"percent": percent})

    forwarder = threading.Thread(target=forward_progress, name="progress-forwarder", daemon=True)
    forwarder.start()
    try:
        ingestor = LiveMailboxIngestor(
            lambda: ImapMailboxSession(email, token),
            get_bus(),
            project_id,
            progress=progress,
        )
        result = ingestor.run()
    finally:
        progress.close()
        forwarder.join()

    return {
        "completed": result.completed,
        "skipped": result.skipped,
        "published": result.published,
        "reconnects": result.reconnects,
    }


@celery_app.task(
    name="evidence_ingest.worker.build_network_task",
    queue=settings.CELERY_INGEST_QUEUE,
)
def build_network_task(project_id: str) -> dict[str, Any]:
    return get_network(project_id, get_index()).to_dict()


@celery_app.task(
    name="evidence_ingest.worker.export_attachments_task",
    queue=settings.CELERY_INGEST_QUEUE,
    soft_time_limit=settings.INGEST_TASK_SOFT_TIME_LIMIT_S,
    time_limit=settings.INGEST_TASK_TIME_LIMIT_S,
)
def export_attachments_task(project_id: str, extensions: list[str]) -> dict[str, Any]:
    logger.info("Exporting %s attachments for project %s", extensions, project_id)
    key = export_attachments(extensions, project_id, get_index(), get_sink())
    return {"project_id": project_id, "key": key}


@celery_app.task(
    name="evidence_ingest.worker.folder_messages_task",
    queue=settings.CELERY_INGEST_QUEUE,
)
def folder_messages_task(project_id: str, folder_id: str) -> list[dict[str, Any]]:
    """Messages filed in a folder or any of its sub-folders."""
    db = SessionLocal()
    try:
        folder_ids = [folder_id, *TreeStore(db).walk_ids(folder_id)]
    finally:
        db.close()
    messages = get_index().messages_in_folders(folder_ids, project_id)
    return [message.to_payload() for message in messages]


@celery_app.task(
    name="evidence_ingest.worker.search_messages_task",
    queue=settings.CELERY_INGEST_QUEUE,
)
def search_messages_task(project_id: str, query: str) -> list[dict[str, Any]]:
    return [message.to_payload() for message in get_index().search(query, project_id)]


@celery_app.task(
    name="evidence_ingest.worker.get_message_task",
    queue=settings.CELERY_INGEST_QUEUE,
)
def get_message_task(project_id: str, message_uuid: str) -> dict[str, Any]:
    message = get_index().message_by_uuid(message_uuid, project_id)
    if message is None:
        return {"error": "Message not found"}
    return message.to_payload()
