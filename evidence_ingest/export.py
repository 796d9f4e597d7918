from __future__ import annotations

import logging
import shutil
from pathlib import Path, PurePath
from typing import Iterable

from .config import settings
from .errors import AttachmentNotFoundError
from .models import new_id
from .schemas import Attachment
from .search import MessageIndex
from .storage import AttachmentSink, object_key
from .ziputil import zip_directory

logger = logging.getLogger(__name__)

ALL_EXTENSIONS = "*"


def matches_extension(name: str, extensions: Iterable[str]) -> bool:
    for extension in extensions:
        if extension == ALL_EXTENSIONS or name.endswith(extension):
            return True
    return False


def export_file_name(attachment: Attachment) -> str:
    """<stem>-<uuid><ext>, with any directory part of the name dropped."""
    name = PurePath(attachment.name.replace("\\", "/")).name or attachment.uuid
    path = PurePath(name)
    return f"{path.stem}-{attachment.uuid}{path.suffix}"


def export_attachments(
    extensions: list[str],
    project_id: str,
    index: MessageIndex,
    sink: AttachmentSink,
    temp_dir: str | Path | None = None,
) -> str:
    """
    Bundle a project's attachments into one uploaded ZIP.

    Attachments whose object is missing from the sink are skipped with a
    warning. Returns the object key of the uploaded archive.
    """
    export_id = new_id()
    project_dir = Path(temp_dir or settings.TEMP_DIR) / project_id
    export_dir = project_dir / export_id
    archive_path = project_dir / f"{export_id}.zip"
    export_dir.mkdir(parents=True, exist_ok=True)

    exported = 0
    skipped = 0
    try:
        for message in index.all_messages(project_id):
            for attachment in message.attachments:
                if not matches_extension(attachment.name, extensions):
                    continue
                destination = export_dir / export_file_name(attachment)
                try:
                    sink.download_to(object_key(project_id, attachment.uuid), destination)
                except AttachmentNotFoundError as e:
                    logger.warning("Failed to export attachment %s: %s", attachment.uuid, e)
                    destination.unlink(missing_ok=True)
                    skipped += 1
                    continue
                exported += 1

        zip_directory(export_dir, archive_path)
        key = sink.put(object_key(project_id, f"{export_id}.zip"), archive_path)
    finally:
        shutil.rmtree(export_dir, ignore_errors=True)
        archive_path.unlink(missing_ok=True)

    logger.info(
        "Done exporting attachments for %s: %d exported, %d missing", project_id, exported, skipped
    )
    return key
