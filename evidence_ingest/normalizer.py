"""
Maps decoder-native messages onto the canonical Message record.

Every decoder accessor may fail on its own; a failing field is logged and left
empty, it never aborts the message. Attachments are extracted one at a time:
filename, write to temp storage, upload to the sink, remove the temp file.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, TypeVar

from .config import settings
from .decoders.base import DecodedAttachment, DecodedContainer, DecodedMessage, FieldUnavailable
from .errors import AttachmentExtractionError, SinkNotConfiguredError
from .models import new_id
from .schemas import EMPTY_FILENAME, Attachment, Message
from .storage import AttachmentSink, object_key

logger = logging.getLogger(__name__)

T = TypeVar("T")

APPOINTMENT_CLASS = "IPM.Appointment"
CONTACT_CLASS = "IPM.Contact"

_APPOINTMENT_FIELDS = (
    ("All attendees", "appointment_all_attendees"),
    ("Location", "appointment_location"),
    ("Start time", "appointment_start_time"),
    ("End time", "appointment_end_time"),
)

_CONTACT_FIELDS = (
    ("Given name", "contact_given_name"),
    ("Email display name", "contact_email_display_name"),
    ("Company name", "contact_company_name"),
    ("Business phone number", "contact_business_phone_number"),
    ("Mobile phone number", "contact_mobile_phone_number"),
)


@dataclass
class NormalizedMessage:
    message: Message
    errors: list[AttachmentExtractionError] = field(default_factory=list)


def _safe(accessor: Callable[[], T], label: str) -> T | None:
    """Call a decoder accessor, returning None when the field cannot be read."""
    try:
        return accessor()
    except FieldUnavailable:
        return None
    except Exception as e:
        logger.debug("Error accessing %s: %s", label, str(e)[:100])
        return None


def _safe_field(decoded: Any, name: str) -> Any:
    accessor = getattr(decoded, name, None)
    if accessor is None:
        return None
    return _safe(accessor, name)


def to_epoch(value: datetime) -> int:
    """Epoch seconds; naive datetimes from decoders are UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def received_epoch(decoded: DecodedMessage) -> int:
    try:
        received = decoded.received_date()
        return to_epoch(received)
    except Exception as e:
        logger.error("Failed to get received date: %s", e)
        return 0


def synthesize_body(decoded: DecodedMessage) -> str:
    """Class-specific summary lines followed by the best available body."""
    lines: list[str] = []
    message_class = _safe_field(decoded, "message_class")
    fields: tuple[tuple[str, str], ...] = ()
    if message_class == APPOINTMENT_CLASS:
        fields = _APPOINTMENT_FIELDS
    elif message_class == CONTACT_CLASS:
        fields = _CONTACT_FIELDS

    for label, accessor in fields:
        value = _safe_field(decoded, accessor)
        if value is not None:
            lines.append(f"{label}: {value}\n")

    body = _safe_field(decoded, "body_html")
    if body is None:
        body = _safe_field(decoded, "body")
    if body is not None:
        lines.append("\n")
        lines.append(str(body))
    return "".join(lines)


class MessageNormalizer:
    def __init__(
        self,
        sink: AttachmentSink | None,
        project_id: str,
        temp_dir: str | Path | None = None,
    ) -> None:
        self.sink = sink
        self.project_id = project_id
        self.temp_dir = Path(temp_dir or settings.TEMP_DIR) / project_id

    def extract_attachment(
        self, attachment: DecodedAttachment
    ) -> tuple[Attachment, AttachmentExtractionError | None]:
        if self.sink is None:
            raise SinkNotConfiguredError("attachment extraction requires a sink")

        attachment_id = new_id()
        try:
            name = attachment.filename() or EMPTY_FILENAME
        except Exception as e:
            logger.error("Failed to get attachment filename, using default: %s", e)
            name = EMPTY_FILENAME
        record = Attachment(uuid=attachment_id, name=name)

        path = self.temp_dir / attachment_id
        stage = "write"
        try:
            self.temp_dir.mkdir(parents=True, exist_ok=True)
            attachment.write_to(path)
            stage = "upload"
            self.sink.put(object_key(self.project_id, attachment_id), path)
            stage = "cleanup"
            path.unlink()
        except Exception as e:
            logger.error("Attachment %s (%s) failed at %s: %s", attachment_id, name, stage, e)
            if stage != "cleanup":
                try:
                    path.unlink(missing_ok=True)
                except OSError as cleanup_error:
                    logger.warning("Failed to remove %s: %s", path, cleanup_error)
            return record, AttachmentExtractionError(attachment_id, name, stage, e)

        return record, None

    def normalize(
        self,
        decoded: DecodedMessage,
        container: DecodedContainer,
        folder_id: str,
        evidence_id: str,
    ) -> NormalizedMessage:
        attachments: list[Attachment] = []
        errors: list[AttachmentExtractionError] = []
        for attachment in container.get_attachments(decoded):
            record, error = self.extract_attachment(attachment)
            attachments.append(record)
            if error is not None:
                errors.append(error)

        message = Message(
            uuid=new_id(),
            project_uuid=self.project_id,
            message_id=_safe_field(decoded, "message_id") or "",
            subject=_safe_field(decoded, "subject") or "",
            sender=_safe_field(decoded, "sender") or "",
            to=_safe_field(decoded, "to") or "",
            cc=_safe_field(decoded, "cc") or "",
            received=received_epoch(decoded),
            size=_safe_field(decoded, "size") or "",
            body=synthesize_body(decoded),
            headers=_safe_field(decoded, "headers") or "",
            attachments=attachments,
            folder_uuid=folder_id,
            evidence_uuid=evidence_id,
        )
        return NormalizedMessage(message, errors)

    def from_envelope(
        self,
        message_id: str | None,
        subject: str | None,
        sender: str | None,
        to: str | None,
        cc: str | None,
        received: datetime | None,
    ) -> Message:
        """Envelope-only record for live mailbox messages."""
        epoch = 0
        if received is not None:
            epoch = to_epoch(received)
        return Message(
            uuid=new_id(),
            project_uuid=self.project_id,
            message_id=message_id or "",
            subject=subject or "",
            sender=sender or "",
            to=to or "",
            cc=cc or "",
            received=epoch,
        )
