"""PST/OST decoder backed by libpff (pypff)."""

# pyright: reportMissingImports=false, reportUnknownMemberType=false

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Sequence

from ..errors import DecoderError
from .base import FieldUnavailable, UnavailableFieldsMixin

logger = logging.getLogger(__name__)

# MAPI property tags
PR_MESSAGE_CLASS = 0x001A
PR_MESSAGE_SIZE = 0x0E08
PR_DISPLAY_TO = 0x0E04
PR_DISPLAY_CC = 0x0E03
PR_INTERNET_MESSAGE_ID = 0x1035
PR_START_DATE = 0x0060
PR_END_DATE = 0x0061
PR_DISPLAY_NAME = 0x3001
PR_GIVEN_NAME = 0x3A06
PR_BUSINESS_TELEPHONE_NUMBER = 0x3A08
PR_COMPANY_NAME = 0x3A16
PR_MOBILE_TELEPHONE_NUMBER = 0x3A1C
PR_ATTACH_FILENAME = 0x3704
PR_ATTACH_LONG_FILENAME = 0x3707
PID_LID_LOCATION = 0x8208


def _decode(raw: Any) -> str:
    if raw is None:
        raise FieldUnavailable("empty")
    if isinstance(raw, bytes):
        for encoding in ("utf-8", "cp1252"):
            try:
                return raw.decode(encoding)
            except UnicodeDecodeError:
                continue
        return raw.decode("utf-8", errors="replace")
    return str(raw)


def _attr(obj: Any, name: str) -> Any:
    """Read a pypff attribute, turning libpff failures into FieldUnavailable."""
    try:
        value = getattr(obj, name)
    except (AttributeError, OSError, IOError, RuntimeError, SystemError) as e:
        raise FieldUnavailable(name) from e
    if value is None or value == "":
        raise FieldUnavailable(name)
    return value


def _entries(item: Any) -> Iterator[Any]:
    record_sets = getattr(item, "record_sets", None) or []
    for record_set in record_sets:
        try:
            count = record_set.number_of_entries
        except (OSError, IOError, RuntimeError):
            continue
        for index in range(count):
            try:
                yield record_set.get_entry(index)
            except (OSError, IOError, RuntimeError):
                continue


def _property(item: Any, tag: int) -> Any:
    """Look up a MAPI property entry on a pypff item."""
    for entry in _entries(item):
        try:
            if entry.entry_type == tag:
                return entry
        except (OSError, IOError, RuntimeError):
            continue
    raise FieldUnavailable(hex(tag))


def _property_string(item: Any, tag: int) -> str:
    entry = _property(item, tag)
    try:
        value = entry.data_as_string
    except (OSError, IOError, RuntimeError, UnicodeDecodeError) as e:
        raise FieldUnavailable(hex(tag)) from e
    if not value:
        raise FieldUnavailable(hex(tag))
    return value


def _property_datetime(item: Any, tag: int) -> datetime:
    entry = _property(item, tag)
    try:
        value = entry.data_as_datetime
    except (OSError, IOError, RuntimeError) as e:
        raise FieldUnavailable(hex(tag)) from e
    if not isinstance(value, datetime):
        raise FieldUnavailable(hex(tag))
    return value


class PstFolder:
    def __init__(self, folder: Any) -> None:
        self.folder = folder

    @property
    def display_name(self) -> str:
        try:
            return _decode(_attr(self.folder, "name"))
        except FieldUnavailable:
            return ""


class PstAttachment:
    def __init__(self, attachment: Any, index: int) -> None:
        self.attachment = attachment
        self.index = index

    def filename(self) -> str:
        for tag in (PR_ATTACH_LONG_FILENAME, PR_ATTACH_FILENAME, PR_DISPLAY_NAME):
            try:
                return _property_string(self.attachment, tag)
            except FieldUnavailable:
                continue
        return _decode(_attr(self.attachment, "name"))

    def write_to(self, path: Path) -> None:
        size = int(_attr(self.attachment, "size"))
        data = self.attachment.read_buffer(size)
        with open(path, "wb") as handle:
            handle.write(data)


class PstMessage(UnavailableFieldsMixin):
    def __init__(self, message: Any) -> None:
        self.message = message

    def message_class(self) -> str:
        return _property_string(self.message, PR_MESSAGE_CLASS)

    def message_id(self) -> str:
        return _property_string(self.message, PR_INTERNET_MESSAGE_ID)

    def subject(self) -> str:
        return _decode(_attr(self.message, "subject"))

    def sender(self) -> str:
        return _decode(_attr(self.message, "sender_name"))

    def to(self) -> str:
        return _property_string(self.message, PR_DISPLAY_TO)

    def cc(self) -> str:
        return _property_string(self.message, PR_DISPLAY_CC)

    def received_date(self) -> datetime:
        value = _attr(self.message, "delivery_time")
        if not isinstance(value, datetime):
            raise FieldUnavailable("delivery_time")
        return value

    def size(self) -> str:
        entry = _property(self.message, PR_MESSAGE_SIZE)
        return str(entry.data_as_integer)

    def body_html(self) -> str:
        return _decode(_attr(self.message, "html_body"))

    def body(self) -> str:
        return _decode(_attr(self.message, "plain_text_body"))

    def headers(self) -> str:
        return _decode(_attr(self.message, "transport_headers"))

    def appointment_all_attendees(self) -> str:
        return _property_string(self.message, PR_DISPLAY_TO)

    def appointment_location(self) -> str:
        return _property_string(self.message, PID_LID_LOCATION)

    def appointment_start_time(self) -> datetime:
        return _property_datetime(self.message, PR_START_DATE)

    def appointment_end_time(self) -> datetime:
        return _property_datetime(self.message, PR_END_DATE)

    def contact_given_name(self) -> str:
        return _property_string(self.message, PR_GIVEN_NAME)

    def contact_email_display_name(self) -> str:
        return _property_string(self.message, PR_DISPLAY_NAME)

    def contact_company_name(self) -> str:
        return _property_string(self.message, PR_COMPANY_NAME)

    def contact_business_phone_number(self) -> str:
        return _property_string(self.message, PR_BUSINESS_TELEPHONE_NUMBER)

    def contact_mobile_phone_number(self) -> str:
        return _property_string(self.message, PR_MOBILE_TELEPHONE_NUMBER)


class PstContainer:
    def __init__(self, pst_file: Any) -> None:
        self.pst_file = pst_file

    def root_folder(self) -> PstFolder:
        try:
            return PstFolder(self.pst_file.get_root_folder())
        except (OSError, IOError, RuntimeError) as e:
            raise DecoderError(f"failed to get root folder: {e}") from e

    def list_folders(self, folder: PstFolder) -> Sequence[PstFolder]:
        native = folder.folder
        try:
            return [
                PstFolder(native.get_sub_folder(i))
                for i in range(native.number_of_sub_folders)
            ]
        except (OSError, IOError, RuntimeError) as e:
            raise DecoderError(f"failed to read sub-folders: {e}") from e

    def list_messages(self, folder: PstFolder) -> Iterator[PstMessage]:
        native = folder.folder
        try:
            count = native.number_of_sub_messages
        except (OSError, IOError, RuntimeError) as e:
            raise DecoderError(f"failed to read messages: {e}") from e
        for i in range(count):
            try:
                yield PstMessage(native.get_sub_message(i))
            except (OSError, IOError, RuntimeError) as e:
                raise DecoderError(f"failed to read message {i}: {e}") from e

    def get_attachments(self, message: PstMessage) -> Sequence[PstAttachment]:
        native = message.message
        try:
            count = int(native.number_of_attachments or 0)
            return [PstAttachment(native.get_attachment(i), i) for i in range(count)]
        except (OSError, IOError, RuntimeError) as e:
            raise DecoderError(f"failed to read attachments: {e}") from e

    def close(self) -> None:
        try:
            self.pst_file.close()
        except (OSError, IOError, RuntimeError) as e:
            logger.error("Failed to close PST file: %s", e)


class PstDecoder:
    name = "PST"
    extensions = (".pst", ".ost")

    def open(self, path: Path) -> PstContainer:
        try:
            import pypff  # type: ignore
        except ImportError as exc:
            raise DecoderError(
                "pypff is required to ingest PST files. Install libpff-python first."
            ) from exc

        try:
            if not pypff.check_file_signature(str(path)):
                raise DecoderError("invalid file signature")
            pst_file = pypff.file()
            pst_file.open(str(path))
        except (OSError, IOError, RuntimeError) as e:
            raise DecoderError(f"failed to open PST file: {e}") from e

        logger.info("Opened PST file %s", path.name)
        return PstContainer(pst_file)
