"""Capability interface every evidence decoder implements."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Iterable, Protocol, Sequence


class FieldUnavailable(LookupError):
    """A message field is absent or could not be read from the container."""


class DecodedAttachment(Protocol):
    def filename(self) -> str: ...

    def write_to(self, path: Path) -> None: ...


class DecodedMessage(Protocol):
    """
    Decoder-native message. Every accessor is independently fallible and
    may raise any exception; FieldUnavailable signals a missing field.
    """

    def message_class(self) -> str: ...

    def message_id(self) -> str: ...

    def subject(self) -> str: ...

    def sender(self) -> str: ...

    def to(self) -> str: ...

    def cc(self) -> str: ...

    def received_date(self) -> datetime: ...

    def size(self) -> str: ...

    def body_html(self) -> str: ...

    def body(self) -> str: ...

    def headers(self) -> str: ...

    def appointment_all_attendees(self) -> str: ...

    def appointment_location(self) -> str: ...

    def appointment_start_time(self) -> datetime: ...

    def appointment_end_time(self) -> datetime: ...

    def contact_given_name(self) -> str: ...

    def contact_email_display_name(self) -> str: ...

    def contact_company_name(self) -> str: ...

    def contact_business_phone_number(self) -> str: ...

    def contact_mobile_phone_number(self) -> str: ...


class DecodedFolder(Protocol):
    @property
    def display_name(self) -> str: ...


class DecodedContainer(Protocol):
    """An opened evidence container."""

    def root_folder(self) -> DecodedFolder: ...

    def list_folders(self, folder: DecodedFolder) -> Sequence[DecodedFolder]: ...

    def list_messages(self, folder: DecodedFolder) -> Iterable[DecodedMessage]: ...

    def get_attachments(self, message: DecodedMessage) -> Sequence[DecodedAttachment]: ...

    def close(self) -> None: ...


class FormatDecoder(Protocol):
    name: str
    extensions: tuple[str, ...]

    def open(self, path: Path) -> DecodedContainer: ...


class UnavailableFieldsMixin:
    """Default accessors for fields a format never carries."""

    def _unavailable(self, field: str):
        raise FieldUnavailable(field)

    def message_class(self) -> str:
        return "IPM.Note"

    def size(self) -> str:
        return self._unavailable("size")

    def appointment_all_attendees(self) -> str:
        return self._unavailable("appointment_all_attendees")

    def appointment_location(self) -> str:
        return self._unavailable("appointment_location")

    def appointment_start_time(self) -> datetime:
        return self._unavailable("appointment_start_time")

    def appointment_end_time(self) -> datetime:
        return self._unavailable("appointment_end_time")

    def contact_given_name(self) -> str:
        return self._unavailable("contact_given_name")

    def contact_email_display_name(self) -> str:
        return self._unavailable("contact_email_display_name")

    def contact_company_name(self) -> str:
        return self._unavailable("contact_company_name")

    def contact_business_phone_number(self) -> str:
        return self._unavailable("contact_business_phone_number")

    def contact_mobile_phone_number(self) -> str:
        return self._unavailable("contact_mobile_phone_number")
