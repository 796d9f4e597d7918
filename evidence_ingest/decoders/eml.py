"""ZIP-of-EML decoder: directories become folders, files become messages."""

from __future__ import annotations

import logging
import shutil
import tempfile
import zipfile
from datetime import datetime, timezone
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Any, Iterator, Sequence

from ..config import settings
from ..errors import DecoderError
from ..ziputil import unzip
from .base import FieldUnavailable, UnavailableFieldsMixin

logger = logging.getLogger(__name__)

# Envelope headers where a repeated header replaces the earlier value.
_LAST_WINS = {"subject": "subject", "from": "sender", "to": "to", "cc": "cc"}


def _text_part_to_str(part: Any) -> str | None:
    try:
        val = part.get_content()
        if isinstance(val, str):
            return val
    except Exception:
        pass

    try:
        payload = part.get_payload(decode=True)
        if not payload:
            return None
        charset = part.get_content_charset() or "utf-8"
        return payload.decode(charset, errors="replace")
    except Exception:
        return None


class EmlFolder:
    def __init__(self, path: Path) -> None:
        self.path = path

    @property
    def display_name(self) -> str:
        return self.path.name


class EmlAttachment:
    def __init__(self, name: str | None, data: bytes) -> None:
        self.name = name
        self.data = data

    def filename(self) -> str:
        if not self.name:
            raise FieldUnavailable("filename")
        return self.name

    def write_to(self, path: Path) -> None:
        with open(path, "wb") as handle:
            handle.write(self.data)


class EmlMessage(UnavailableFieldsMixin):
    def __init__(self, raw: bytes) -> None:
        self.raw = raw
        self.msg: EmailMessage = BytesParser(policy=policy.default).parsebytes(raw)  # type: ignore[assignment]
        self._envelope: dict[str, str] = {}
        self._date: str | None = None
        self._message_id: str | None = None
        header_lines: list[str] = []
        for key, value in self.msg.items():
            text = str(value)
            lowered = key.lower()
            if lowered in _LAST_WINS:
                self._envelope[_LAST_WINS[lowered]] = text
            elif lowered == "date":
                self._date = text
            elif lowered == "message-id":
                self._message_id = text.strip()
            header_lines.append(f"{key}: {text}")
        self._headers = "\n".join(header_lines)

        self._html: str | None = None
        self._plain: str | None = None
        self._attachments: list[EmlAttachment] = []
        self._walk_parts()

    def _walk_parts(self) -> None:
        for part in self.msg.walk():
            if part.is_multipart():
                continue
            ctype = (part.get_content_type() or "text/plain").lower()
            disposition = (part.get_content_disposition() or "").lower() or None
            filename = part.get_filename()

            if disposition is None and not filename:
                if ctype == "text/html" and self._html is None:
                    self._html = _text_part_to_str(part)
                    continue
                if ctype == "text/plain" and self._plain is None:
                    self._plain = _text_part_to_str(part)
                    continue

            if not (filename or disposition in {"attachment", "inline"}):
                continue
            try:
                payload = part.get_payload(decode=True)
            except Exception:
                payload = None
            if not isinstance(payload, (bytes, bytearray)):
                logger.warning("Skipping undecodable attachment part %r", filename)
                continue
            self._attachments.append(EmlAttachment(filename, bytes(payload)))

    def _envelope_field(self, name: str) -> str:
        value = self._envelope.get(name)
        if value is None:
            raise FieldUnavailable(name)
        return value

    def message_id(self) -> str:
        if not self._message_id:
            raise FieldUnavailable("message_id")
        return self._message_id

    def subject(self) -> str:
        return self._envelope_field("subject")

    def sender(self) -> str:
        return self._envelope_field("sender")

    def to(self) -> str:
        return self._envelope_field("to")

    def cc(self) -> str:
        return self._envelope_field("cc")

    def received_date(self) -> datetime:
        if not self._date:
            raise FieldUnavailable("date")
        dt = parsedate_to_datetime(self._date)
        if dt is None:
            raise FieldUnavailable("date")
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt

    def size(self) -> str:
        return str(len(self.raw))

    def body_html(self) -> str:
        if self._html is None:
            raise FieldUnavailable("body_html")
        return self._html

    def body(self) -> str:
        if self._plain is None:
            raise FieldUnavailable("body")
        return self._plain

    def headers(self) -> str:
        return self._headers

    @property
    def attachments(self) -> list[EmlAttachment]:
        return self._attachments


class EmlContainer:
    def __init__(self, root: Path, cleanup: bool = True) -> None:
        self.root = root
        self.cleanup = cleanup

    def root_folder(self) -> EmlFolder:
        return EmlFolder(self.root)

    def list_folders(self, folder: EmlFolder) -> Sequence[EmlFolder]:
        return [EmlFolder(p) for p in sorted(folder.path.iterdir()) if p.is_dir()]

    def list_messages(self, folder: EmlFolder) -> Iterator[EmlMessage]:
        for path in sorted(folder.path.iterdir()):
            if not path.is_file():
                continue
            try:
                yield EmlMessage(path.read_bytes())
            except Exception as e:
                logger.error("Failed to parse EML file %s: %s", path.name, e)

    def get_attachments(self, message: EmlMessage) -> Sequence[EmlAttachment]:
        return message.attachments

    def close(self) -> None:
        if self.cleanup:
            shutil.rmtree(self.root, ignore_errors=True)


class EmlZipDecoder:
    name = "EML"
    extensions = (".zip",)

    def __init__(self, temp_root: str | Path | None = None) -> None:
        self.temp_root = Path(temp_root or settings.TEMP_DIR)

    def open(self, path: Path) -> EmlContainer:
        self.temp_root.mkdir(parents=True, exist_ok=True)
        target = Path(tempfile.mkdtemp(prefix="eml-", dir=self.temp_root))
        try:
            unzip(path, target)
        except (zipfile.BadZipFile, ValueError, OSError) as e:
            shutil.rmtree(target, ignore_errors=True)
            raise DecoderError(f"failed to unzip {path.name}: {e}") from e
        return EmlContainer(target)
