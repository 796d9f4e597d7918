"""Evidence decoders, selected by file extension."""

from __future__ import annotations

from pathlib import PurePath
from typing import Sequence

from ..errors import UnsupportedEvidenceError
from .base import (
    DecodedAttachment,
    DecodedContainer,
    DecodedFolder,
    DecodedMessage,
    FieldUnavailable,
    FormatDecoder,
)
from .eml import EmlZipDecoder
from .pst import PstDecoder

DECODERS: list[FormatDecoder] = [PstDecoder(), EmlZipDecoder()]


def select_decoder(
    file_name: str, decoders: Sequence[FormatDecoder] | None = None
) -> FormatDecoder:
    """Return the first decoder claiming the file's extension."""
    suffix = PurePath(file_name).suffix.lower()
    for decoder in decoders if decoders is not None else DECODERS:
        if suffix in decoder.extensions:
            return decoder
    raise UnsupportedEvidenceError(f"no decoder supports {file_name!r}")


__all__ = [
    "DECODERS",
    "DecodedAttachment",
    "DecodedContainer",
    "DecodedFolder",
    "DecodedMessage",
    "EmlZipDecoder",
    "FieldUnavailable",
    "FormatDecoder",
    "PstDecoder",
    "select_decoder",
]
