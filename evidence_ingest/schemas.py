"""
Canonical message records published to the message bus.
All data models for messages and attachments, independent of source format.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

# null_value configured on the index; the indexer rejects truly empty strings.
NULL_SENTINEL = "NULL"
EMPTY_FILENAME = "EMPTY_FILENAME"


def null_if_empty(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return NULL_SENTINEL
    return value


def is_null(value: str | None) -> bool:
    return value is None or value == NULL_SENTINEL or not value.strip()


class Attachment(BaseModel):
    """An attachment embedded in its message; the blob lives in the sink."""

    uuid: str
    name: str = EMPTY_FILENAME

    @field_validator("name", mode="before")
    @classmethod
    def default_name(cls, v: Any) -> str:
        if v is None or not str(v).strip():
            return EMPTY_FILENAME
        return str(v)


class Message(BaseModel):
    """Canonical, format-independent message record."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    uuid: str
    project_uuid: str
    message_id: str = ""
    subject: str = ""
    sender: str = Field(default="", alias="from")
    to: str = ""
    cc: str = ""
    received: int = 0
    size: str = ""
    body: str = ""
    headers: str = ""
    attachments: list[Attachment] = Field(default_factory=list)
    folder_uuid: str = ""
    evidence_uuid: str = ""

    @field_validator("received", mode="before")
    @classmethod
    def clamp_received(cls, v: Any) -> int:
        if v is None:
            return 0
        try:
            received = int(v)
        except (TypeError, ValueError):
            logger.error("Unparseable received date %r, using epoch", v)
            return 0
        if received < 0:
            logger.error("Negative received date for message (%d), using epoch", received)
            return 0
        return received

    def to_payload(self) -> dict[str, Any]:
        """Wire payload with empty strings replaced by the null sentinel."""
        data = self.model_dump(by_alias=True)
        for key, value in data.items():
            data[key] = null_if_empty(value)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_payload(), ensure_ascii=False)
