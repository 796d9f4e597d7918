from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from .db import Base

# Parent value stored on root tree nodes.
ROOT_PARENT = "NULL"


def new_id() -> str:
    return str(uuid.uuid4())


class Evidence(Base):
    __tablename__ = "evidence"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    project_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    file_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    # Upload names follow "<hash>-<original name>".
    file_name: Mapped[str] = mapped_column(String(512), nullable=False)
    is_parsed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    @property
    def display_name(self) -> str:
        """File name with the upload hash prefix segment removed."""
        _, sep, rest = self.file_name.partition("-")
        return rest if sep and rest else self.file_name

    def __repr__(self) -> str:
        return f"<Evidence {self.id} {self.file_name!r} parsed={self.is_parsed}>"


class TreeNode(Base):
    __tablename__ = "tree_nodes"
    __table_args__ = (
        Index("ix_tree_nodes_project_parent", "project_id", "parent"),
    )

    folder_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    evidence_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("evidence.id"), nullable=False, index=True
    )
    project_id: Mapped[str] = mapped_column(String(36), nullable=False)
    title: Mapped[str] = mapped_column(String(1024), nullable=False, default="")
    parent: Mapped[str] = mapped_column(String(36), nullable=False, default=ROOT_PARENT)

    def __repr__(self) -> str:
        return f"<TreeNode {self.folder_id} {self.title!r} parent={self.parent}>"
