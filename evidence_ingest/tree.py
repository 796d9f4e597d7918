"""
Folder tree reconstruction and browsing.

FolderTreeBuilder walks a decoded container pre-order with an explicit stack,
persisting one TreeNode per folder before the folder's messages are handed to
the visitor. TreeStore wraps the SQLAlchemy session for reads and writes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .decoders.base import DecodedContainer, DecodedFolder
from .errors import TreePersistError
from .models import ROOT_PARENT, Evidence, TreeNode, new_id

logger = logging.getLogger(__name__)

FolderVisitor = Callable[[DecodedFolder, TreeNode], None]


@dataclass
class TreeNodeDTO:
    """Nested folder view for the filesystem browser."""

    value: str
    label: str
    children: list["TreeNodeDTO"] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "label": self.label,
            "children": [child.to_dict() for child in self.children],
        }


class TreeStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def save(self, node: TreeNode) -> TreeNode:
        """Persist a node immediately so children can reference it."""
        try:
            self.session.add(node)
            self.session.flush()
        except SQLAlchemyError as e:
            raise TreePersistError(f"failed to save tree node {node.folder_id}: {e}") from e
        return node

    def root_nodes(self, project_id: str) -> list[TreeNode]:
        stmt = (
            select(TreeNode)
            .where(TreeNode.project_id == project_id, TreeNode.parent == ROOT_PARENT)
            .order_by(TreeNode.title, TreeNode.folder_id)
        )
        return list(self.session.scalars(stmt))

    def children(self, folder_id: str) -> list[TreeNode]:
        stmt = (
            select(TreeNode)
            .where(TreeNode.parent == folder_id)
            .order_by(TreeNode.title, TreeNode.folder_id)
        )
        return list(self.session.scalars(stmt))

    def nodes_for_evidence(self, evidence_id: str) -> list[TreeNode]:
        stmt = select(TreeNode).where(TreeNode.evidence_id == evidence_id)
        return list(self.session.scalars(stmt))

    def walk(self, folder_id: str) -> list[TreeNodeDTO]:
        """All descendants of a folder as nested DTOs."""
        top: list[TreeNodeDTO] = []
        stack: list[tuple[str, list[TreeNodeDTO]]] = [(folder_id, top)]
        while stack:
            parent_id, siblings = stack.pop()
            for child in self.children(parent_id):
                dto = TreeNodeDTO(value=child.folder_id, label=child.title)
                siblings.append(dto)
                stack.append((child.folder_id, dto.children))
        return top

    def walk_ids(self, folder_id: str) -> list[str]:
        """Descendant folder ids in pre-order."""
        ids: list[str] = []
        stack = [folder_id]
        while stack:
            current = stack.pop()
            if current != folder_id:
                ids.append(current)
            children = self.children(current)
            stack.extend(child.folder_id for child in reversed(children))
        return ids


@dataclass
class ArenaEntry:
    node: TreeNode
    parent_index: int | None


class TreeArena:
    """Flat record of the nodes built for one evidence item, in persist order."""

    def __init__(self) -> None:
        self.entries: list[ArenaEntry] = []

    def add(self, node: TreeNode, parent_index: int | None) -> int:
        self.entries.append(ArenaEntry(node, parent_index))
        return len(self.entries) - 1

    def parent_of(self, index: int) -> TreeNode | None:
        parent_index = self.entries[index].parent_index
        if parent_index is None:
            return None
        return self.entries[parent_index].node

    @property
    def nodes(self) -> list[TreeNode]:
        return [entry.node for entry in self.entries]

    def __len__(self) -> int:
        return len(self.entries)


class FolderTreeBuilder:
    def __init__(self, store: TreeStore, evidence: Evidence) -> None:
        self.store = store
        self.evidence = evidence
        self.arena = TreeArena()

    def _node(self, title: str, parent: str) -> TreeNode:
        return TreeNode(
            folder_id=new_id(),
            evidence_id=self.evidence.id,
            project_id=self.evidence.project_id,
            title=title,
            parent=parent,
        )

    def build(self, container: DecodedContainer, visit: FolderVisitor) -> TreeArena:
        """
        Persist the root node, then visit every folder pre-order.

        The container's root folder maps onto the evidence root node; each
        sub-folder gets its own node, saved before visit() sees its messages.
        """
        root = self.store.save(self._node(self.evidence.display_name, ROOT_PARENT))
        root_index = self.arena.add(root, None)
        root_folder = container.root_folder()
        visit(root_folder, root)

        stack: list[tuple[DecodedFolder, int]] = [
            (sub, root_index) for sub in reversed(container.list_folders(root_folder))
        ]
        while stack:
            folder, parent_index = stack.pop()
            parent = self.arena.entries[parent_index].node
            logger.info("Parsing sub-folder: %s", folder.display_name)
            node = self.store.save(self._node(folder.display_name, parent.folder_id))
            index = self.arena.add(node, parent_index)
            visit(folder, node)
            stack.extend((sub, index) for sub in reversed(container.list_folders(folder)))

        logger.info("Built %d tree nodes for evidence %s", len(self.arena), self.evidence.id)
        return self.arena
