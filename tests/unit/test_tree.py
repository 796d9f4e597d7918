"""Unit tests for folder tree reconstruction and browsing."""

import os
import sys
import unittest


# Provide minimal env for Settings validation during import.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("USE_AWS_SERVICES", "true")
os.environ.setdefault("MINIO_BUCKET", "test-bucket")

# Ensure the package is importable when running from repo root.
TEST_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if TEST_ROOT not in sys.path:
    sys.path.insert(0, TEST_ROOT)
HERE = os.path.dirname(os.path.abspath(__file__))
if HERE not in sys.path:
    sys.path.insert(0, HERE)


from sqlalchemy import inspect  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from evidence_ingest.db import init_db, make_engine  # noqa: E402
from evidence_ingest.errors import TreePersistError  # noqa: E402
from evidence_ingest.models import ROOT_PARENT, Evidence, TreeNode  # noqa: E402
from evidence_ingest.tree import FolderTreeBuilder, TreeStore  # noqa: E402
from fakes import FakeContainer, FakeFolder  # noqa: E402


def _container():
    return FakeContainer(
        FakeFolder(
            "",
            children=[
                FakeFolder("Inbox", children=[FakeFolder("Archive"), FakeFolder("Projects")]),
                FakeFolder("Sent Items"),
            ],
        )
    )


class TreeTestCase(unittest.TestCase):
    def setUp(self):
        self.engine = make_engine("sqlite://")
        init_db(self.engine)
        self.session = sessionmaker(bind=self.engine)()
        self.evidence = Evidence(
            id="ev-1", project_id="proj-1", file_hash="abc123", file_name="abc123-mailbox.pst"
        )
        self.session.add(self.evidence)
        self.session.commit()

    def tearDown(self):
        self.session.close()
        self.engine.dispose()


class TestFolderTreeBuilder(TreeTestCase):
    def test_visits_pre_order_and_persists_parent_first(self):
        visited = []
        builder = FolderTreeBuilder(TreeStore(self.session), self.evidence)
        arena = builder.build(_container(), lambda folder, node: visited.append(node.title))

        self.assertEqual(visited, ["mailbox.pst", "Inbox", "Archive", "Projects", "Sent Items"])
        self.assertEqual(len(arena), 5)
        for index, entry in enumerate(arena.entries):
            if entry.parent_index is None:
                self.assertEqual(entry.node.parent, ROOT_PARENT)
                continue
            self.assertLess(entry.parent_index, index)
            self.assertEqual(entry.node.parent, arena.parent_of(index).folder_id)
            self.assertEqual(entry.node.evidence_id, self.evidence.id)

    def test_visit_sees_node_already_flushed(self):
        store = TreeStore(self.session)
        seen_in_db = []

        def visit(folder, node):
            seen_in_db.append(inspect(node).persistent)

        FolderTreeBuilder(store, self.evidence).build(_container(), visit)
        self.assertTrue(all(seen_in_db))

    def test_root_title_without_dash_keeps_whole_name(self):
        evidence = Evidence(id="ev-2", project_id="proj-1", file_hash="h", file_name="export.pst")
        self.assertEqual(evidence.display_name, "export.pst")
        evidence.file_name = "h-my-archive.pst"
        self.assertEqual(evidence.display_name, "my-archive.pst")

    def test_persist_failure_raises(self):
        store = TreeStore(self.session)
        with self.assertRaises(TreePersistError):
            store.save(TreeNode(folder_id="f", evidence_id=None, project_id="p", title="t"))


class TestTreeStore(TreeTestCase):
    def setUp(self):
        super().setUp()
        builder = FolderTreeBuilder(TreeStore(self.session), self.evidence)
        self.arena = builder.build(_container(), lambda folder, node: None)
        self.session.commit()
        self.store = TreeStore(self.session)
        self.root = self.arena.nodes[0]

    def test_root_nodes_for_project(self):
        roots = self.store.root_nodes("proj-1")
        self.assertEqual([r.folder_id for r in roots], [self.root.folder_id])
        self.assertEqual(self.store.root_nodes("other"), [])

    def test_walk_nests_children(self):
        tree = self.store.walk(self.root.folder_id)
        self.assertEqual([d.label for d in tree], ["Inbox", "Sent Items"])
        inbox = tree[0]
        self.assertEqual([d.label for d in inbox.children], ["Archive", "Projects"])
        self.assertEqual(tree[1].children, [])
        self.assertEqual(inbox.to_dict()["children"][0]["label"], "Archive")

    def test_walk_ids_is_pre_order(self):
        titles = {n.folder_id: n.title for n in self.arena.nodes}
        ids = self.store.walk_ids(self.root.folder_id)
        self.assertEqual([titles[i] for i in ids], ["Inbox", "Archive", "Projects", "Sent Items"])

    def test_nodes_for_evidence(self):
        self.assertEqual(len(self.store.nodes_for_evidence(self.evidence.id)), 5)


if __name__ == "__main__":
    unittest.main()
