"""
Unit tests for core Repotree components.

Tests configuration management, data models, the tool registry and the
DuckDB tree store.
"""

import os
import tempfile
import unittest
from pathlib import Path

import pytest
from pydantic import ValidationError

from repotree.config import ConfigManager
from repotree.database import DatabaseManager
from repotree.errors import NotFoundError
from repotree.models import (
    MAIN_BRANCH, BatchRequest, Doc, NodeKind, OperationResult, UpdateItem
)
from repotree.tools.registry import ToolAction, ToolRegistry, ToolSpec


class TestConfigManager(unittest.TestCase):
    """Test configuration management functionality."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = Path(self.temp_dir) / "test_config.yaml"

    def tearDown(self):
        """Clean up test fixtures."""
        if self.config_path.exists():
            self.config_path.unlink()
        os.rmdir(self.temp_dir)

    def test_config_creation_with_defaults(self):
        """Test config manager falls back to defaults when file missing."""
        config = ConfigManager(str(self.config_path))

        self.assertEqual(config.bot_name, "repotree-bot")
        self.assertEqual(config.marker_file, "README.md")
        self.assertEqual(config.file_extension, ".md")
        self.assertEqual(config.keep_file, ".keep")
        self.assertEqual(config.max_create_passes, 10)

    def test_config_loading_from_file(self):
        """Test loading configuration from YAML file."""
        test_config = """
git:
  bot_name: "custom-bot"
  timeout: 5

paths:
  git_root: "custom/git"

structure:
  max_create_passes: 3
"""
        with open(self.config_path, 'w') as f:
            f.write(test_config)

        config = ConfigManager(str(self.config_path))

        self.assertEqual(config.bot_name, "custom-bot")
        self.assertEqual(config.git_timeout, 5)
        self.assertEqual(config.git_root, "custom/git")
        self.assertEqual(config.max_create_passes, 3)
        # Keys missing from the file fall back to property defaults
        self.assertEqual(config.marker_file, "README.md")

    def test_dot_notation_access(self):
        """Test accessing config values with dot notation."""
        config = ConfigManager(str(self.config_path))

        self.assertEqual(config.get("git.remote_name"), "origin")
        self.assertEqual(config.get("projection.keep_file"), ".keep")
        self.assertEqual(config.get("nonexistent.key", "default"), "default")
        self.assertIn("api_url", config.get_section("remote"))

    def test_config_reload(self):
        """Test configuration reloading."""
        with open(self.config_path, 'w') as f:
            f.write("git:\n  bot_name: 'bot1'")

        config = ConfigManager(str(self.config_path))
        self.assertEqual(config.bot_name, "bot1")

        with open(self.config_path, 'w') as f:
            f.write("git:\n  bot_name: 'bot2'")

        config.reload()
        self.assertEqual(config.bot_name, "bot2")


class TestDataModels(unittest.TestCase):
    """Test data model validation and functionality."""

    def test_doc_depth_from_path(self):
        root = Doc(rid=1, did=1, branch="exp", path="/1")
        child = Doc(rid=1, did=5, branch="exp", parent_did=1, path="/1/5")

        self.assertEqual(root.depth, 0)
        self.assertEqual(child.depth, 1)

    def test_batch_request_accepts_camel_case(self):
        batch = BatchRequest.model_validate({
            "creates": [
                {"type": "doc", "placeholderId": "p2", "parentPlaceholderId": "p1", "title": "Child"},
                {"type": "doc", "placeholderId": "p1", "parentDid": None, "title": "Parent"},
            ],
            "structure": [{"did": 3, "order": 1, "children": [{"placeholderId": "p1"}]}],
        })

        self.assertEqual(batch.creates[0].placeholder_id, "p2")
        self.assertEqual(batch.creates[0].parent_placeholder_id, "p1")
        self.assertEqual(batch.creates[1].type, NodeKind.DOC)
        self.assertEqual(batch.structure[0].children[0].placeholder_id, "p1")
        self.assertIsNone(batch.message)

    def test_update_requires_target_id(self):
        with self.assertRaises(ValidationError):
            UpdateItem(type=NodeKind.DOC, title="No id")
        with self.assertRaises(ValidationError):
            UpdateItem(type=NodeKind.BLOCK, did=3, title="Doc id on a block")

        item = UpdateItem(type=NodeKind.BLOCK, bid=7, content="x")
        self.assertEqual(item.target_id, 7)

    def test_operation_result_envelope(self):
        ok = OperationResult.ok("done", commit="abc")
        empty = OperationResult.ok()
        failed = OperationResult.fail("nope")

        self.assertTrue(ok.success)
        self.assertEqual(ok.data, {"commit": "abc"})
        self.assertIsNone(empty.data)
        self.assertFalse(failed.success)
        self.assertEqual(failed.message, "nope")


class TestToolRegistry(unittest.TestCase):
    """Test tool registry functionality."""

    def setUp(self):
        """Set up test registry."""
        self.registry = ToolRegistry()

    def test_default_tools_registered(self):
        tools = self.registry.list_tools()

        for name in ("query_doc", "create_block", "edit_doc", "delete_block",
                     "update_structure", "create_branch", "commit", "push", "pull", "status", "search"):
            self.assertIn(name, tools)

    def test_tool_retrieval(self):
        spec = self.registry.get_tool("create_doc")

        self.assertIsNotNone(spec)
        if spec:  # Type guard for linter
            self.assertEqual(spec.action, ToolAction.CREATE)
            self.assertEqual(spec.target, NodeKind.DOC)
            self.assertTrue(spec.mutates)
        self.assertIsNone(self.registry.get_tool("nonexistent"))

    def test_query_tools_do_not_mutate(self):
        for name in self.registry.get_tools_by_action(ToolAction.QUERY):
            self.assertFalse(self.registry.get_tool(name).mutates)

    def test_custom_tool_registration(self):
        self.registry.register_tool(ToolSpec(
            name="rename_doc",
            description="Rename a doc",
            action=ToolAction.EDIT,
            target=NodeKind.DOC,
            mutates=True,
            arguments=["did", "title"]
        ))

        self.assertIn("rename_doc", self.registry.get_tools_by_action(ToolAction.EDIT))


class TestDatabaseManager(unittest.TestCase):
    """Test database management functionality."""

    def setUp(self):
        """Set up test database."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = Path(self.temp_dir) / "test.db"

    def tearDown(self):
        """Clean up test database."""
        if self.db_path.exists():
            self.db_path.unlink()
        wal = Path(str(self.db_path) + ".wal")
        if wal.exists():
            wal.unlink()
        os.rmdir(self.temp_dir)

    def test_database_initialization(self):
        """Test database creation and table initialization."""
        with DatabaseManager(str(self.db_path)) as db:
            db.initialize_database()

            self.assertTrue(self.db_path.exists())
            self.assertIsNotNone(db.connection)

    def test_requires_connection(self):
        db = DatabaseManager(str(self.db_path))
        with self.assertRaises(RuntimeError):
            db.list_repositories()

    def test_repository_operations(self):
        with DatabaseManager(str(self.db_path)) as db:
            db.initialize_database()

            repository = db.create_repository("Handbook", domain_id="team", description="About us")
            self.assertEqual(repository.current_branch, MAIN_BRANCH)
            self.assertEqual(repository.branches, [MAIN_BRANCH])

            updated = db.update_repository(repository.rid, branches=["main", "exp"], current_branch="exp")
            self.assertEqual(updated.branches, ["main", "exp"])
            self.assertEqual(updated.current_branch, "exp")

            self.assertEqual(len(db.list_repositories("team")), 1)
            self.assertEqual(db.list_repositories("other"), [])
            self.assertIsNone(db.get_repository(999))
            with self.assertRaises(NotFoundError):
                db.require_repository(999)

    def test_doc_and_block_operations(self):
        with DatabaseManager(str(self.db_path)) as db:
            db.initialize_database()
            rid = db.create_repository("Handbook").rid

            root = db.add_doc(rid, "exp", "Guide", content="Intro text")
            child = db.add_doc(rid, "exp", "Setup", parent_did=root.did)
            block = db.add_block(rid, "exp", child.did, "install", content="pip install")

            self.assertEqual(root.path, f"/{root.did}")
            self.assertEqual(child.path, f"/{root.did}/{child.did}")
            self.assertEqual(db.get_block(rid, "exp", block.bid).content, "pip install")
            self.assertEqual([d.did for d in db.list_child_docs(rid, "exp", root.did)], [child.did])

            updated = db.update_doc(rid, "exp", child.did, title="Installation")
            self.assertEqual(updated.title, "Installation")
            self.assertIsNone(db.update_block(rid, "exp", 999, content="x"))

            # Deleting a doc leaves its children in place
            self.assertTrue(db.delete_doc(rid, "exp", root.did))
            self.assertIsNotNone(db.get_doc(rid, "exp", child.did))
            self.assertFalse(db.delete_doc(rid, "exp", root.did))

    def test_parent_must_exist_in_same_branch(self):
        with DatabaseManager(str(self.db_path)) as db:
            db.initialize_database()
            rid = db.create_repository("Handbook").rid
            main_doc = db.add_doc(rid, MAIN_BRANCH, "Only on main")

            with self.assertRaises(NotFoundError):
                db.add_doc(rid, "exp", "Orphan", parent_did=main_doc.did)
            with self.assertRaises(NotFoundError):
                db.add_block(rid, "exp", main_doc.did, "Orphan block")

    def test_ids_are_unique_across_branches(self):
        with DatabaseManager(str(self.db_path)) as db:
            db.initialize_database()
            rid = db.create_repository("Handbook").rid

            first = db.add_doc(rid, MAIN_BRANCH, "A")
            second = db.add_doc(rid, "exp", "B")
            db.delete_doc(rid, "exp", second.did)
            third = db.add_doc(rid, "exp", "C")

            self.assertEqual(len({first.did, second.did, third.did}), 3)
            self.assertGreater(third.did, second.did)

    def test_sibling_order_defaults_and_listing(self):
        with DatabaseManager(str(self.db_path)) as db:
            db.initialize_database()
            rid = db.create_repository("Handbook").rid

            late = db.add_doc(rid, "exp", "Late", order=5)
            early = db.add_doc(rid, "exp", "Early", order=1)
            appended = db.add_doc(rid, "exp", "Appended")

            self.assertEqual(appended.order, 6)
            self.assertEqual([d.did for d in db.list_docs(rid, "exp")], [early.did, late.did, appended.did])

    def test_clone_branch(self):
        with DatabaseManager(str(self.db_path)) as db:
            db.initialize_database()
            rid = db.create_repository("Handbook").rid
            root = db.add_doc(rid, MAIN_BRANCH, "Guide", content="Body", order=2)
            child = db.add_doc(rid, MAIN_BRANCH, "Setup", parent_did=root.did)
            db.add_block(rid, MAIN_BRANCH, child.did, "intro", content="Hello", order=3)

            docs, blocks = db.clone_branch(rid, MAIN_BRANCH, "exp")

            self.assertEqual((docs, blocks), (2, 1))
            cloned = {d.title: d for d in db.list_docs(rid, "exp")}
            self.assertNotEqual(cloned["Guide"].did, root.did)
            self.assertEqual(cloned["Guide"].order, 2)
            self.assertEqual(cloned["Guide"].content, "Body")
            self.assertEqual(cloned["Setup"].parent_did, cloned["Guide"].did)
            self.assertEqual(cloned["Setup"].path, f"/{cloned['Guide'].did}/{cloned['Setup'].did}")

            cloned_block = db.list_blocks(rid, "exp")[0]
            self.assertEqual(cloned_block.did, cloned["Setup"].did)
            self.assertEqual((cloned_block.title, cloned_block.content, cloned_block.order), ("intro", "Hello", 3))

            # Source branch untouched
            self.assertEqual(db.count_branch(rid, MAIN_BRANCH), (2, 1))

    def test_rebuild_paths_and_clear_branch(self):
        with DatabaseManager(str(self.db_path)) as db:
            db.initialize_database()
            rid = db.create_repository("Handbook").rid
            a = db.add_doc(rid, "exp", "A")
            b = db.add_doc(rid, "exp", "B")
            c = db.add_doc(rid, "exp", "C", parent_did=b.did)

            # Re-parent B under A without fixing the subtree paths
            db.move_doc(rid, "exp", b.did, a.did, 0, f"/{a.did}/{b.did}")
            changed = db.rebuild_paths(rid, "exp")

            self.assertEqual(changed, 1)
            self.assertEqual(db.get_doc(rid, "exp", c.did).path, f"/{a.did}/{b.did}/{c.did}")

            db.add_block(rid, "exp", c.did, "leaf")
            self.assertEqual(db.clear_branch(rid, "exp"), (3, 1))
            self.assertEqual(db.count_branch(rid, "exp"), (0, 0))

    def test_branch_sync_state(self):
        with DatabaseManager(str(self.db_path)) as db:
            db.initialize_database()
            rid = db.create_repository("Handbook").rid

            self.assertFalse(db.get_branch_state(rid, "exp").unsynced)

            db.mark_branch_state(rid, "exp", unsynced=False, last_commit="abc123")
            db.mark_branch_state(rid, "exp", unsynced=True, last_error="git commit failed")
            state = db.get_branch_state(rid, "exp")

            self.assertTrue(state.unsynced)
            self.assertEqual(state.last_error, "git commit failed")
            self.assertEqual(state.last_commit, "abc123")

    def test_substring_search(self):
        with DatabaseManager(str(self.db_path)) as db:
            db.initialize_database()
            rid = db.create_repository("Handbook").rid
            doc = db.add_doc(rid, "exp", "Deployment", content="How we ship")
            db.add_block(rid, "exp", doc.did, "rollback", content="Undo a DEPLOY")
            db.add_doc(rid, MAIN_BRANCH, "Deployment on main")

            found = db.search(rid, "exp", ["deploy"])
            docs_only = db.search(rid, "exp", ["deploy"], NodeKind.DOC)

            self.assertEqual(len(found), 2)
            self.assertEqual(len(docs_only), 1)
            self.assertEqual(db.search(rid, "exp", []), [])

    def test_wildcards_in_keywords_match_literally(self):
        with DatabaseManager(str(self.db_path)) as db:
            db.initialize_database()
            rid = db.create_repository("Handbook").rid
            db.add_doc(rid, "exp", "snake_case names")
            db.add_doc(rid, "exp", "Progress", content="done 100%")
            db.add_doc(rid, "exp", "Plain")

            self.assertEqual([d.title for d in db.search(rid, "exp", ["_"])], ["snake_case names"])
            self.assertEqual([d.title for d in db.search(rid, "exp", ["%"])], ["Progress"])

    def test_transaction_rolls_back_on_error(self):
        with DatabaseManager(str(self.db_path)) as db:
            db.initialize_database()
            rid = db.create_repository("Handbook").rid
            db.add_doc(rid, "exp", "Kept")

            with self.assertRaises(ValueError):
                with db.transaction():
                    db.clear_branch(rid, "exp")
                    db.add_doc(rid, "exp", "Half")
                    raise ValueError("import failed")

            self.assertEqual([d.title for d in db.list_docs(rid, "exp")], ["Kept"])


@pytest.mark.parametrize("branch", ["exp", MAIN_BRANCH])
def test_store_itself_does_not_guard_main(db, branch):
    """Main-branch protection lives in the services; pull and import write main directly."""
    rid = db.create_repository("Handbook").rid
    doc = db.add_doc(rid, branch, "Imported")
    assert db.get_doc(rid, branch, doc.did) is not None
