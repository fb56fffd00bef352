"""
Service wiring for Repotree.

Builds the projector, importer, sync orchestrator, branch manager,
structure engine and tool runner around one tree store and one
working-copy manager.
"""

import logging
from pathlib import Path
from typing import Optional

from .branches import BranchManager
from .database import DatabaseManager
from .errors import NotFoundError
from .importers import FilesystemImporter
from .models import MAIN_BRANCH, OperationResult
from .projection import FilesystemProjector
from .search import BaseSearchIndex
from .structure import StructureEngine
from .sync import SyncOrchestrator
from .tools import ToolRunner
from .versioning import VersionManager


class Repotree:
    """
    All Repotree services sharing one store and one set of working copies.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        version_manager: Optional[VersionManager] = None,
        search_index: Optional[BaseSearchIndex] = None
    ):
        self.db = db_manager
        self.vcs = version_manager or VersionManager()
        self.projector = FilesystemProjector(self.db)
        self.importer = FilesystemImporter(self.db)
        self.sync = SyncOrchestrator(self.db, self.vcs, self.projector, self.importer)
        self.branches = BranchManager(self.db, self.sync, self.vcs)
        self.engine = StructureEngine(self.db, self.sync, self.vcs)
        self.tools = ToolRunner(self.db, self.branches, self.sync, self.engine, search_index)

    def import_directory(self, rid: int, source: Path, branch: str = MAIN_BRANCH) -> OperationResult:
        """
        Replace a branch of the store with the contents of a directory.

        Like pull, this may write ``main``: it seeds the store rather than
        editing it.
        """
        source = Path(source)
        try:
            self.db.require_repository(rid)
        except NotFoundError as e:
            return OperationResult.fail(str(e))
        if not source.is_dir():
            return OperationResult.fail(f"Not a directory: {source}")

        with self.vcs.lock_for(rid):
            self.db.clear_branch(rid, branch)
            report = self.importer.import_tree(rid, branch, source)
            if report.root_readme:
                self.db.update_repository(rid, description=report.root_readme)

        logging.info(f"Seeded repository {rid} branch {branch} from {source}")
        return OperationResult.ok(
            f"Imported {report.docs} docs and {report.blocks} blocks",
            branch=branch, docs=report.docs, blocks=report.blocks
        )
