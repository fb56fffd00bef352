"""
Branch lifecycle for Repotree.

Branches fork from ``main`` only. Creating one snapshots main into git,
forks the git branch and clones main's docs and blocks into the new branch
with fresh ids.
"""

import logging
from typing import Optional

from .policy import validate_branch_name
from ..database import DatabaseManager
from ..errors import ExternalProcessError, NotFoundError, PolicyViolationError
from ..models import MAIN_BRANCH, Actor, OperationResult
from ..sync import SyncOrchestrator
from ..versioning import VersionManager


class BranchManager:
    """
    Creates, switches and lists the branches of a repository.
    """

    def __init__(self, db_manager: DatabaseManager, sync: SyncOrchestrator, version_manager: VersionManager):
        self.db = db_manager
        self.sync = sync
        self.vcs = version_manager

    def create_branch(self, rid: int, name: str, actor: Optional[Actor] = None) -> OperationResult:
        """
        Fork a new branch from ``main`` and make it the current branch.

        Args:
            rid: Repository id
            name: New branch name
            actor: User the snapshot commit of main is made for

        Returns:
            Envelope with ``branch`` and the number of cloned ``docs`` and ``blocks``
        """
        try:
            repository = self.db.require_repository(rid)
            name = validate_branch_name(name)
            if repository.current_branch != MAIN_BRANCH:
                raise PolicyViolationError(
                    f"Branches can only be created from '{MAIN_BRANCH}' "
                    f"(current branch is '{repository.current_branch}')"
                )
            if name in repository.branches:
                raise PolicyViolationError(f"Branch '{name}' already exists")

            with self.vcs.lease(rid) as working_copy:
                # Leftovers of an earlier branch with the same name
                self.db.clear_branch(rid, name)

                snapshot = self.sync.commit(rid, MAIN_BRANCH, message=f"snapshot before branch {name}", actor=actor)
                if not snapshot.success:
                    return OperationResult.fail(f"Could not snapshot {MAIN_BRANCH}: {snapshot.message}")

                working_copy.checkout(MAIN_BRANCH, force=True)
                working_copy.reset_branch(name, MAIN_BRANCH)

                docs, blocks = self.db.clone_branch(rid, MAIN_BRANCH, name)
                self.db.update_repository(
                    rid, branches=repository.branches + [name], current_branch=name
                )
        except (NotFoundError, PolicyViolationError, ValueError) as e:
            return OperationResult.fail(str(e))
        except ExternalProcessError as e:
            logging.error(f"Creating branch {name} of repository {rid} failed: {e}")
            return OperationResult.fail(f"Could not create branch: {e}")

        logging.info(f"Created branch {name} of repository {rid}")
        return OperationResult.ok(f"Created branch {name}", branch=name, docs=docs, blocks=blocks)

    def switch_branch(self, rid: int, name: str) -> OperationResult:
        """
        Point the repository at another known branch.

        Only metadata changes; the working copy follows on the next sync.
        """
        try:
            repository = self.db.require_repository(rid)
            if name not in repository.branches:
                raise NotFoundError(f"Branch '{name}' not found")
        except NotFoundError as e:
            return OperationResult.fail(str(e))

        if repository.current_branch != name:
            self.db.update_repository(rid, current_branch=name)
        return OperationResult.ok(f"Switched to {name}", branch=name)

    def list_branches(self, rid: int) -> OperationResult:
        try:
            repository = self.db.require_repository(rid)
        except NotFoundError as e:
            return OperationResult.fail(str(e))
        return OperationResult.ok(
            f"{len(repository.branches)} branches",
            branches=repository.branches,
            current_branch=repository.current_branch
        )
