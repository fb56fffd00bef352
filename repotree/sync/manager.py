"""
Store/git synchronization for Repotree.

The sync orchestrator drives the commit -> push and fetch -> reset -> import
sequences between the tree store and a repository's git working copy, and
computes the local/remote status of a branch.

Store mutations and git commits are not transactional with each other. A
failed commit leaves the store as it is and marks the branch unsynced; the
next successful commit clears the mark.
"""

import logging
import tempfile
from pathlib import Path
from typing import Optional

from ..database import DatabaseManager
from ..errors import ExternalProcessError, NotFoundError, PolicyViolationError, RemoteProvisioningError
from ..importers import FilesystemImporter
from ..models import MAIN_BRANCH, Actor, GitStatus, OperationResult, Repository
from ..projection import FilesystemProjector, default_description
from ..versioning import VersionManager, WorkingCopy, build_remote_url, strip_credentials


def commit_prefix(repository: Repository, actor: Actor) -> str:
    """Scope prefix of every commit message: ``<domain>/<user id>/<user name>``."""
    return f"{repository.domain_id}/{actor.id}/{actor.name or 'unknown'}"


class SyncOrchestrator:
    """
    Mirrors branches of the tree store into git and back.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        version_manager: VersionManager,
        projector: Optional[FilesystemProjector] = None,
        importer: Optional[FilesystemImporter] = None
    ):
        self.db = db_manager
        self.vcs = version_manager
        self.projector = projector or FilesystemProjector(db_manager)
        self.importer = importer or FilesystemImporter(db_manager)

    def commit(
        self,
        rid: int,
        branch: Optional[str] = None,
        message: Optional[str] = None,
        actor: Optional[Actor] = None
    ) -> OperationResult:
        """
        Project a branch into its git branch and commit when anything changed.

        Args:
            rid: Repository id
            branch: Branch to commit (defaults to the repository's current branch)
            message: Optional custom message, prefixed by the commit scope
            actor: User the commit is made for

        Returns:
            Envelope with ``commit`` (None when the tree was clean) and ``branch``
        """
        actor = actor or Actor()
        try:
            repository = self.db.require_repository(rid)
        except NotFoundError as e:
            return OperationResult.fail(str(e))
        branch = branch or repository.current_branch

        prefix = commit_prefix(repository, actor)
        full_message = f"{prefix}: {message}" if message else prefix

        try:
            with self.vcs.lease(rid) as working_copy:
                self._refresh_working_tree(working_copy, repository, branch)
                commit_hash = working_copy.commit_if_dirty(full_message)
        except (ExternalProcessError, OSError) as e:
            logging.error(f"Commit of repository {rid} branch {branch} failed: {e}")
            self.db.mark_branch_state(rid, branch, unsynced=True, last_error=str(e))
            return OperationResult.fail(f"Commit failed: {e}", branch=branch, unsynced=True)

        self.db.mark_branch_state(rid, branch, unsynced=False, last_commit=commit_hash)
        if commit_hash is None:
            return OperationResult.ok("Nothing to commit", branch=branch, commit=None)
        return OperationResult.ok(f"Committed {commit_hash[:8]}", branch=branch, commit=commit_hash)

    def push(self, rid: int, branch: Optional[str] = None, remote_url: Optional[str] = None) -> OperationResult:
        """
        Push a branch to the remote, creating the remote branch on first push.

        ``main`` is never pushed.
        """
        try:
            repository = self.db.require_repository(rid)
            branch = branch or repository.current_branch
            if branch == MAIN_BRANCH:
                raise PolicyViolationError("The main branch cannot be pushed")
            url = self._resolve_remote(repository, remote_url)

            with self.vcs.lease(rid) as working_copy:
                if not working_copy.exists() or not working_copy.has_local_branch(branch):
                    raise NotFoundError(f"Branch {branch} has no local commits; commit it first")
                working_copy.set_remote_url(build_remote_url(url))
                working_copy.checkout(branch, force=True)
                first_push = not working_copy.has_upstream(branch) or not working_copy.remote_has_branch(branch)
                working_copy.push(branch, set_upstream=first_push)
        except (NotFoundError, PolicyViolationError) as e:
            return OperationResult.fail(str(e))
        except ExternalProcessError as e:
            logging.error(f"Push of repository {rid} branch {branch} failed: {e}")
            return OperationResult.fail(f"Push failed: {e}", branch=branch)

        return OperationResult.ok(f"Pushed {branch}", branch=branch, created_upstream=first_push)

    def pull(self, rid: int, branch: Optional[str] = None, remote_url: Optional[str] = None) -> OperationResult:
        """
        Replace a branch of the store with the remote's version of it.

        Allowed on ``main``: the store copy is only a cache of the remote.
        The local git branch is hard-reset to the fetched ref, the store
        branch is cleared and re-imported from the working copy.
        """
        try:
            repository = self.db.require_repository(rid)
            branch = branch or repository.current_branch
            url = self._resolve_remote(repository, remote_url)

            with self.vcs.lease(rid) as working_copy:
                working_copy.ensure_initialized()
                working_copy.set_remote_url(build_remote_url(url))
                working_copy.fetch(prune=True)
                if not working_copy.has_remote_branch(branch):
                    raise NotFoundError(f"Remote branch {branch} not found")
                remote_ref = f"{working_copy.remote_name}/{branch}"
                working_copy.reset_branch(branch, remote_ref)
                working_copy.reset_hard(remote_ref)
                working_copy.clean()

                try:
                    # Store contents are only replaced if the whole import succeeds
                    with self.db.transaction():
                        self.db.clear_branch(rid, branch)
                        report = self.importer.import_tree(rid, branch, working_copy.path)
                except Exception as e:
                    logging.error(f"Import of pulled branch {branch} into repository {rid} failed: {e}")
                    self.db.mark_branch_state(rid, branch, unsynced=True, last_error=str(e))
                    return OperationResult.fail(f"Pull failed: could not import {branch}: {e}",
                                                branch=branch, unsynced=True)
                last = working_copy.last_commit()
        except (NotFoundError, PolicyViolationError) as e:
            return OperationResult.fail(str(e))
        except ExternalProcessError as e:
            logging.error(f"Pull of repository {rid} branch {branch} failed: {e}")
            return OperationResult.fail(f"Pull failed: {e}", branch=branch)

        updates = {}
        readme = report.root_readme
        if readme is not None and readme != default_description(repository.title) and readme != repository.description:
            updates["description"] = readme
        if branch not in repository.branches:
            updates["branches"] = repository.branches + [branch]
        if updates:
            self.db.update_repository(rid, **updates)

        self.db.mark_branch_state(rid, branch, unsynced=False, last_commit=last.hash if last else None)
        return OperationResult.ok(
            f"Pulled {branch}: {report.docs} docs, {report.blocks} blocks",
            branch=branch, docs=report.docs, blocks=report.blocks
        )

    def status(
        self,
        rid: int,
        branch: Optional[str] = None,
        remote_url: Optional[str] = None,
        refresh: bool = True
    ) -> OperationResult:
        """
        Local and remote status of a branch.

        Every sub-query is fault tolerant: a failing git call only resets the
        fields it would have filled.

        Args:
            rid: Repository id
            branch: Branch to inspect (defaults to the current branch)
            remote_url: Remote to compare with (defaults to the stored remote)
            refresh: Re-project the store into the working tree first, so
                uncommitted store edits show up as changes

        Returns:
            Envelope whose ``status`` holds the camelCase ``GitStatus`` fields
        """
        try:
            repository = self.db.require_repository(rid)
        except NotFoundError as e:
            return OperationResult.fail(str(e))
        branch = branch or repository.current_branch
        url = remote_url or repository.remote_url

        status = GitStatus(unsynced=self.db.get_branch_state(rid, branch).unsynced)

        with self.vcs.lease(rid) as working_copy:
            if not working_copy.exists():
                return OperationResult.ok("No local repository", branch=branch,
                                          status=status.model_dump(by_alias=True))
            status.has_local_repo = True
            status.has_local_branch = working_copy.has_local_branch(branch)

            if refresh and status.has_local_branch:
                try:
                    self._refresh_working_tree(working_copy, repository, branch)
                except (ExternalProcessError, OSError) as e:
                    logging.warning(f"Could not refresh working tree of repository {rid}: {e}")

            status.current_branch = working_copy.current_branch()
            if status.has_local_branch:
                try:
                    status.local_commits = working_copy.commit_count(branch)
                except ExternalProcessError:
                    status.local_commits = 0
                last = working_copy.last_commit(branch)
                if last:
                    status.last_commit = last.hash
                    status.last_commit_short = last.short_hash
                    status.last_commit_message = last.message
                    status.last_commit_time = last.timestamp

            try:
                status.changes = working_copy.changes()
                status.uncommitted_changes = bool(
                    status.changes.added or status.changes.modified or status.changes.deleted
                )
            except ExternalProcessError:
                status.uncommitted_changes = False

            if url:
                self._remote_status(working_copy, branch, url, status)

        return OperationResult.ok(f"Status of {branch}", branch=branch,
                                  status=status.model_dump(by_alias=True))

    def attach_remote(self, rid: int, url: str) -> OperationResult:
        """
        Connect a repository to a remote and adopt the remote's history when
        the working copy has none yet.
        """
        try:
            self.db.require_repository(rid)
            stored = strip_credentials(build_remote_url(url, token=""))
            with self.vcs.lease(rid) as working_copy:
                adopted = working_copy.adopt_remote_history(build_remote_url(stored))
                working_copy.set_remote_url(build_remote_url(stored))
        except NotFoundError as e:
            return OperationResult.fail(str(e))
        except (ExternalProcessError, OSError) as e:
            logging.error(f"Attaching remote to repository {rid} failed: {e}")
            return OperationResult.fail(f"Could not attach remote: {e}")

        self.db.update_repository(rid, remote_url=stored)
        return OperationResult.ok(f"Remote set to {stored}", remote_url=stored, adopted=adopted)

    def provision_remote(self, rid: int, provider, name: Optional[str] = None) -> OperationResult:
        """
        Create (or find) a hosted remote repository and attach it.

        Args:
            rid: Repository id
            provider: Remote provisioning collaborator (see ``repotree.remote``)
            name: Remote repository name; derived from the title when omitted
        """
        try:
            repository = self.db.require_repository(rid)
            name = name or provider.repository_name(repository.title, rid)
            clone_url = provider.create_repository(name, repository.description or repository.title)
        except NotFoundError as e:
            return OperationResult.fail(str(e))
        except RemoteProvisioningError as e:
            logging.error(f"Provisioning remote for repository {rid} failed: {e}")
            return OperationResult.fail(f"Could not create remote repository: {e}")
        return self.attach_remote(rid, clone_url)

    def _resolve_remote(self, repository: Repository, remote_url: Optional[str]) -> str:
        url = remote_url or repository.remote_url
        if not url:
            raise NotFoundError(f"Repository {repository.rid} has no remote configured")
        if not repository.remote_url:
            stored = strip_credentials(build_remote_url(url, token=""))
            self.db.update_repository(repository.rid, remote_url=stored)
        return url

    def _refresh_working_tree(self, working_copy: WorkingCopy, repository: Repository, branch: str) -> None:
        """Check out ``branch`` and overwrite its working tree with a fresh projection."""
        working_copy.ensure_initialized()
        start_point = None
        if branch != MAIN_BRANCH and working_copy.has_local_branch(MAIN_BRANCH):
            start_point = MAIN_BRANCH
        working_copy.checkout(branch, start_point=start_point, force=True)

        with tempfile.TemporaryDirectory(prefix="repotree-projection-") as scratch:
            self.projector.project(repository.rid, branch, Path(scratch))
            working_copy.replace_contents(Path(scratch))

    def _remote_status(self, working_copy: WorkingCopy, branch: str, url: str, status: GitStatus) -> None:
        try:
            working_copy.set_remote_url(build_remote_url(url))
            working_copy.fetch(prune=True)
            status.has_remote = True
        except ExternalProcessError as e:
            logging.warning(f"Fetch for status of repository {working_copy.rid} failed: {e}")
            return

        status.has_remote_branch = working_copy.has_remote_branch(branch)
        remote_ref = f"{working_copy.remote_name}/{branch}"
        if status.has_remote_branch:
            try:
                status.remote_commits = working_copy.commit_count(remote_ref)
            except ExternalProcessError:
                status.remote_commits = 0

        if not status.has_local_branch:
            return
        if not status.has_remote_branch:
            # Never pushed: every local commit is ahead
            status.ahead = status.local_commits
            return
        try:
            status.ahead, status.behind = working_copy.ahead_behind(branch)
        except ExternalProcessError:
            status.ahead = max(status.local_commits - status.remote_commits, 0)
            status.behind = max(status.remote_commits - status.local_commits, 0)
