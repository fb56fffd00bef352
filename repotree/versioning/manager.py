"""
Git version management for Repotree.

This module owns the on-disk git working copies, one per repository, and
wraps every git invocation the rest of the system needs. Access goes through
an explicit per-repository handle (``WorkingCopy``) obtained from
``VersionManager.lease``, which also serializes concurrent users of the
same working copy.
"""

import logging
import shutil
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional, Tuple

from git import Git, Repo
from git.exc import GitCommandError

from ..config import get_config
from ..errors import ExternalProcessError
from ..models import MAIN_BRANCH, ChangeSet, CommitInfo
from .credentials import strip_credentials


GIT_DIR = ".git"


def parse_porcelain(output: str) -> ChangeSet:
    """
    Group ``git status --porcelain`` lines into added, modified and deleted paths.

    Tolerates a first line whose leading blank was stripped by the caller.
    """
    changes = ChangeSet()
    for line in output.splitlines():
        if not line.strip():
            continue
        if len(line) > 3 and line[2] == " ":
            code, path = line[:2], line[3:]
        else:
            code, path = line[:1], line[2:]
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        if path.startswith('"') and path.endswith('"'):
            path = path[1:-1]

        if code == "??" or "A" in code:
            changes.added.append(path)
        elif "D" in code:
            changes.deleted.append(path)
        else:
            changes.modified.append(path)
    return changes


class WorkingCopy:
    """
    Handle on the git working copy of one repository.

    Every method runs blocking git commands with a kill-after timeout. Write
    operations raise ``ExternalProcessError``; the ``has_*`` queries answer
    False when git fails.
    """

    def __init__(
        self,
        rid: int,
        path: Path,
        bot_name: str,
        bot_email: str,
        timeout: float,
        remote_name: str = "origin",
        default_branch: str = MAIN_BRANCH
    ):
        self.rid = rid
        self.path = Path(path)
        self.bot_name = bot_name
        self.bot_email = bot_email
        self.timeout = timeout
        self.remote_name = remote_name
        self.default_branch = default_branch
        self.repo: Optional[Repo] = None

    def exists(self) -> bool:
        """Whether a git repository has been initialized at the working path."""
        return (self.path / GIT_DIR).exists()

    def ensure_initialized(self) -> Repo:
        """
        Open the working copy, creating it with the bot identity if absent.

        Returns:
            The GitPython repository object
        """
        if self.repo is not None:
            return self.repo

        try:
            if self.exists():
                repo = Repo(self.path)
            else:
                self.path.mkdir(parents=True, exist_ok=True)
                repo = Repo.init(self.path, initial_branch=self.default_branch)
                logging.info(f"Initialized git working copy for repository {self.rid} at {self.path}")

            repo.git.update_environment(GIT_TERMINAL_PROMPT="0")
            repo.git.config("user.name", self.bot_name, kill_after_timeout=self.timeout)
            repo.git.config("user.email", self.bot_email, kill_after_timeout=self.timeout)
            repo.git.config("core.quotepath", "false", kill_after_timeout=self.timeout)
        except GitCommandError as e:
            raise ExternalProcessError(
                f"Failed to initialize working copy {self.path}", command="init", stderr=str(e.stderr)
            ) from e

        self.repo = repo
        return repo

    def _run(self, command: str, *args: str) -> str:
        """Run ``git <command> <args>`` in the working copy."""
        repo = self.ensure_initialized()
        try:
            return getattr(repo.git, command)(*args, kill_after_timeout=self.timeout)
        except GitCommandError as e:
            stderr = str(e.stderr or "").strip()
            shown = " ".join(strip_credentials(str(arg)) for arg in (command,) + args)
            raise ExternalProcessError(
                f"git {shown} failed: {strip_credentials(stderr)}", command=shown, stderr=stderr
            ) from e

    def _succeeds(self, command: str, *args: str) -> bool:
        try:
            self._run(command, *args)
            return True
        except ExternalProcessError:
            return False

    # Queries

    def current_branch(self) -> Optional[str]:
        """Checked-out branch name; also answers for a branch with no commits yet."""
        try:
            return self._run("symbolic_ref", "--short", "HEAD").strip() or None
        except ExternalProcessError:
            return None

    def has_head(self) -> bool:
        return self._succeeds("rev_parse", "--verify", "--quiet", "HEAD")

    def has_local_branch(self, branch: str) -> bool:
        return self._succeeds("show_ref", "--verify", "--quiet", f"refs/heads/{branch}")

    def has_remote_branch(self, branch: str) -> bool:
        """Whether the remote-tracking ref of ``branch`` exists (as of the last fetch)."""
        return self._succeeds(
            "show_ref", "--verify", "--quiet", f"refs/remotes/{self.remote_name}/{branch}"
        )

    def remote_has_branch(self, branch: str) -> bool:
        """Ask the remote itself whether ``branch`` exists."""
        try:
            output = self._run("ls_remote", "--heads", self.remote_name, branch)
        except ExternalProcessError:
            return False
        return bool(output.strip())

    def has_remote(self) -> bool:
        try:
            remotes = self._run("remote").split()
        except ExternalProcessError:
            return False
        return self.remote_name in remotes

    def has_upstream(self, branch: str) -> bool:
        return self._succeeds("rev_parse", "--abbrev-ref", "--symbolic-full-name", f"{branch}@{{upstream}}")

    def get_remote_url(self) -> Optional[str]:
        try:
            return self._run("remote", "get-url", self.remote_name).strip() or None
        except ExternalProcessError:
            return None

    def status_porcelain(self) -> str:
        return self._run("status", "--porcelain", "-uall")

    def changes(self) -> ChangeSet:
        return parse_porcelain(self.status_porcelain())

    def is_dirty(self) -> bool:
        return bool(self.status_porcelain().strip())

    def commit_count(self, ref: str = "HEAD") -> int:
        return int(self._run("rev_list", "--count", ref).strip() or 0)

    def ahead_behind(self, branch: str) -> Tuple[int, int]:
        """
        Commits on ``branch`` missing from its remote-tracking ref, and the reverse.

        Uses the symmetric difference first and two one-sided counts when that
        fails.

        Returns:
            (ahead, behind)
        """
        remote_ref = f"{self.remote_name}/{branch}"
        try:
            output = self._run("rev_list", "--left-right", "--count", f"{remote_ref}...{branch}")
            behind, ahead = output.split()
            return int(ahead), int(behind)
        except (ExternalProcessError, ValueError):
            logging.debug(f"Symmetric rev-list failed for {branch}; counting each side")

        ahead = int(self._run("rev_list", "--count", branch, f"^{remote_ref}").strip() or 0)
        behind = int(self._run("rev_list", "--count", remote_ref, f"^{branch}").strip() or 0)
        return ahead, behind

    def last_commit(self, ref: str = "HEAD") -> Optional[CommitInfo]:
        """Hash, subject and ISO timestamp of the newest commit on ``ref``."""
        try:
            output = self._run("log", "-1", "--format=%H%x00%h%x00%cI%x00%s", ref)
        except ExternalProcessError:
            return None
        parts = output.strip().split("\x00")
        if len(parts) < 4:
            return None
        return CommitInfo(hash=parts[0], short_hash=parts[1], timestamp=parts[2], message=parts[3])

    # Mutations

    def checkout(self, branch: str, start_point: Optional[str] = None, force: bool = False) -> None:
        """
        Check out ``branch``, creating it when needed.

        A missing branch is created from its remote-tracking ref when one
        exists, otherwise from ``start_point`` (or HEAD). On a copy without
        commits, HEAD is simply pointed at the new branch name.
        """
        flags = ("-f",) if force else ()
        remote_ref = f"{self.remote_name}/{branch}"
        if self.has_local_branch(branch):
            self._run("checkout", *flags, branch)
        elif self.has_remote_branch(branch):
            self._run("checkout", *flags, "-b", branch, "--track", remote_ref)
        elif not self.has_head():
            if self.current_branch() != branch:
                self._run("symbolic_ref", "HEAD", f"refs/heads/{branch}")
        elif start_point:
            self._run("checkout", *flags, "-b", branch, start_point)
        else:
            self._run("checkout", *flags, "-b", branch)
        logging.debug(f"Repository {self.rid}: checked out {branch}")

    def reset_branch(self, branch: str, start_point: str) -> None:
        """Create or move ``branch`` to ``start_point`` and check it out."""
        self._run("checkout", "-f", "-B", branch, start_point)

    def stage_all(self) -> None:
        self._run("add", "-A")

    def commit_if_dirty(self, message: str) -> Optional[str]:
        """
        Stage everything and commit when something changed.

        Returns:
            The new commit hash, or None when the tree was clean
        """
        self.stage_all()
        if not self.is_dirty():
            logging.info(f"Repository {self.rid}: nothing to commit")
            return None
        self._run("commit", "-m", message)
        commit_hash = self._run("rev_parse", "HEAD").strip()
        logging.info(f"Repository {self.rid}: created commit {commit_hash[:8]} - {message}")
        return commit_hash

    def set_remote_url(self, url: str) -> None:
        """Point the remote at ``url``, adding the remote if it is missing."""
        if self.has_remote():
            self._run("remote", "set-url", self.remote_name, url)
        else:
            self._run("remote", "add", self.remote_name, url)
        logging.info(f"Repository {self.rid}: remote {self.remote_name} -> {strip_credentials(url)}")

    def fetch(self, branch: Optional[str] = None, prune: bool = False) -> None:
        args = ["--prune"] if prune else []
        args.append(self.remote_name)
        if branch:
            args.append(branch)
        self._run("fetch", *args)

    def pull(self, branch: str) -> None:
        self._run("pull", self.remote_name, branch)

    def push(self, branch: str, set_upstream: bool = False) -> None:
        if set_upstream:
            self._run("push", "-u", self.remote_name, branch)
        else:
            self._run("push", self.remote_name, branch)
        logging.info(f"Repository {self.rid}: pushed {branch}")

    def reset_hard(self, ref: str) -> None:
        self._run("reset", "--hard", ref)

    def clean(self) -> None:
        """Remove untracked files and directories."""
        self._run("clean", "-fd")

    def replace_contents(self, source: Path) -> None:
        """
        Make the working tree an exact copy of ``source``, leaving ``.git`` alone.
        """
        self.path.mkdir(parents=True, exist_ok=True)
        for entry in self.path.iterdir():
            if entry.name == GIT_DIR:
                continue
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
        shutil.copytree(source, self.path, dirs_exist_ok=True,
                        ignore=shutil.ignore_patterns(GIT_DIR))

    def adopt_remote_history(self, url: str) -> bool:
        """
        Replace the git metadata of a copy without commits by a fresh clone of ``url``.

        The clone happens in a scratch directory that is removed on every
        exit path. Working files are kept; the index is reset to the
        adopted HEAD.

        Returns:
            True if history was adopted, False if the copy already had commits
        """
        if self.exists() and self.has_head():
            return False

        with tempfile.TemporaryDirectory(prefix="repotree-clone-") as scratch:
            runner = Git(scratch)
            runner.update_environment(GIT_TERMINAL_PROMPT="0")
            try:
                runner.clone(url, "clone", kill_after_timeout=self.timeout)
            except GitCommandError as e:
                stderr = strip_credentials(str(e.stderr or "").strip())
                raise ExternalProcessError(
                    f"git clone {strip_credentials(url)} failed: {stderr}", command="clone", stderr=stderr
                ) from e

            self.path.mkdir(parents=True, exist_ok=True)
            local_git = self.path / GIT_DIR
            if local_git.exists():
                shutil.rmtree(local_git)
            shutil.copytree(Path(scratch) / "clone" / GIT_DIR, local_git)

        self.repo = None
        self.ensure_initialized()
        if self.has_head():
            self._run("reset")
        logging.info(f"Repository {self.rid}: adopted history of {strip_credentials(url)}")
        return True


class VersionManager:
    """
    Hands out working-copy handles, one working directory per repository.
    """

    def __init__(
        self,
        git_root: Optional[str] = None,
        bot_name: Optional[str] = None,
        bot_email: Optional[str] = None,
        timeout: Optional[float] = None,
        remote_name: Optional[str] = None
    ):
        """
        Initialize the version manager.

        Args:
            git_root: Directory holding ``<rid>`` working copies
            bot_name: Committer name configured in every working copy
            bot_email: Committer email configured in every working copy
            timeout: Seconds after which a git invocation is killed
            remote_name: Name of the remote used for sync
        """
        config = get_config()
        self.git_root = Path(git_root or config.git_root)
        self.bot_name = bot_name or config.bot_name
        self.bot_email = bot_email or config.bot_email
        self.timeout = timeout if timeout is not None else config.git_timeout
        self.remote_name = remote_name or config.remote_name

        self._locks: Dict[int, threading.RLock] = {}
        self._locks_guard = threading.Lock()

        logging.info(f"Initialized VersionManager for: {self.git_root}")

    def working_path(self, rid: int) -> Path:
        return self.git_root / str(rid)

    def exists(self, rid: int) -> bool:
        return (self.working_path(rid) / GIT_DIR).exists()

    def open(self, rid: int) -> WorkingCopy:
        """Build a handle without taking the repository lock."""
        return WorkingCopy(
            rid,
            self.working_path(rid),
            bot_name=self.bot_name,
            bot_email=self.bot_email,
            timeout=self.timeout,
            remote_name=self.remote_name
        )

    def lock_for(self, rid: int) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(rid)
            if lock is None:
                lock = threading.RLock()
                self._locks[rid] = lock
            return lock

    @contextmanager
    def lease(self, rid: int) -> Iterator[WorkingCopy]:
        """
        Exclusive access to the working copy of ``rid`` for the duration of the block.

        The lock is re-entrant, so a holder may lease the same repository again.
        """
        with self.lock_for(rid):
            yield self.open(rid)
