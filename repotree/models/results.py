"""
Result models for Repotree.

Every service entry point answers with an ``OperationResult`` envelope; the
richer payloads (git status, import and search reports) travel in its
``data`` field as plain dictionaries.
"""

from typing import Any, Dict, List, Optional
from pydantic import Field

from .tree import CamelModel, NodeKind


class OperationResult(CamelModel):
    """
    The ``{success, message, data?}`` envelope returned to callers.
    """

    success: bool = Field(..., description="Whether the operation succeeded")

    message: str = Field("", description="Human-readable outcome")

    data: Optional[Dict[str, Any]] = Field(
        None,
        description="Operation-specific payload"
    )

    @classmethod
    def ok(cls, message: str = "", **data: Any) -> "OperationResult":
        return cls(success=True, message=message, data=data or None)

    @classmethod
    def fail(cls, message: str, **data: Any) -> "OperationResult":
        return cls(success=False, message=message, data=data or None)


class ChangeSet(CamelModel):
    """Uncommitted working-tree changes, grouped by kind."""

    added: List[str] = Field(default_factory=list)
    modified: List[str] = Field(default_factory=list)
    deleted: List[str] = Field(default_factory=list)


class CommitInfo(CamelModel):
    """Metadata of the newest commit on a ref."""

    hash: str
    short_hash: str
    message: str = ""
    timestamp: str = ""


class GitStatus(CamelModel):
    """
    Local/remote status of one branch of a repository's working copy.

    Every field defaults to the conservative value reported when the
    corresponding git query fails.
    """

    has_local_repo: bool = False
    has_local_branch: bool = False
    has_remote: bool = False
    has_remote_branch: bool = False
    local_commits: int = 0
    remote_commits: int = 0
    ahead: int = 0
    behind: int = 0
    uncommitted_changes: bool = False
    unsynced: bool = False
    current_branch: Optional[str] = None
    last_commit: Optional[str] = None
    last_commit_short: Optional[str] = None
    last_commit_message: Optional[str] = None
    last_commit_time: Optional[str] = None
    changes: ChangeSet = Field(default_factory=ChangeSet)


class ImportReport(CamelModel):
    """Counts and root marker text produced by a tree import."""

    docs: int = 0
    blocks: int = 0
    root_readme: Optional[str] = None


class SearchHit(CamelModel):
    """One ranked match returned by a search collaborator."""

    kind: NodeKind
    id: int
    title: str
    snippet: str = ""
    score: float = 0.0


class SearchResults(CamelModel):
    """A page of search hits plus the total match count."""

    results: List[SearchHit] = Field(default_factory=list)
    total: int = 0
