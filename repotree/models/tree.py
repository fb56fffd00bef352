"""
Tree data models for Repotree.

This module defines the repository, doc (folder) and block (leaf) records
held by the tree store. Every doc and block carries the branch it belongs to.
"""

from enum import Enum
from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


MAIN_BRANCH = "main"


class CamelModel(BaseModel):
    """Base model accepting and emitting camelCase keys for the wire format."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NodeKind(str, Enum):
    """The two kinds of tree node."""

    DOC = "doc"
    BLOCK = "block"


class Actor(CamelModel):
    """
    The user (or bot) on whose behalf a commit is made.
    """

    id: int = Field(
        0,
        description="Numeric user id; 0 is the system bot"
    )

    name: str = Field(
        "unknown",
        description="Display name recorded in commit messages"
    )


class Repository(CamelModel):
    """
    A top-level content collection mirrored to one git working copy.
    """

    rid: int = Field(
        ...,
        description="Numeric repository id"
    )

    domain_id: str = Field(
        "system",
        description="Scope the repository lives in; prefixes commit messages"
    )

    title: str = Field(
        ...,
        description="Human title of the repository"
    )

    description: str = Field(
        "",
        description="Text written to the root README of the projection"
    )

    current_branch: str = Field(
        MAIN_BRANCH,
        description="Branch selected for editing"
    )

    branches: List[str] = Field(
        default_factory=lambda: [MAIN_BRANCH],
        description="Known local branch names"
    )

    remote_url: Optional[str] = Field(
        None,
        description="Remote clone URL, stored without credentials"
    )

    mode: str = Field(
        "tree",
        description="Display mode hint for clients"
    )

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Doc(CamelModel):
    """
    A folder-like node. May contain child docs and blocks.
    """

    rid: int = Field(..., description="Owning repository id")

    did: int = Field(
        ...,
        description="Doc id, unique within the repository"
    )

    branch: str = Field(..., description="Branch partition key")

    parent_did: Optional[int] = Field(
        None,
        description="Parent doc id; None for a root doc"
    )

    title: str = Field("", description="Human title")

    content: str = Field("", description="Freeform body written to the doc README")

    order: int = Field(0, description="Sibling order number")

    path: str = Field(
        "",
        description="Materialized path: '/' + did for roots, parent path + '/' + did below"
    )

    @property
    def depth(self) -> int:
        """Number of ancestors, derived from the materialized path."""
        return max(self.path.count("/") - 1, 0)


class Block(CamelModel):
    """
    A leaf content unit owned by exactly one doc in the same branch.
    """

    rid: int = Field(..., description="Owning repository id")

    bid: int = Field(
        ...,
        description="Block id, unique within the repository"
    )

    branch: str = Field(..., description="Branch partition key")

    did: int = Field(..., description="Owning doc id")

    title: str = Field("", description="Title; becomes the file name")

    content: str = Field("", description="Body written verbatim to the file")

    order: int = Field(0, description="Sibling order number")


class BranchSyncState(CamelModel):
    """
    Outcome of the last store-to-git sync attempt for a branch.

    A branch is unsynced when its store was mutated but the following commit
    failed, so the git mirror lags behind the store.
    """

    rid: int
    branch: str
    unsynced: bool = False
    last_error: Optional[str] = None
    last_commit: Optional[str] = None
    updated_at: Optional[datetime] = None
