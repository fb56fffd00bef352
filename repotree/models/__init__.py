"""Data models for Repotree."""

from .tree import (
    MAIN_BRANCH, Actor, Block, BranchSyncState, CamelModel, Doc, NodeKind, Repository
)
from .results import (
    ChangeSet, CommitInfo, GitStatus, ImportReport, OperationResult, SearchHit, SearchResults
)
from .batch import (
    BatchReport, BatchRequest, CreateItem, DeleteRef, DroppedCreate,
    StructureBlock, StructureNode, UpdateItem
)

__all__ = [
    "MAIN_BRANCH",
    "Actor",
    "Block",
    "BranchSyncState",
    "CamelModel",
    "Doc",
    "NodeKind",
    "Repository",
    "ChangeSet",
    "CommitInfo",
    "GitStatus",
    "ImportReport",
    "OperationResult",
    "SearchHit",
    "SearchResults",
    "BatchReport",
    "BatchRequest",
    "CreateItem",
    "DeleteRef",
    "DroppedCreate",
    "StructureBlock",
    "StructureNode",
    "UpdateItem",
]
