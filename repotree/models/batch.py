"""
Batch structure-edit models for Repotree.

A batch carries creates, updates, deletes and an optional full structure
description for one branch. Creates may point at each other through
client-chosen placeholder tokens because a single batch can create a whole
new sub-tree.
"""

from typing import Dict, List, Optional
from pydantic import Field, model_validator

from .tree import CamelModel, NodeKind


class CreateItem(CamelModel):
    """
    A doc or block to create.

    For a doc, the parent reference names the parent doc (none of them set
    means a root doc). For a block it names the owning doc, which is required.
    Items without a type are docs.
    """

    type: NodeKind = NodeKind.DOC
    placeholder_id: Optional[str] = Field(
        None,
        description="Client token other items of the batch may reference"
    )
    parent_placeholder_id: Optional[str] = Field(
        None,
        description="Placeholder of a doc created earlier in the same batch"
    )
    parent_did: Optional[int] = Field(
        None,
        description="Id of an existing doc"
    )
    title: str = ""
    content: str = ""
    order: Optional[int] = None


class UpdateItem(CamelModel):
    """A title and/or content edit on an existing doc or block."""

    type: NodeKind
    did: Optional[int] = None
    bid: Optional[int] = None
    title: Optional[str] = None
    content: Optional[str] = None

    @model_validator(mode="after")
    def _check_target(self) -> "UpdateItem":
        if self.type == NodeKind.DOC and self.did is None:
            raise ValueError("doc update requires did")
        if self.type == NodeKind.BLOCK and self.bid is None:
            raise ValueError("block update requires bid")
        return self

    @property
    def target_id(self) -> int:
        return self.did if self.type == NodeKind.DOC else self.bid


class DeleteRef(CamelModel):
    """A doc or block to remove. Deletes never cascade."""

    type: NodeKind
    did: Optional[int] = None
    bid: Optional[int] = None

    @model_validator(mode="after")
    def _check_target(self) -> "DeleteRef":
        if self.type == NodeKind.DOC and self.did is None:
            raise ValueError("doc delete requires did")
        if self.type == NodeKind.BLOCK and self.bid is None:
            raise ValueError("block delete requires bid")
        return self

    @property
    def target_id(self) -> int:
        return self.did if self.type == NodeKind.DOC else self.bid


class StructureBlock(CamelModel):
    """Position of a block under the doc that lists it."""

    bid: Optional[int] = None
    placeholder_id: Optional[str] = None
    order: int = 0


class StructureNode(CamelModel):
    """Position of a doc plus its ordered child docs and blocks."""

    did: Optional[int] = None
    placeholder_id: Optional[str] = None
    order: int = 0
    children: List["StructureNode"] = Field(default_factory=list)
    blocks: List[StructureBlock] = Field(default_factory=list)


StructureNode.model_rebuild()


class BatchRequest(CamelModel):
    """
    One atomic-ish structure edit for a single branch.
    """

    creates: List[CreateItem] = Field(default_factory=list)
    updates: List[UpdateItem] = Field(default_factory=list)
    deletes: List[DeleteRef] = Field(default_factory=list)
    structure: Optional[List[StructureNode]] = Field(
        None,
        description="Root docs of the full ordered tree; None leaves the shape alone"
    )
    message: Optional[str] = Field(
        None,
        description="Custom commit message"
    )


class DroppedCreate(CamelModel):
    """A create whose parent reference never resolved."""

    type: NodeKind
    placeholder_id: Optional[str] = None
    title: str = ""
    reason: str = ""


class BatchReport(CamelModel):
    """
    What a batch actually did. Partial failures are listed, not raised.
    """

    deleted: List[str] = Field(default_factory=list)
    created: Dict[str, int] = Field(
        default_factory=dict,
        description="Placeholder token (or 'doc:<n>'/'block:<n>' for untokened items) to new id"
    )
    updated: List[str] = Field(default_factory=list)
    moved_docs: int = 0
    moved_blocks: int = 0
    dropped: List[DroppedCreate] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    synced: bool = False
    commit: Optional[str] = None
