"""
Batch structure reconciliation for Repotree.

Applies one batch of deletes, creates, updates and an optional full
structure description to a branch, in that order, then commits the branch.
Partial failures are reported in the ``BatchReport`` rather than aborting
the batch.
"""

import logging
from typing import Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from ..branches import require_mutable_branch
from ..config import get_config
from ..database import DatabaseManager
from ..errors import MalformedBatchError, NotFoundError, PolicyViolationError
from ..models import (
    Actor, BatchReport, BatchRequest, CreateItem, DroppedCreate, NodeKind,
    OperationResult, StructureNode
)
from ..sync import SyncOrchestrator
from ..versioning import VersionManager


class StructureEngine:
    """
    Reconciles a branch of the tree store with a batch request.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        sync: SyncOrchestrator,
        version_manager: VersionManager,
        max_passes: Optional[int] = None
    ):
        self.db = db_manager
        self.sync = sync
        self.vcs = version_manager
        self.max_passes = max_passes or get_config().max_create_passes

    def apply(
        self,
        rid: int,
        branch: str,
        batch: Union[BatchRequest, dict],
        actor: Optional[Actor] = None,
        message: Optional[str] = None
    ) -> OperationResult:
        """
        Apply a batch to ``branch`` and commit it.

        Args:
            rid: Repository id
            branch: Target branch; ``main`` is rejected
            batch: ``BatchRequest`` or its camelCase dictionary form
            actor: User the commit is made for
            message: Commit message overriding ``batch.message``

        Returns:
            Envelope whose ``report`` is the camelCase ``BatchReport``. The
            envelope succeeds even when the commit fails; ``report.synced``
            tells whether git caught up.
        """
        try:
            self.db.require_repository(rid)
            require_mutable_branch(branch)
            batch = self._parse(batch)
        except (NotFoundError, PolicyViolationError, MalformedBatchError) as e:
            return OperationResult.fail(str(e))

        report = BatchReport()
        with self.vcs.lock_for(rid):
            self._apply_deletes(rid, branch, batch, report)
            doc_ids, block_ids = self._apply_creates(rid, branch, batch.creates, report)
            self._apply_updates(rid, branch, batch, report)
            if batch.structure is not None:
                self._apply_structure(rid, branch, batch.structure, doc_ids, block_ids, report)

            commit_message = message or batch.message or self._describe(report)
            committed = self.sync.commit(rid, branch, message=commit_message, actor=actor)

        report.synced = committed.success
        report.commit = (committed.data or {}).get("commit")
        if report.dropped:
            logging.warning(f"Batch on repository {rid} branch {branch} dropped {len(report.dropped)} creates")

        summary = self._describe(report)
        if not committed.success:
            summary = f"{summary}; {committed.message}"
        return OperationResult.ok(summary, branch=branch, report=report.model_dump(by_alias=True))

    def _parse(self, batch: Union[BatchRequest, dict]) -> BatchRequest:
        if isinstance(batch, BatchRequest):
            return batch
        try:
            return BatchRequest.model_validate(batch or {})
        except ValidationError as e:
            raise MalformedBatchError(f"Malformed batch: {e}") from e

    def _apply_deletes(self, rid: int, branch: str, batch: BatchRequest, report: BatchReport) -> None:
        for ref in batch.deletes:
            label = f"{ref.type.value}:{ref.target_id}"
            if ref.type == NodeKind.DOC:
                removed = self.db.delete_doc(rid, branch, ref.did)
            else:
                removed = self.db.delete_block(rid, branch, ref.bid)
            if removed:
                report.deleted.append(label)
            else:
                report.skipped.append(f"delete {label}: not found")

    def _apply_creates(
        self,
        rid: int,
        branch: str,
        creates: List[CreateItem],
        report: BatchReport
    ) -> Tuple[Dict[str, int], Dict[str, int]]:
        """
        Create docs in bounded passes, then blocks.

        Returns:
            Placeholder to id maps for docs and blocks
        """
        doc_ids: Dict[str, int] = {}
        block_ids: Dict[str, int] = {}

        pending = [(index, item) for index, item in enumerate(creates) if item.type == NodeKind.DOC]
        for _ in range(self.max_passes):
            if not pending:
                break
            unresolved = []
            for index, item in pending:
                resolvable, parent_did = self._resolve_parent(rid, branch, item, doc_ids)
                if not resolvable:
                    unresolved.append((index, item))
                    continue
                doc = self.db.add_doc(
                    rid, branch, title=item.title, content=item.content,
                    parent_did=parent_did, order=item.order
                )
                key = item.placeholder_id or f"doc:{index}"
                if item.placeholder_id:
                    doc_ids[item.placeholder_id] = doc.did
                report.created[key] = doc.did
            progressed = len(unresolved) < len(pending)
            pending = unresolved
            if not progressed:
                break

        for _, item in pending:
            report.dropped.append(self._dropped(branch, item))

        for index, item in enumerate(creates):
            if item.type != NodeKind.BLOCK:
                continue
            if item.parent_placeholder_id is None and item.parent_did is None:
                report.dropped.append(DroppedCreate(
                    type=item.type, placeholder_id=item.placeholder_id, title=item.title,
                    reason="block create names no parent doc"
                ))
                continue
            resolvable, parent_did = self._resolve_parent(rid, branch, item, doc_ids)
            if not resolvable:
                report.dropped.append(self._dropped(branch, item))
                continue
            block = self.db.add_block(
                rid, branch, parent_did, title=item.title, content=item.content, order=item.order
            )
            key = item.placeholder_id or f"block:{index}"
            if item.placeholder_id:
                block_ids[item.placeholder_id] = block.bid
            report.created[key] = block.bid

        return doc_ids, block_ids

    def _resolve_parent(
        self,
        rid: int,
        branch: str,
        item: CreateItem,
        doc_ids: Dict[str, int]
    ) -> Tuple[bool, Optional[int]]:
        """(resolvable, parent doc id); a doc with no parent reference is a root."""
        if item.parent_placeholder_id is not None:
            parent_did = doc_ids.get(item.parent_placeholder_id)
            return parent_did is not None, parent_did
        if item.parent_did is not None:
            return self.db.get_doc(rid, branch, item.parent_did) is not None, item.parent_did
        return True, None

    def _dropped(self, branch: str, item: CreateItem) -> DroppedCreate:
        if item.parent_placeholder_id is not None:
            reason = f"parent placeholder '{item.parent_placeholder_id}' never resolved"
        else:
            reason = f"parent doc {item.parent_did} not found in branch {branch}"
        return DroppedCreate(
            type=item.type, placeholder_id=item.placeholder_id, title=item.title, reason=reason
        )

    def _apply_updates(self, rid: int, branch: str, batch: BatchRequest, report: BatchReport) -> None:
        for item in batch.updates:
            label = f"{item.type.value}:{item.target_id}"
            if item.type == NodeKind.DOC:
                updated = self.db.update_doc(rid, branch, item.did, title=item.title, content=item.content)
            else:
                updated = self.db.update_block(rid, branch, item.bid, title=item.title, content=item.content)
            if updated is None:
                report.skipped.append(f"update {label}: not found")
            else:
                report.updated.append(label)

    def _apply_structure(
        self,
        rid: int,
        branch: str,
        roots: List[StructureNode],
        doc_ids: Dict[str, int],
        block_ids: Dict[str, int],
        report: BatchReport
    ) -> None:
        """
        Re-parent, reorder and repath every listed doc and block.

        Docs are applied by ascending (depth, order, id) so a parent's new
        path is known before its children are repathed. Unlisted docs keep
        their parent; their paths are rebuilt at the end.
        """
        existing = {doc.did for doc in self.db.list_docs(rid, branch)}
        placements: List[Tuple[int, int, int, Optional[int]]] = []
        block_moves: List[Tuple[int, int, int]] = []
        seen = set()

        stack: List[Tuple[StructureNode, Optional[int], int]] = [(node, None, 0) for node in reversed(roots)]
        while stack:
            node, parent_did, depth = stack.pop()
            did = node.did if node.did is not None else doc_ids.get(node.placeholder_id or "")
            if did is None or did not in existing:
                report.skipped.append(f"structure doc {node.did or node.placeholder_id}: not found")
                self._skip_descendants(node, report)
                continue
            if did in seen:
                report.skipped.append(f"structure doc {did}: listed twice")
                self._skip_descendants(node, report)
                continue
            seen.add(did)
            placements.append((depth, node.order, did, parent_did))

            for entry in node.blocks:
                bid = entry.bid if entry.bid is not None else block_ids.get(entry.placeholder_id or "")
                if bid is None or self.db.get_block(rid, branch, bid) is None:
                    report.skipped.append(f"structure block {entry.bid or entry.placeholder_id}: not found")
                    continue
                block_moves.append((bid, did, entry.order))

            for child in reversed(node.children):
                stack.append((child, did, depth + 1))

        paths: Dict[int, str] = {}
        for depth, order, did, parent_did in sorted(placements, key=lambda p: (p[0], p[1], p[2])):
            prefix = paths[parent_did] if parent_did is not None else ""
            paths[did] = f"{prefix}/{did}"
            if self.db.move_doc(rid, branch, did, parent_did, order, paths[did]):
                report.moved_docs += 1

        for bid, did, order in block_moves:
            if self.db.move_block(rid, branch, bid, did, order):
                report.moved_blocks += 1

        self.db.rebuild_paths(rid, branch)

    def _skip_descendants(self, node: StructureNode, report: BatchReport) -> None:
        """List everything below a skipped structure node as skipped too."""
        stack: List[Tuple[StructureNode, str]] = [(node, self._label(node))]
        while stack:
            current, label = stack.pop()
            for entry in current.blocks:
                report.skipped.append(f"structure block {self._label(entry, 'bid')}: parent {label} skipped")
            for child in reversed(current.children):
                child_label = self._label(child)
                report.skipped.append(f"structure doc {child_label}: parent {label} skipped")
                stack.append((child, child_label))

    @staticmethod
    def _label(entry, field: str = "did") -> str:
        value = getattr(entry, field)
        return str(value if value is not None else entry.placeholder_id)

    def _describe(self, report: BatchReport) -> str:
        return (
            f"update structure: {len(report.created)} created, {len(report.updated)} updated, "
            f"{len(report.deleted)} deleted, {report.moved_docs} docs moved"
        )
