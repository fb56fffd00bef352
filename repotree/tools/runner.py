"""
Tool runner for Repotree.

Executes ``ToolRequest``s against a repository. Single doc/block creates,
edits and deletes go through the structure engine as one-item batches so
they are committed like any other batch.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import Field, ValidationError

from .registry import ToolAction, ToolRegistry, ToolSpec, tool_registry
from ..branches import BranchManager, require_mutable_branch
from ..database import DatabaseManager
from ..errors import NotFoundError, PolicyViolationError
from ..models import (
    Actor, BatchRequest, CamelModel, CreateItem, DeleteRef, NodeKind, OperationResult, UpdateItem
)
from ..search import BaseSearchIndex, DatabaseSearchIndex
from ..structure import StructureEngine
from ..sync import SyncOrchestrator


class ToolRequest(CamelModel):
    """A ``{operation, args, branch}`` call arriving at the tool boundary."""

    operation: str = Field(..., description="Registered tool name, e.g. create_doc")
    args: Dict[str, Any] = Field(default_factory=dict)
    branch: Optional[str] = Field(
        None,
        description="Target branch; defaults to the repository's current branch"
    )
    actor: Optional[Actor] = None


class ToolArguments(CamelModel):
    """Typed view over the loose ``args`` of a tool request."""

    did: Optional[int] = None
    bid: Optional[int] = None
    parent_did: Optional[int] = None
    title: Optional[str] = None
    content: Optional[str] = None
    order: Optional[int] = None
    name: Optional[str] = None
    message: Optional[str] = None
    remote_url: Optional[str] = None
    keywords: Union[str, List[str], None] = None
    kind: Optional[NodeKind] = None
    limit: Optional[int] = None
    skip: int = 0


Handler = Callable[[int, str, ToolSpec, ToolArguments, ToolRequest], OperationResult]


class ToolRunner:
    """
    Dispatches tool requests to the branch, sync, structure and search services.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        branches: BranchManager,
        sync: SyncOrchestrator,
        engine: StructureEngine,
        search_index: Optional[BaseSearchIndex] = None,
        registry: Optional[ToolRegistry] = None
    ):
        self.db = db_manager
        self.branches = branches
        self.sync = sync
        self.engine = engine
        self.search_index = search_index or DatabaseSearchIndex(db_manager)
        self.registry = registry or tool_registry

        self._handlers: Dict[ToolAction, Handler] = {
            ToolAction.QUERY: self._query,
            ToolAction.CREATE: self._create,
            ToolAction.EDIT: self._edit,
            ToolAction.DELETE: self._delete,
            ToolAction.UPDATE_STRUCTURE: self._update_structure,
            ToolAction.CREATE_BRANCH: self._create_branch,
            ToolAction.SWITCH_BRANCH: self._switch_branch,
            ToolAction.LIST_BRANCHES: self._list_branches,
            ToolAction.COMMIT: self._commit,
            ToolAction.PUSH: self._push,
            ToolAction.PULL: self._pull,
            ToolAction.STATUS: self._status,
            ToolAction.SEARCH: self._search,
        }

    def run(self, rid: int, request: Union[ToolRequest, dict]) -> OperationResult:
        """
        Execute one tool request.

        Args:
            rid: Repository id
            request: ``ToolRequest`` or its camelCase dictionary form

        Returns:
            The envelope produced by the tool; never raises
        """
        try:
            if not isinstance(request, ToolRequest):
                request = ToolRequest.model_validate(request)
        except ValidationError as e:
            return OperationResult.fail(f"Malformed tool request: {e}")

        spec = self.registry.get_tool(request.operation)
        if spec is None:
            return OperationResult.fail(f"Unknown operation: {request.operation}")

        try:
            repository = self.db.require_repository(rid)
            branch = request.branch or repository.current_branch
            if spec.mutates:
                require_mutable_branch(branch)
            arguments = ToolArguments.model_validate(request.args) \
                if spec.action != ToolAction.UPDATE_STRUCTURE else ToolArguments()
            logging.info(f"Tool {spec.name} on repository {rid} branch {branch}")
            return self._handlers[spec.action](rid, branch, spec, arguments, request)
        except (NotFoundError, PolicyViolationError) as e:
            return OperationResult.fail(str(e))
        except ValidationError as e:
            return OperationResult.fail(f"Invalid arguments for {spec.name}: {e}")

    # Doc/block tools

    def _query(self, rid, branch, spec, args, request) -> OperationResult:
        if spec.target == NodeKind.DOC:
            if args.did is not None:
                doc = self.db.get_doc(rid, branch, args.did)
                if doc is None:
                    raise NotFoundError(f"Doc {args.did} not found in branch {branch}")
                return OperationResult.ok(doc.title, doc=doc.model_dump(by_alias=True))
            if args.parent_did is not None:
                docs = self.db.list_child_docs(rid, branch, args.parent_did)
            else:
                docs = self.db.list_docs(rid, branch)
            return OperationResult.ok(f"{len(docs)} docs", docs=[d.model_dump(by_alias=True) for d in docs])

        if args.bid is not None:
            block = self.db.get_block(rid, branch, args.bid)
            if block is None:
                raise NotFoundError(f"Block {args.bid} not found in branch {branch}")
            return OperationResult.ok(block.title, block=block.model_dump(by_alias=True))
        blocks = self.db.list_blocks(rid, branch, args.did)
        return OperationResult.ok(f"{len(blocks)} blocks", blocks=[b.model_dump(by_alias=True) for b in blocks])

    def _create(self, rid, branch, spec, args, request) -> OperationResult:
        if spec.target == NodeKind.DOC:
            parent_did = args.parent_did
        else:
            if args.did is None:
                return OperationResult.fail("create_block requires did")
            parent_did = args.did
        item = CreateItem(
            type=spec.target, placeholder_id="new", parent_did=parent_did,
            title=args.title or "", content=args.content or "", order=args.order
        )
        result = self.engine.apply(rid, branch, BatchRequest(creates=[item]), actor=request.actor,
                                   message=f"{spec.name} {item.title}".strip())
        if not result.success:
            return result
        report = result.data["report"]
        if report["dropped"]:
            return OperationResult.fail(report["dropped"][0]["reason"], report=report)
        new_id = report["created"]["new"]
        key = "did" if spec.target == NodeKind.DOC else "bid"
        return OperationResult.ok(f"Created {spec.target.value} {new_id}", report=report, **{key: new_id})

    def _edit(self, rid, branch, spec, args, request) -> OperationResult:
        item = UpdateItem(type=spec.target, did=args.did, bid=args.bid, title=args.title, content=args.content)
        batch = BatchRequest(updates=[item])
        return self._single(rid, branch, spec, batch, request, f"{spec.target.value}:{item.target_id}")

    def _delete(self, rid, branch, spec, args, request) -> OperationResult:
        ref = DeleteRef(type=spec.target, did=args.did, bid=args.bid)
        batch = BatchRequest(deletes=[ref])
        return self._single(rid, branch, spec, batch, request, f"{spec.target.value}:{ref.target_id}")

    def _single(self, rid, branch, spec, batch, request, label) -> OperationResult:
        result = self.engine.apply(rid, branch, batch, actor=request.actor, message=f"{spec.name} {label}")
        if not result.success:
            return result
        report = result.data["report"]
        if report["skipped"]:
            return OperationResult.fail(f"{label} not found in branch {branch}", report=report)
        return OperationResult.ok(f"{spec.name} {label}", report=report)

    # Repository tools

    def _update_structure(self, rid, branch, spec, args, request) -> OperationResult:
        return self.engine.apply(rid, branch, request.args, actor=request.actor)

    def _create_branch(self, rid, branch, spec, args, request) -> OperationResult:
        return self.branches.create_branch(rid, args.name or "", actor=request.actor)

    def _switch_branch(self, rid, branch, spec, args, request) -> OperationResult:
        return self.branches.switch_branch(rid, args.name or "")

    def _list_branches(self, rid, branch, spec, args, request) -> OperationResult:
        return self.branches.list_branches(rid)

    def _commit(self, rid, branch, spec, args, request) -> OperationResult:
        return self.sync.commit(rid, branch, message=args.message, actor=request.actor)

    def _push(self, rid, branch, spec, args, request) -> OperationResult:
        return self.sync.push(rid, branch, remote_url=args.remote_url)

    def _pull(self, rid, branch, spec, args, request) -> OperationResult:
        return self.sync.pull(rid, branch, remote_url=args.remote_url)

    def _status(self, rid, branch, spec, args, request) -> OperationResult:
        return self.sync.status(rid, branch, remote_url=args.remote_url)

    def _search(self, rid, branch, spec, args, request) -> OperationResult:
        repository = self.db.require_repository(rid)
        results = self.search_index.search(
            repository.domain_id, rid, branch, args.keywords or [],
            kind=args.kind, limit=args.limit, skip=args.skip
        )
        return OperationResult.ok(f"{results.total} matches", **results.model_dump(by_alias=True))
