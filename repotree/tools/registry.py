"""
Tool registry for Repotree.

This module defines the catalogue of operations exposed through the
tool-call boundary. Every tool is described once, with an explicit target
kind and action, so the runner dispatches on enums instead of parsing
operation names.
"""

from enum import Enum
from typing import Dict, List, Optional
from dataclasses import dataclass, field

from ..models import NodeKind


class ToolAction(str, Enum):
    """What a tool does."""

    QUERY = "query"
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    UPDATE_STRUCTURE = "update_structure"
    CREATE_BRANCH = "create_branch"
    SWITCH_BRANCH = "switch_branch"
    LIST_BRANCHES = "list_branches"
    COMMIT = "commit"
    PUSH = "push"
    PULL = "pull"
    STATUS = "status"
    SEARCH = "search"


@dataclass
class ToolSpec:
    """
    Description of one tool.
    """
    name: str
    description: str
    action: ToolAction
    target: Optional[NodeKind] = None
    mutates: bool = False
    arguments: List[str] = field(default_factory=list)


class ToolRegistry:
    """
    Registry of all operations callable through the tool-call boundary.
    """

    def __init__(self):
        """Initialize the tool registry with the default tools."""
        self._tools: Dict[str, ToolSpec] = {}
        self._register_default_tools()

    def _register_default_tools(self):
        """Register the doc/block and repository tools."""

        # Doc and block tools: {doc, block} x {query, create, edit, delete}
        self.register_tool(ToolSpec(
            name="query_doc",
            description="Get one doc by did, or list docs (optionally under parentDid)",
            action=ToolAction.QUERY, target=NodeKind.DOC,
            arguments=["did", "parentDid"]
        ))
        self.register_tool(ToolSpec(
            name="query_block",
            description="Get one block by bid, or list blocks (optionally of doc did)",
            action=ToolAction.QUERY, target=NodeKind.BLOCK,
            arguments=["bid", "did"]
        ))
        self.register_tool(ToolSpec(
            name="create_doc",
            description="Create a doc, as a root or under parentDid",
            action=ToolAction.CREATE, target=NodeKind.DOC, mutates=True,
            arguments=["title", "content", "parentDid", "order"]
        ))
        self.register_tool(ToolSpec(
            name="create_block",
            description="Create a block under doc did",
            action=ToolAction.CREATE, target=NodeKind.BLOCK, mutates=True,
            arguments=["did", "title", "content", "order"]
        ))
        self.register_tool(ToolSpec(
            name="edit_doc",
            description="Change the title and/or content of doc did",
            action=ToolAction.EDIT, target=NodeKind.DOC, mutates=True,
            arguments=["did", "title", "content"]
        ))
        self.register_tool(ToolSpec(
            name="edit_block",
            description="Change the title and/or content of block bid",
            action=ToolAction.EDIT, target=NodeKind.BLOCK, mutates=True,
            arguments=["bid", "title", "content"]
        ))
        self.register_tool(ToolSpec(
            name="delete_doc",
            description="Delete doc did (children are not deleted)",
            action=ToolAction.DELETE, target=NodeKind.DOC, mutates=True,
            arguments=["did"]
        ))
        self.register_tool(ToolSpec(
            name="delete_block",
            description="Delete block bid",
            action=ToolAction.DELETE, target=NodeKind.BLOCK, mutates=True,
            arguments=["bid"]
        ))

        # Repository tools
        self.register_tool(ToolSpec(
            name="update_structure",
            description="Apply a batch of creates, updates, deletes and a full structure",
            action=ToolAction.UPDATE_STRUCTURE, mutates=True,
            arguments=["creates", "updates", "deletes", "structure", "message"]
        ))
        self.register_tool(ToolSpec(
            name="create_branch",
            description="Fork a new branch from main",
            action=ToolAction.CREATE_BRANCH,
            arguments=["name"]
        ))
        self.register_tool(ToolSpec(
            name="switch_branch",
            description="Make another known branch the current one",
            action=ToolAction.SWITCH_BRANCH,
            arguments=["name"]
        ))
        self.register_tool(ToolSpec(
            name="list_branches",
            description="List known branches and the current branch",
            action=ToolAction.LIST_BRANCHES
        ))
        self.register_tool(ToolSpec(
            name="commit",
            description="Commit the branch to git if anything changed",
            action=ToolAction.COMMIT,
            arguments=["message"]
        ))
        self.register_tool(ToolSpec(
            name="push",
            description="Push the branch to the remote",
            action=ToolAction.PUSH,
            arguments=["remoteUrl"]
        ))
        self.register_tool(ToolSpec(
            name="pull",
            description="Replace the branch with the remote version",
            action=ToolAction.PULL,
            arguments=["remoteUrl"]
        ))
        self.register_tool(ToolSpec(
            name="status",
            description="Local and remote git status of the branch",
            action=ToolAction.STATUS,
            arguments=["remoteUrl"]
        ))
        self.register_tool(ToolSpec(
            name="search",
            description="Keyword search over docs and blocks of the branch",
            action=ToolAction.SEARCH,
            arguments=["keywords", "kind", "limit", "skip"]
        ))

    def register_tool(self, spec: ToolSpec) -> None:
        """
        Register a tool.

        Args:
            spec: The tool description to register
        """
        self._tools[spec.name] = spec

    def get_tool(self, name: str) -> Optional[ToolSpec]:
        """
        Get a tool by name.

        Returns:
            The tool description, or None if not found
        """
        return self._tools.get(name)

    def list_tools(self) -> List[str]:
        return list(self._tools.keys())

    def get_tools_by_action(self, action: ToolAction) -> List[str]:
        """
        Get the tools performing a given action.

        Args:
            action: The action to look for

        Returns:
            List of tool names
        """
        return [
            name for name, spec in self._tools.items()
            if spec.action == action
        ]


# Global tool registry instance
tool_registry = ToolRegistry()
