"""
Tool-call boundary for Repotree.
"""

from .registry import ToolAction, ToolRegistry, ToolSpec, tool_registry
from .runner import ToolArguments, ToolRequest, ToolRunner

__all__ = [
    "ToolAction",
    "ToolArguments",
    "ToolRegistry",
    "ToolRequest",
    "ToolRunner",
    "ToolSpec",
    "tool_registry",
]
