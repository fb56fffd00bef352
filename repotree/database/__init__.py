"""Tree store for Repotree."""

from .manager import DatabaseManager, doc_path

__all__ = ["DatabaseManager", "doc_path"]
