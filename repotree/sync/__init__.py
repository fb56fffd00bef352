"""Store/git synchronization for Repotree."""

from .manager import SyncOrchestrator, commit_prefix

__all__ = ["SyncOrchestrator", "commit_prefix"]
