"""
Base importer interface for Repotree.

This module defines the abstract interface that all tree importers must implement.
"""

from abc import ABC, abstractmethod
from pathlib import Path

from ..models import ImportReport


class BaseImporter(ABC):
    """
    Abstract base class for all tree importers.

    An importer reads some external representation of a repository (a git
    working copy, an archive) and recreates its docs and blocks in one
    branch of the tree store.
    """

    @abstractmethod
    def import_tree(self, rid: int, branch: str, source: Path) -> ImportReport:
        """
        Recreate docs and blocks of ``branch`` from ``source``.

        The branch is expected to be empty: imports are full rebuilds, not
        incremental merges. Clearing it is the caller's job.

        Returns:
            ImportReport with the number of docs and blocks created
        """
        pass
