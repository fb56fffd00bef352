"""
Search index interface for Repotree.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Union

from ..models import NodeKind, SearchResults


class BaseSearchIndex(ABC):
    """
    Abstract keyword search over the docs and blocks of a branch.

    Implementations rank matches and return one page of hits plus the total
    number of matches.
    """

    @abstractmethod
    def search(
        self,
        domain_id: str,
        rid: int,
        branch: str,
        keywords: Union[str, List[str]],
        kind: Optional[NodeKind] = None,
        limit: Optional[int] = None,
        skip: int = 0
    ) -> SearchResults:
        """
        Search a branch.

        Args:
            domain_id: Scope the repository belongs to
            rid: Repository id
            branch: Branch to search
            keywords: Whitespace separated string or list of keywords
            kind: Restrict to docs or blocks
            limit: Page size
            skip: Number of ranked hits to skip

        Returns:
            SearchResults with the page of hits and the total
        """
        pass
