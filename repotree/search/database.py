"""
Store-backed search index for Repotree.
"""

from typing import List, Optional, Union

from .base import BaseSearchIndex
from ..config import get_config
from ..database import DatabaseManager
from ..models import Doc, NodeKind, SearchHit, SearchResults


SNIPPET_RADIUS = 60


class DatabaseSearchIndex(BaseSearchIndex):
    """
    Case-insensitive substring search run directly against the tree store.

    Title matches weigh twice as much as body matches.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

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
        repository = self.db.get_repository(rid)
        if repository is None or repository.domain_id != domain_id:
            return SearchResults()

        words = keywords.split() if isinstance(keywords, str) else [w for w in keywords if w]
        words = [w.lower() for w in words]
        if limit is None:
            limit = get_config().get("search.default_limit", 20)

        hits = []
        for node in self.db.search(rid, branch, words, kind):
            title = node.title.lower()
            content = node.content.lower()
            score = float(sum(2 * title.count(w) + content.count(w) for w in words))
            if isinstance(node, Doc):
                hit_kind, node_id = NodeKind.DOC, node.did
            else:
                hit_kind, node_id = NodeKind.BLOCK, node.bid
            hits.append(SearchHit(
                kind=hit_kind, id=node_id, title=node.title,
                snippet=self._snippet(node.content, words), score=score
            ))

        hits.sort(key=lambda h: (-h.score, h.kind.value, h.id))
        skip = max(skip, 0)
        return SearchResults(results=hits[skip:skip + limit], total=len(hits))

    def _snippet(self, content: str, words: List[str]) -> str:
        lowered = content.lower()
        positions = [lowered.find(w) for w in words if lowered.find(w) >= 0]
        if not positions:
            return content[:2 * SNIPPET_RADIUS].strip()
        start = max(min(positions) - SNIPPET_RADIUS, 0)
        snippet = content[start:start + 2 * SNIPPET_RADIUS].strip()
        prefix = "..." if start > 0 else ""
        suffix = "..." if start + 2 * SNIPPET_RADIUS < len(content) else ""
        return f"{prefix}{snippet}{suffix}"
