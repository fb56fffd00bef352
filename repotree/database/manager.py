"""
Database manager for Repotree.

This module holds the tree store: repositories, docs and blocks partitioned
by branch, kept in DuckDB. It knows nothing about git or about which branches
are writable; callers enforce the read-only rule for ``main``.
"""

import duckdb
import json
import logging
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional, Tuple
from datetime import datetime

from ..errors import NotFoundError
from ..models import MAIN_BRANCH, Block, BranchSyncState, Doc, NodeKind, Repository


REPOSITORY_COLUMNS = (
    "rid, domain_id, title, description, current_branch, branches, "
    "remote_url, mode, created_at, updated_at"
)
DOC_COLUMNS = "rid, did, branch, parent_did, title, content, sort_order, path"
BLOCK_COLUMNS = "rid, bid, branch, did, title, content, sort_order"

REPOSITORY_FIELDS = {"domain_id", "title", "description", "current_branch", "branches", "remote_url", "mode"}


def doc_path(did: int, parent: Optional[Doc] = None) -> str:
    """Materialized path of a doc given its (already pathed) parent."""
    prefix = parent.path if parent is not None else ""
    return f"{prefix}/{did}"


def escape_like(text: str) -> str:
    """Escape ``\\``, ``%`` and ``_`` for a LIKE pattern using ``ESCAPE '\\'``."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class DatabaseManager:
    """
    Manages the DuckDB database holding the branch-partitioned doc/block tree.
    """

    def __init__(self, db_path: str = "repotree.db"):
        """
        Initialize the database manager.

        Args:
            db_path: Path to the DuckDB database file (":memory:" for a scratch store)
        """
        self.db_path = db_path
        self.connection = None

    def connect(self):
        """Establish connection to the database."""
        self.connection = duckdb.connect(self.db_path)

    def disconnect(self):
        """Close the database connection."""
        if self.connection:
            self.connection.close()
            self.connection = None

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()

    def _require_connection(self):
        if not self.connection:
            raise RuntimeError("Database connection not established")
        return self.connection

    @contextmanager
    def transaction(self):
        """
        Run the enclosed statements atomically; any exception rolls them back.

        Not re-entrant: DuckDB has no nested transactions.
        """
        conn = self._require_connection()
        conn.begin()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def initialize_database(self):
        """
        Create all necessary tables if they don't exist.
        """
        conn = self._require_connection()

        conn.execute("CREATE SEQUENCE IF NOT EXISTS repository_id_seq START 1;")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS repositories (
                rid BIGINT PRIMARY KEY DEFAULT nextval('repository_id_seq'),
                domain_id VARCHAR NOT NULL,
                title VARCHAR NOT NULL,
                description VARCHAR NOT NULL DEFAULT '',
                current_branch VARCHAR NOT NULL DEFAULT 'main',
                branches VARCHAR NOT NULL,
                remote_url VARCHAR,
                mode VARCHAR NOT NULL DEFAULT 'tree',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Monotonic per-repository id allocation; ids are never reused
        conn.execute("""
            CREATE TABLE IF NOT EXISTS id_counters (
                rid BIGINT NOT NULL,
                kind VARCHAR NOT NULL,
                last_id BIGINT NOT NULL,
                PRIMARY KEY (rid, kind)
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS docs (
                rid BIGINT NOT NULL,
                did BIGINT NOT NULL,
                branch VARCHAR NOT NULL,
                parent_did BIGINT,
                title VARCHAR NOT NULL DEFAULT '',
                content VARCHAR NOT NULL DEFAULT '',
                sort_order INTEGER NOT NULL DEFAULT 0,
                path VARCHAR NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (rid, did)
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS blocks (
                rid BIGINT NOT NULL,
                bid BIGINT NOT NULL,
                branch VARCHAR NOT NULL,
                did BIGINT NOT NULL,
                title VARCHAR NOT NULL DEFAULT '',
                content VARCHAR NOT NULL DEFAULT '',
                sort_order INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (rid, bid)
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS branch_sync_state (
                rid BIGINT NOT NULL,
                branch VARCHAR NOT NULL,
                unsynced BOOLEAN NOT NULL DEFAULT false,
                last_error VARCHAR,
                last_commit VARCHAR,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (rid, branch)
            )
        """)

    # Repositories

    def create_repository(
        self,
        title: str,
        domain_id: str = "system",
        description: str = "",
        remote_url: Optional[str] = None,
        mode: str = "tree"
    ) -> Repository:
        """
        Create a repository whose only branch is ``main``.

        Returns:
            The stored repository
        """
        conn = self._require_connection()
        now = datetime.now()
        row = conn.execute(f"""
            INSERT INTO repositories (domain_id, title, description, current_branch, branches,
                                      remote_url, mode, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING {REPOSITORY_COLUMNS}
        """, [
            domain_id, title, description, MAIN_BRANCH, json.dumps([MAIN_BRANCH]),
            remote_url, mode, now, now
        ]).fetchone()
        repository = self._row_to_repository(row)
        logging.info(f"Created repository {repository.rid}: {title}")
        return repository

    def get_repository(self, rid: int) -> Optional[Repository]:
        """
        Retrieve a repository by id.

        Returns:
            The repository if found, None otherwise
        """
        conn = self._require_connection()
        row = conn.execute(
            f"SELECT {REPOSITORY_COLUMNS} FROM repositories WHERE rid = ?", [rid]
        ).fetchone()
        return self._row_to_repository(row) if row else None

    def require_repository(self, rid: int) -> Repository:
        repository = self.get_repository(rid)
        if repository is None:
            raise NotFoundError(f"Repository not found: {rid}")
        return repository

    def list_repositories(self, domain_id: Optional[str] = None) -> List[Repository]:
        conn = self._require_connection()
        if domain_id:
            rows = conn.execute(
                f"SELECT {REPOSITORY_COLUMNS} FROM repositories WHERE domain_id = ? ORDER BY rid",
                [domain_id]
            ).fetchall()
        else:
            rows = conn.execute(f"SELECT {REPOSITORY_COLUMNS} FROM repositories ORDER BY rid").fetchall()
        return [self._row_to_repository(row) for row in rows]

    def update_repository(self, rid: int, **fields) -> Repository:
        """
        Update repository metadata.

        Args:
            rid: Repository id
            **fields: Any of domain_id, title, description, current_branch,
                branches, remote_url, mode

        Returns:
            The updated repository
        """
        conn = self._require_connection()
        unknown = set(fields) - REPOSITORY_FIELDS
        if unknown:
            raise ValueError(f"Unknown repository fields: {sorted(unknown)}")

        self.require_repository(rid)
        if fields:
            assignments = []
            params = []
            for name, value in fields.items():
                if name == "branches":
                    value = json.dumps(list(value))
                assignments.append(f"{name} = ?")
                params.append(value)
            assignments.append("updated_at = ?")
            params.append(datetime.now())
            params.append(rid)
            conn.execute(f"UPDATE repositories SET {', '.join(assignments)} WHERE rid = ?", params)
        return self.require_repository(rid)

    def allocate_id(self, rid: int, kind: NodeKind) -> int:
        """
        Allocate the next doc or block id of a repository.

        Ids grow monotonically per repository across all branches, so a clone
        or an import never reuses an id of the branch it was copied from.
        """
        return self.allocate_ids(rid, kind, 1)

    def allocate_ids(self, rid: int, kind: NodeKind, count: int) -> int:
        """
        Reserve ``count`` consecutive ids.

        Returns:
            The first reserved id
        """
        conn = self._require_connection()
        kind = NodeKind(kind).value
        row = conn.execute(
            "SELECT last_id FROM id_counters WHERE rid = ? AND kind = ?", [rid, kind]
        ).fetchone()
        first_id = (row[0] if row else 0) + 1
        if count <= 0:
            return first_id
        last_id = first_id + count - 1
        if row:
            conn.execute(
                "UPDATE id_counters SET last_id = ? WHERE rid = ? AND kind = ?", [last_id, rid, kind]
            )
        else:
            conn.execute(
                "INSERT INTO id_counters (rid, kind, last_id) VALUES (?, ?, ?)", [rid, kind, last_id]
            )
        return first_id

    # Docs

    def add_doc(
        self,
        rid: int,
        branch: str,
        title: str,
        content: str = "",
        parent_did: Optional[int] = None,
        order: Optional[int] = None
    ) -> Doc:
        """
        Create a doc. The parent, if given, must exist in the same branch.

        Returns:
            The stored doc with its allocated id and materialized path
        """
        conn = self._require_connection()
        parent = None
        if parent_did is not None:
            parent = self.get_doc(rid, branch, parent_did)
            if parent is None:
                raise NotFoundError(f"Parent doc {parent_did} not found in branch {branch}")

        if order is None:
            order = self._next_doc_order(rid, branch, parent_did)

        did = self.allocate_id(rid, NodeKind.DOC)
        now = datetime.now()
        doc = Doc(
            rid=rid, did=did, branch=branch, parent_did=parent_did,
            title=title or "", content=content or "", order=order,
            path=doc_path(did, parent)
        )
        conn.execute(f"""
            INSERT INTO docs ({DOC_COLUMNS}, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, [doc.rid, doc.did, doc.branch, doc.parent_did, doc.title, doc.content,
              doc.order, doc.path, now, now])
        return doc

    def get_doc(self, rid: int, branch: str, did: int) -> Optional[Doc]:
        conn = self._require_connection()
        row = conn.execute(
            f"SELECT {DOC_COLUMNS} FROM docs WHERE rid = ? AND branch = ? AND did = ?",
            [rid, branch, did]
        ).fetchone()
        return self._row_to_doc(row) if row else None

    def list_docs(self, rid: int, branch: str) -> List[Doc]:
        """All docs of a branch, siblings ordered by (order, id)."""
        conn = self._require_connection()
        rows = conn.execute(
            f"SELECT {DOC_COLUMNS} FROM docs WHERE rid = ? AND branch = ? ORDER BY sort_order, did",
            [rid, branch]
        ).fetchall()
        return [self._row_to_doc(row) for row in rows]

    def list_child_docs(self, rid: int, branch: str, parent_did: Optional[int]) -> List[Doc]:
        conn = self._require_connection()
        if parent_did is None:
            rows = conn.execute(f"""
                SELECT {DOC_COLUMNS} FROM docs
                WHERE rid = ? AND branch = ? AND parent_did IS NULL
                ORDER BY sort_order, did
            """, [rid, branch]).fetchall()
        else:
            rows = conn.execute(f"""
                SELECT {DOC_COLUMNS} FROM docs
                WHERE rid = ? AND branch = ? AND parent_did = ?
                ORDER BY sort_order, did
            """, [rid, branch, parent_did]).fetchall()
        return [self._row_to_doc(row) for row in rows]

    def update_doc(
        self,
        rid: int,
        branch: str,
        did: int,
        title: Optional[str] = None,
        content: Optional[str] = None
    ) -> Optional[Doc]:
        """
        Edit the title and/or content of a doc.

        Returns:
            The updated doc, or None if it does not exist in the branch
        """
        if not self._update_text("docs", "did", rid, branch, did, title, content):
            return None
        return self.get_doc(rid, branch, did)

    def move_doc(self, rid: int, branch: str, did: int, parent_did: Optional[int], order: int, path: str) -> bool:
        """Set parent pointer, order and path of a doc in one statement."""
        conn = self._require_connection()
        if self.get_doc(rid, branch, did) is None:
            return False
        conn.execute("""
            UPDATE docs SET parent_did = ?, sort_order = ?, path = ?, updated_at = ?
            WHERE rid = ? AND branch = ? AND did = ?
        """, [parent_did, order, path, datetime.now(), rid, branch, did])
        return True

    def delete_doc(self, rid: int, branch: str, did: int) -> bool:
        """
        Delete one doc. Child docs and blocks are left in place.

        Returns:
            True if the doc existed
        """
        conn = self._require_connection()
        if self.get_doc(rid, branch, did) is None:
            return False
        conn.execute("DELETE FROM docs WHERE rid = ? AND branch = ? AND did = ?", [rid, branch, did])
        return True

    def rebuild_paths(self, rid: int, branch: str) -> int:
        """
        Recompute every materialized path of a branch from the parent pointers.

        Docs whose parent is gone keep their path untouched.

        Returns:
            Number of docs whose path changed
        """
        conn = self._require_connection()
        docs = self.list_docs(rid, branch)
        children: Dict[Optional[int], List[Doc]] = {}
        for doc in docs:
            children.setdefault(doc.parent_did, []).append(doc)

        changed = 0
        queue: List[Tuple[Doc, str]] = [(doc, doc_path(doc.did)) for doc in children.get(None, [])]
        while queue:
            doc, path = queue.pop()
            if doc.path != path:
                conn.execute(
                    "UPDATE docs SET path = ? WHERE rid = ? AND branch = ? AND did = ?",
                    [path, rid, branch, doc.did]
                )
                changed += 1
            for child in children.get(doc.did, []):
                queue.append((child, f"{path}/{child.did}"))
        return changed

    def _next_doc_order(self, rid: int, branch: str, parent_did: Optional[int]) -> int:
        conn = self._require_connection()
        if parent_did is None:
            row = conn.execute("""
                SELECT COALESCE(MAX(sort_order), -1) + 1 FROM docs
                WHERE rid = ? AND branch = ? AND parent_did IS NULL
            """, [rid, branch]).fetchone()
        else:
            row = conn.execute("""
                SELECT COALESCE(MAX(sort_order), -1) + 1 FROM docs
                WHERE rid = ? AND branch = ? AND parent_did = ?
            """, [rid, branch, parent_did]).fetchone()
        return int(row[0])

    # Blocks

    def add_block(
        self,
        rid: int,
        branch: str,
        did: int,
        title: str,
        content: str = "",
        order: Optional[int] = None
    ) -> Block:
        """
        Create a block under an existing doc of the same branch.
        """
        conn = self._require_connection()
        if self.get_doc(rid, branch, did) is None:
            raise NotFoundError(f"Doc {did} not found in branch {branch}")

        if order is None:
            row = conn.execute("""
                SELECT COALESCE(MAX(sort_order), -1) + 1 FROM blocks
                WHERE rid = ? AND branch = ? AND did = ?
            """, [rid, branch, did]).fetchone()
            order = int(row[0])

        bid = self.allocate_id(rid, NodeKind.BLOCK)
        now = datetime.now()
        block = Block(
            rid=rid, bid=bid, branch=branch, did=did,
            title=title or "", content=content or "", order=order
        )
        conn.execute(f"""
            INSERT INTO blocks ({BLOCK_COLUMNS}, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, [block.rid, block.bid, block.branch, block.did, block.title, block.content,
              block.order, now, now])
        return block

    def get_block(self, rid: int, branch: str, bid: int) -> Optional[Block]:
        conn = self._require_connection()
        row = conn.execute(
            f"SELECT {BLOCK_COLUMNS} FROM blocks WHERE rid = ? AND branch = ? AND bid = ?",
            [rid, branch, bid]
        ).fetchone()
        return self._row_to_block(row) if row else None

    def list_blocks(self, rid: int, branch: str, did: Optional[int] = None) -> List[Block]:
        """Blocks of a branch, optionally only those of one doc, ordered by (order, id)."""
        conn = self._require_connection()
        if did is None:
            rows = conn.execute(
                f"SELECT {BLOCK_COLUMNS} FROM blocks WHERE rid = ? AND branch = ? ORDER BY sort_order, bid",
                [rid, branch]
            ).fetchall()
        else:
            rows = conn.execute(f"""
                SELECT {BLOCK_COLUMNS} FROM blocks
                WHERE rid = ? AND branch = ? AND did = ?
                ORDER BY sort_order, bid
            """, [rid, branch, did]).fetchall()
        return [self._row_to_block(row) for row in rows]

    def update_block(
        self,
        rid: int,
        branch: str,
        bid: int,
        title: Optional[str] = None,
        content: Optional[str] = None
    ) -> Optional[Block]:
        if not self._update_text("blocks", "bid", rid, branch, bid, title, content):
            return None
        return self.get_block(rid, branch, bid)

    def move_block(self, rid: int, branch: str, bid: int, did: int, order: int) -> bool:
        conn = self._require_connection()
        if self.get_block(rid, branch, bid) is None:
            return False
        conn.execute("""
            UPDATE blocks SET did = ?, sort_order = ?, updated_at = ?
            WHERE rid = ? AND branch = ? AND bid = ?
        """, [did, order, datetime.now(), rid, branch, bid])
        return True

    def delete_block(self, rid: int, branch: str, bid: int) -> bool:
        conn = self._require_connection()
        if self.get_block(rid, branch, bid) is None:
            return False
        conn.execute("DELETE FROM blocks WHERE rid = ? AND branch = ? AND bid = ?", [rid, branch, bid])
        return True

    def _update_text(
        self,
        table: str,
        key: str,
        rid: int,
        branch: str,
        node_id: int,
        title: Optional[str],
        content: Optional[str]
    ) -> bool:
        conn = self._require_connection()
        exists = conn.execute(
            f"SELECT 1 FROM {table} WHERE rid = ? AND branch = ? AND {key} = ?", [rid, branch, node_id]
        ).fetchone()
        if not exists:
            return False

        assignments = ["updated_at = ?"]
        params: list = [datetime.now()]
        if title is not None:
            assignments.append("title = ?")
            params.append(title)
        if content is not None:
            assignments.append("content = ?")
            params.append(content)
        params.extend([rid, branch, node_id])
        conn.execute(
            f"UPDATE {table} SET {', '.join(assignments)} WHERE rid = ? AND branch = ? AND {key} = ?",
            params
        )
        return True

    # Branch-wide operations

    def count_branch(self, rid: int, branch: str) -> Tuple[int, int]:
        conn = self._require_connection()
        docs = conn.execute(
            "SELECT COUNT(*) FROM docs WHERE rid = ? AND branch = ?", [rid, branch]
        ).fetchone()[0]
        blocks = conn.execute(
            "SELECT COUNT(*) FROM blocks WHERE rid = ? AND branch = ?", [rid, branch]
        ).fetchone()[0]
        return int(docs), int(blocks)

    def clear_branch(self, rid: int, branch: str) -> Tuple[int, int]:
        """
        Remove every doc and block of a branch.

        Returns:
            (docs removed, blocks removed)
        """
        conn = self._require_connection()
        counts = self.count_branch(rid, branch)
        conn.execute("DELETE FROM blocks WHERE rid = ? AND branch = ?", [rid, branch])
        conn.execute("DELETE FROM docs WHERE rid = ? AND branch = ?", [rid, branch])
        logging.info(f"Cleared branch {branch} of repository {rid}: {counts[0]} docs, {counts[1]} blocks")
        return counts

    def clone_branch(self, rid: int, source: str, target: str) -> Tuple[int, int]:
        """
        Copy every doc and block of ``source`` into ``target`` with fresh ids.

        Hierarchy shape, order numbers, titles and bodies are preserved; paths
        are recomputed from the new ids. Docs whose parent is missing in the
        source become roots of the target.

        Returns:
            (docs copied, blocks copied)
        """
        conn = self._require_connection()
        docs = self.list_docs(rid, source)
        source_ids = {doc.did for doc in docs}
        blocks = [block for block in self.list_blocks(rid, source) if block.did in source_ids]

        by_parent: Dict[Optional[int], List[Doc]] = {}
        for doc in docs:
            parent = doc.parent_did if doc.parent_did in source_ids else None
            if parent is None and doc.parent_did is not None:
                logging.warning(f"Doc {doc.did} of branch {source} has no parent; cloned as a root")
            by_parent.setdefault(parent, []).append(doc)

        with self.transaction():
            now = datetime.now()
            next_did = self.allocate_ids(rid, NodeKind.DOC, len(docs))
            next_bid = self.allocate_ids(rid, NodeKind.BLOCK, len(blocks))

            # Parents before children so every clone knows its parent's new path
            new_docs: Dict[int, Doc] = {}
            pending: List[Tuple[Doc, Optional[Doc]]] = [(doc, None) for doc in reversed(by_parent.get(None, []))]
            while pending:
                doc, parent = pending.pop()
                clone = Doc(
                    rid=rid, did=next_did, branch=target,
                    parent_did=parent.did if parent else None,
                    title=doc.title, content=doc.content, order=doc.order,
                    path=doc_path(next_did, parent)
                )
                next_did += 1
                conn.execute(f"""
                    INSERT INTO docs ({DOC_COLUMNS}, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, [clone.rid, clone.did, clone.branch, clone.parent_did, clone.title,
                      clone.content, clone.order, clone.path, now, now])
                new_docs[doc.did] = clone
                pending.extend((child, clone) for child in reversed(by_parent.get(doc.did, [])))

            for block in blocks:
                conn.execute(f"""
                    INSERT INTO blocks ({BLOCK_COLUMNS}, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, [rid, next_bid, target, new_docs[block.did].did, block.title, block.content,
                      block.order, now, now])
                next_bid += 1

        logging.info(f"Cloned branch {source} into {target} for repository {rid}: "
                     f"{len(new_docs)} docs, {len(blocks)} blocks")
        return len(new_docs), len(blocks)

    def search(
        self,
        rid: int,
        branch: str,
        keywords: Iterable[str],
        kind: Optional[NodeKind] = None
    ) -> List[object]:
        """
        Docs and/or blocks whose title or content contains any keyword
        (case-insensitive).
        """
        conn = self._require_connection()
        words = [w for w in keywords if w]
        if not words:
            return []

        # Keywords match literally: LIKE wildcards in them are escaped
        clause = " OR ".join(["title ILIKE ? ESCAPE '\\' OR content ILIKE ? ESCAPE '\\'"] * len(words))
        params: list = [rid, branch]
        for word in words:
            pattern = f"%{escape_like(word)}%"
            params.extend([pattern, pattern])

        found: List[object] = []
        if kind in (None, NodeKind.DOC):
            rows = conn.execute(
                f"SELECT {DOC_COLUMNS} FROM docs WHERE rid = ? AND branch = ? AND ({clause}) ORDER BY did",
                params
            ).fetchall()
            found.extend(self._row_to_doc(row) for row in rows)
        if kind in (None, NodeKind.BLOCK):
            rows = conn.execute(
                f"SELECT {BLOCK_COLUMNS} FROM blocks WHERE rid = ? AND branch = ? AND ({clause}) ORDER BY bid",
                params
            ).fetchall()
            found.extend(self._row_to_block(row) for row in rows)
        return found

    # Sync bookkeeping

    def get_branch_state(self, rid: int, branch: str) -> BranchSyncState:
        conn = self._require_connection()
        row = conn.execute("""
            SELECT rid, branch, unsynced, last_error, last_commit, updated_at
            FROM branch_sync_state WHERE rid = ? AND branch = ?
        """, [rid, branch]).fetchone()
        if not row:
            return BranchSyncState(rid=rid, branch=branch)
        return BranchSyncState(
            rid=row[0], branch=row[1], unsynced=row[2],
            last_error=row[3], last_commit=row[4], updated_at=row[5]
        )

    def mark_branch_state(
        self,
        rid: int,
        branch: str,
        unsynced: bool,
        last_error: Optional[str] = None,
        last_commit: Optional[str] = None
    ) -> None:
        """
        Record whether the git mirror of a branch lags behind the store.
        """
        conn = self._require_connection()
        previous = self.get_branch_state(rid, branch)
        commit = last_commit or previous.last_commit
        now = datetime.now()
        exists = conn.execute(
            "SELECT 1 FROM branch_sync_state WHERE rid = ? AND branch = ?", [rid, branch]
        ).fetchone()
        if exists:
            conn.execute("""
                UPDATE branch_sync_state SET unsynced = ?, last_error = ?, last_commit = ?, updated_at = ?
                WHERE rid = ? AND branch = ?
            """, [unsynced, last_error, commit, now, rid, branch])
        else:
            conn.execute("""
                INSERT INTO branch_sync_state (rid, branch, unsynced, last_error, last_commit, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, [rid, branch, unsynced, last_error, commit, now])

    # Row mapping

    def _row_to_repository(self, row) -> Repository:
        return Repository(
            rid=row[0],
            domain_id=row[1],
            title=row[2],
            description=row[3] or "",
            current_branch=row[4],
            branches=json.loads(row[5]) if row[5] else [MAIN_BRANCH],
            remote_url=row[6],
            mode=row[7],
            created_at=row[8],
            updated_at=row[9]
        )

    def _row_to_doc(self, row) -> Doc:
        return Doc(
            rid=row[0], did=row[1], branch=row[2], parent_did=row[3],
            title=row[4], content=row[5], order=row[6], path=row[7]
        )

    def _row_to_block(self, row) -> Block:
        return Block(
            rid=row[0], bid=row[1], branch=row[2], did=row[3],
            title=row[4], content=row[5], order=row[6]
        )
