"""
Filesystem projection for Repotree.

Renders the docs and blocks of one branch into a directory tree that can be
copied over a git working copy: docs become directories, blocks become
content files, doc bodies go into a marker file.
"""

import logging
import re
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..config import get_config
from ..database import DatabaseManager
from ..models import Block, Doc


UNSAFE_CHARACTERS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')
RESERVED_NAMES = {".", "..", ".git"}


def sanitize_name(title: Optional[str]) -> str:
    """
    Turn a title into a usable file or directory name.

    Args:
        title: Doc or block title

    Returns:
        The title with path-hostile characters replaced by ``_``, trimmed,
        ``untitled`` when nothing is left
    """
    name = UNSAFE_CHARACTERS.sub("_", title or "").strip()
    if not name:
        return "untitled"
    if name in RESERVED_NAMES:
        return f"_{name}"
    return name


def default_description(title: str) -> str:
    """Root marker text used when a repository has no description."""
    return f"# {title}\n"


class FilesystemProjector:
    """
    Writes a branch of the tree store to disk.

    Name collisions after sanitization are not resolved: the file written
    last wins.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        marker_file: Optional[str] = None,
        file_extension: Optional[str] = None,
        keep_file: Optional[str] = None
    ):
        config = get_config()
        self.db = db_manager
        self.marker_file = marker_file or config.marker_file
        self.file_extension = file_extension or config.file_extension
        self.keep_file = keep_file or config.keep_file

    def project(self, rid: int, branch: str, target: Path) -> List[Path]:
        """
        Project a branch into ``target``.

        Args:
            rid: Repository id
            branch: Branch to render
            target: Directory to write into (created if missing)

        Returns:
            Paths of every file written, in emission order
        """
        repository = self.db.require_repository(rid)
        docs = self.db.list_docs(rid, branch)
        blocks = self.db.list_blocks(rid, branch)

        target = Path(target)
        target.mkdir(parents=True, exist_ok=True)
        written: List[Path] = []

        description = repository.description or default_description(repository.title)
        written.append(self._write(target / self.marker_file, description))

        arena, child_docs, doc_blocks = self._build_arena(docs, blocks)

        # Explicit stack; roots pushed in reverse so they pop in sibling order
        stack: List[Tuple[int, Path]] = [
            (doc.did, target) for doc in reversed(child_docs.get(None, []))
        ]
        while stack:
            did, parent_dir = stack.pop()
            doc = arena[did]
            doc_dir = parent_dir / sanitize_name(doc.title)
            self._make_dir(doc_dir, written)

            children = child_docs.get(did, [])
            owned = doc_blocks.get(did, [])

            if doc.content:
                written.append(self._write(doc_dir / self.marker_file, doc.content))
            for block in owned:
                name = sanitize_name(block.title) + self.file_extension
                written.append(self._write(doc_dir / name, block.content))
            if not doc.content and not owned and not children:
                written.append(self._write(doc_dir / self.keep_file, ""))

            for child in reversed(children):
                stack.append((child.did, doc_dir))

        logging.info(f"Projected repository {rid} branch {branch}: {len(docs)} docs, "
                     f"{len(blocks)} blocks, {len(written)} files")
        return written

    def _build_arena(
        self,
        docs: List[Doc],
        blocks: List[Block]
    ) -> Tuple[Dict[int, Doc], Dict[Optional[int], List[Doc]], Dict[int, List[Block]]]:
        """Index records by id and group them under their parents."""
        arena = {doc.did: doc for doc in docs}
        child_docs: Dict[Optional[int], List[Doc]] = {}
        for doc in docs:
            if doc.parent_did is not None and doc.parent_did not in arena:
                logging.warning(f"Skipping doc {doc.did} ({doc.title}): parent {doc.parent_did} is missing")
                continue
            child_docs.setdefault(doc.parent_did, []).append(doc)

        doc_blocks: Dict[int, List[Block]] = {}
        for block in blocks:
            if block.did not in arena:
                logging.warning(f"Skipping block {block.bid} ({block.title}): doc {block.did} is missing")
                continue
            doc_blocks.setdefault(block.did, []).append(block)

        def sibling_key(record):
            return (record.order, record.did if isinstance(record, Doc) else record.bid)

        for siblings in child_docs.values():
            siblings.sort(key=sibling_key)
        for siblings in doc_blocks.values():
            siblings.sort(key=sibling_key)
        return arena, child_docs, doc_blocks

    def _make_dir(self, path: Path, written: List[Path]) -> None:
        # A file written earlier under the same name loses to the directory
        if path.exists() and not path.is_dir():
            path.unlink()
            if path in written:
                written.remove(path)
        path.mkdir(parents=True, exist_ok=True)

    def _write(self, path: Path, content: str) -> Path:
        if path.is_dir():
            shutil.rmtree(path)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(content)
        return path
