"""
Filesystem importer for Repotree.

Walks a working-copy directory and rebuilds a branch of the tree store from
it: every directory becomes a doc, every content file a block.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple

from .base import BaseImporter
from ..config import get_config
from ..database import DatabaseManager
from ..models import ImportReport


SKIPPED_DIRECTORIES = {".git"}


def decode_name(name: str) -> str:
    """File name as UTF-8 text; undecodable bytes become U+FFFD."""
    return os.fsencode(name).decode("utf-8", "replace")


class FilesystemImporter(BaseImporter):
    """
    Imports a directory tree produced by ``FilesystemProjector`` (or edited
    by hand in a clone of the remote).
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        marker_file: Optional[str] = None,
        file_extension: Optional[str] = None
    ):
        config = get_config()
        self.db = db_manager
        self.marker_file = marker_file or config.marker_file
        self.file_extension = file_extension or config.file_extension

    def import_tree(self, rid: int, branch: str, source: Path) -> ImportReport:
        source = Path(source)
        report = ImportReport()
        if not source.is_dir():
            logging.warning(f"Nothing to import: {source} is not a directory")
            return report

        root_marker = source / self.marker_file
        if root_marker.is_file():
            report.root_readme = self._read(root_marker)

        # (directory, parent doc id, sibling order); popped in name order
        stack: List[Tuple[Path, Optional[int], int]] = [
            (directory, None, order)
            for order, directory in reversed(list(enumerate(self._subdirectories(source))))
        ]
        while stack:
            directory, parent_did, order = stack.pop()
            marker = directory / self.marker_file
            content = self._read(marker) if marker.is_file() else ""
            doc = self.db.add_doc(
                rid, branch, title=decode_name(directory.name), content=content,
                parent_did=parent_did, order=order
            )
            report.docs += 1

            for block_order, path in enumerate(self._content_files(directory)):
                self.db.add_block(
                    rid, branch, doc.did,
                    title=decode_name(path.name[:-len(self.file_extension)]),
                    content=self._read(path),
                    order=block_order
                )
                report.blocks += 1

            children = list(enumerate(self._subdirectories(directory)))
            for child_order, child in reversed(children):
                stack.append((child, doc.did, child_order))

        logging.info(f"Imported {report.docs} docs and {report.blocks} blocks from {source} "
                     f"into repository {rid} branch {branch}")
        return report

    def _subdirectories(self, directory: Path) -> List[Path]:
        return sorted(
            (entry for entry in directory.iterdir()
             if entry.is_dir() and entry.name not in SKIPPED_DIRECTORIES),
            key=lambda entry: entry.name
        )

    def _content_files(self, directory: Path) -> List[Path]:
        return sorted(
            (entry for entry in directory.iterdir()
             if entry.is_file()
             and entry.name != self.marker_file
             and entry.name.endswith(self.file_extension)),
            key=lambda entry: entry.name
        )

    def _read(self, path: Path) -> str:
        with open(path, 'r', encoding='utf-8', errors='replace') as f:
            return f.read()
