"""
Repotree: a branch-aware doc/block repository mirrored to git.

Keeps a hierarchy of docs (folders) and blocks (leaf content) per branch in
DuckDB and reconciles it, on demand, with a git working copy and its remote.
"""

__version__ = "0.1.0"
__author__ = "Repotree Project"

# Import main components
from .database import DatabaseManager
from .models import Block, Doc, OperationResult, Repository
from .importers import BaseImporter, FilesystemImporter
from .projection import FilesystemProjector
from .versioning import VersionManager
from .sync import SyncOrchestrator
from .branches import BranchManager
from .structure import StructureEngine
from .tools import ToolRunner
from .services import Repotree

__all__ = [
    "DatabaseManager",
    "Block",
    "Doc",
    "OperationResult",
    "Repository",
    "BaseImporter",
    "FilesystemImporter",
    "FilesystemProjector",
    "VersionManager",
    "SyncOrchestrator",
    "BranchManager",
    "StructureEngine",
    "ToolRunner",
    "Repotree",
]
