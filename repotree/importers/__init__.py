"""
Tree importers for Repotree.
"""

from .base import BaseImporter
from .filesystem import FilesystemImporter

__all__ = ["BaseImporter", "FilesystemImporter"]
