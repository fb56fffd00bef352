"""Keyword search collaborators for Repotree."""

from .base import BaseSearchIndex
from .database import DatabaseSearchIndex

__all__ = ["BaseSearchIndex", "DatabaseSearchIndex"]
