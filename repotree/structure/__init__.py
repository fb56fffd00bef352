"""Batch structure reconciliation for Repotree."""

from .engine import StructureEngine

__all__ = ["StructureEngine"]
