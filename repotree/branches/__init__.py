"""Branch lifecycle and policy for Repotree."""

from .manager import BranchManager
from .policy import require_mutable_branch, validate_branch_name

__all__ = ["BranchManager", "require_mutable_branch", "validate_branch_name"]
