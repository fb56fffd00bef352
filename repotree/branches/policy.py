"""
Branch rules for Repotree.
"""

import re

from ..errors import PolicyViolationError
from ..models import MAIN_BRANCH


# Subset of git-check-ref-format rules that matter for user supplied names
INVALID_BRANCH_NAME = re.compile(r"(\.\.|@\{|//|[\x00-\x20~^:?*\[\\\x7f])")


def require_mutable_branch(branch: str) -> None:
    """
    Reject structural mutation of the read-only ``main`` branch.

    Raises:
        PolicyViolationError: If ``branch`` is ``main``
    """
    if branch == MAIN_BRANCH:
        raise PolicyViolationError(
            f"Branch '{MAIN_BRANCH}' is read-only; create or switch to another branch to edit"
        )


def validate_branch_name(name: str) -> str:
    """
    Check a new branch name.

    Returns:
        The trimmed name

    Raises:
        ValueError: If the name is empty or not a valid git branch name
        PolicyViolationError: If the name is ``main``
    """
    name = (name or "").strip()
    if not name:
        raise ValueError("Branch name must not be empty")
    if name == MAIN_BRANCH:
        raise PolicyViolationError(f"Cannot create a branch named '{MAIN_BRANCH}'")
    if (INVALID_BRANCH_NAME.search(name)
            or name.startswith(("-", "/", "."))
            or name.endswith(("/", ".", ".lock"))
            or name == "@"):
        raise ValueError(f"Invalid branch name: {name}")
    return name
