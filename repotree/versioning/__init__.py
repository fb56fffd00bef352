"""Git working-copy gateway for Repotree."""

from .credentials import build_remote_url, strip_credentials
from .manager import VersionManager, WorkingCopy, parse_porcelain

__all__ = ["VersionManager", "WorkingCopy", "build_remote_url", "parse_porcelain", "strip_credentials"]
