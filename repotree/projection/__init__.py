"""Store-to-filesystem projection for Repotree."""

from .filesystem import FilesystemProjector, default_description, sanitize_name

__all__ = ["FilesystemProjector", "default_description", "sanitize_name"]
