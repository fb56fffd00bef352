"""Hosted remote provisioning for Repotree."""

from .provider import GitHubProvider, normalize_organization

__all__ = ["GitHubProvider", "normalize_organization"]
