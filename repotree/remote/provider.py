"""
Remote repository provisioning for Repotree.

Creates the hosted repository a Repotree repository is pushed to. Only the
resulting clone URL matters to the rest of the system.
"""

import logging
import re
from typing import Optional

import httpx

from ..config import get_config
from ..errors import RemoteProvisioningError


def normalize_organization(value: Optional[str]) -> str:
    """Accept ``org``, ``@org`` or ``https://github.com/org/`` and return ``org``."""
    org = (value or "").strip()
    org = re.sub(r"^https?://[^/]+/", "", org)
    org = org.lstrip("@")
    return org.split("/")[0]


class GitHubProvider:
    """
    Client for the GitHub repository API with create-or-get-existing semantics.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        token: Optional[str] = None,
        organization: Optional[str] = None,
        private: Optional[bool] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        """
        Initialize the provider.

        Args:
            api_url: API root (defaults to ``remote.api_url``)
            token: API token (defaults to ``remote.token``, then ``git.token``)
            organization: Owner organization; empty creates under the token's user
            private: Visibility of created repositories
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport, used by tests
        """
        config = get_config()
        self.api_url = (api_url or config.get("remote.api_url", "https://api.github.com")).rstrip("/")
        self.token = token or config.get("remote.token", "") or config.git_token
        self.organization = normalize_organization(
            organization if organization is not None else config.get("remote.organization", "")
        )
        self.private = private if private is not None else config.get("remote.private", True)

        headers = {"Accept": "application/vnd.github+json", "User-Agent": "repotree"}
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        self.client = httpx.Client(
            base_url=self.api_url,
            headers=headers,
            timeout=timeout or config.get("remote.timeout", 30.0),
            transport=transport
        )

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.client.close()

    def repository_name(self, title: str, rid: int) -> str:
        """Slug of a repository title usable as a hosted repository name."""
        slug = re.sub(r"[^a-z0-9-]", "-", (title or "").lower())
        slug = re.sub(r"-+", "-", slug).strip("-")
        return slug or f"repo-{rid}"

    def create_repository(self, name: str, description: str = "") -> str:
        """
        Create a hosted repository, or find the existing one with that name.

        Returns:
            The clone URL of the repository

        Raises:
            RemoteProvisioningError: If the API refuses the request or is unreachable
        """
        if not self.token:
            raise RemoteProvisioningError("No API token configured for the remote provider")

        path = f"/orgs/{self.organization}/repos" if self.organization else "/user/repos"
        payload = {
            "name": name,
            "description": description or "",
            "private": self.private,
            "auto_init": False,
        }
        try:
            response = self.client.post(path, json=payload)
            if response.status_code == 201:
                logging.info(f"Created remote repository {name}")
                return self._clone_url(response)
            if response.status_code == 422:
                logging.info(f"Remote repository {name} already exists; looking it up")
                existing = self.client.get(f"/repos/{self._owner()}/{name}")
                if existing.status_code == 200:
                    return self._clone_url(existing)
            raise RemoteProvisioningError(f"GitHub API error: {response.status_code} - {response.text}")
        except httpx.RequestError as e:
            raise RemoteProvisioningError(f"Failed to reach {self.api_url}: {e}") from e

    def _owner(self) -> str:
        if self.organization:
            return self.organization
        response = self.client.get("/user")
        if response.status_code != 200:
            raise RemoteProvisioningError(f"GitHub API error: {response.status_code} - {response.text}")
        return response.json().get("login", "")

    def _clone_url(self, response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError as e:
            raise RemoteProvisioningError(f"Failed to parse GitHub API response: {e}") from e
        url = data.get("clone_url") or data.get("ssh_url") or ""
        if not url:
            raise RemoteProvisioningError("GitHub API response carries no clone URL")
        return url
