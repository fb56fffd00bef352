"""
Remote URL helpers for Repotree.

HTTPS remotes get the configured token embedded as basic-auth userinfo just
before git talks to them; stored and logged URLs never carry it.
"""

import re
from typing import Optional
from urllib.parse import quote, urlsplit, urlunsplit

from ..config import get_config


SHORTHAND = re.compile(r"[\w.-]+/[\w.-]+")
USERINFO = re.compile(r"([a-zA-Z][a-zA-Z0-9+.-]*://)[^/@\s]+@")


def is_ssh_url(url: str) -> bool:
    return url.startswith("git@") or url.startswith("ssh://")


def build_remote_url(
    url: str,
    token: Optional[str] = None,
    token_username: Optional[str] = None,
    default_host: Optional[str] = None
) -> str:
    """
    Resolve the URL git should use for a remote.

    Args:
        url: Stored remote URL, an SSH URL, a local path or ``org/repo`` shorthand
        token: Access token; defaults to ``git.token`` from the configuration
        token_username: Userinfo name placed before the token (empty for token only)
        default_host: Host used to expand ``org/repo`` shorthand

    Returns:
        The URL with the token embedded for HTTPS remotes that carry no
        credentials; every other URL unchanged
    """
    config = get_config()
    url = (url or "").strip()
    if token is None:
        token = config.git_token
    if token_username is None:
        token_username = config.get("git.token_username", "x-access-token") or ""
    host = default_host or config.get("git.default_host", "github.com")

    if not url or is_ssh_url(url):
        return url

    if "://" not in url and "@" not in url and SHORTHAND.fullmatch(url):
        repo_path = url[:-4] if url.endswith(".git") else url
        userinfo = _userinfo(token, token_username)
        prefix = f"{userinfo}@" if userinfo else ""
        return f"https://{prefix}{host}/{repo_path}.git"

    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not token or "@" in parts.netloc:
        return url
    netloc = f"{_userinfo(token, token_username)}@{parts.netloc}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def strip_credentials(text: str) -> str:
    """Remove userinfo from every URL in ``text``."""
    return USERINFO.sub(r"\1", text or "")


def _userinfo(token: Optional[str], token_username: str) -> str:
    if not token:
        return ""
    if token_username:
        return f"{quote(token_username, safe='')}:{quote(token, safe='')}"
    return quote(token, safe="")
