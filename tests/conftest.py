"""
Shared fixtures for Repotree tests.
"""

from pathlib import Path

import pytest
from git import Repo

from repotree.database import DatabaseManager
from repotree.services import Repotree
from repotree.versioning import VersionManager


@pytest.fixture
def db(tmp_path):
    """An initialized tree store in a temporary file."""
    with DatabaseManager(str(tmp_path / "test.db")) as manager:
        manager.initialize_database()
        yield manager


@pytest.fixture
def version_manager(tmp_path):
    return VersionManager(
        git_root=str(tmp_path / "git"),
        bot_name="test-bot",
        bot_email="test-bot@example.com",
        timeout=60
    )


@pytest.fixture
def repotree(db, version_manager):
    return Repotree(db, version_manager)


@pytest.fixture
def bare_remote(tmp_path) -> Path:
    """An empty bare repository acting as the remote."""
    path = tmp_path / "remote.git"
    Repo.init(path, bare=True)
    return path
