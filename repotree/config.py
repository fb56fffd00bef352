"""
Configuration management for Repotree.

This module handles loading and accessing configuration values from config.yaml.
Every service reads its tunables (git identity, timeouts, projection file
names, pass bounds) through the global ``config`` instance.
"""

import yaml
from pathlib import Path
from typing import Any, Dict
import logging


class ConfigManager:
    """
    Manages configuration loading and access for Repotree.
    """

    def __init__(self, config_path: str = "config.yaml"):
        """
        Initialize the configuration manager.

        Args:
            config_path: Path to the configuration file
        """
        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from YAML file."""
        try:
            if not self.config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._config = yaml.safe_load(f) or {}

            logging.info(f"Configuration loaded from {self.config_path}")

        except Exception as e:
            logging.error(f"Failed to load configuration: {e}")
            # Fall back to default configuration
            self._config = self._get_default_config()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values as fallback."""
        return {
            "database": {
                "filename": "repotree.db"
            },
            "paths": {
                "git_root": "data/git",
                "log_file": "repotree.log"
            },
            "git": {
                "bot_name": "repotree-bot",
                "bot_email": "bot@repotree.local",
                "remote_name": "origin",
                "default_branch": "main",
                "timeout": 120,
                "token": "",
                "token_username": "x-access-token",
                "default_host": "github.com"
            },
            "projection": {
                "file_extension": ".md",
                "marker_file": "README.md",
                "keep_file": ".keep"
            },
            "structure": {
                "max_create_passes": 10
            },
            "remote": {
                "api_url": "https://api.github.com",
                "organization": "",
                "token": "",
                "timeout": 30.0,
                "private": True
            },
            "search": {
                "default_limit": 20
            },
            "logging": {
                "level": "INFO",
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            }
        }

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Args:
            key_path: Dot-separated path to the configuration value (e.g., "git.timeout")
            default: Default value if key is not found

        Returns:
            The configuration value

        Examples:
            config.get("git.bot_name")  # Returns "repotree-bot"
            config.get("projection.marker_file")  # Returns "README.md"
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def get_section(self, section: str) -> Dict[str, Any]:
        """
        Get an entire configuration section.

        Args:
            section: Name of the configuration section

        Returns:
            Dictionary containing the section configuration
        """
        return self._config.get(section, {})

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()

    # Convenience properties for commonly used values

    @property
    def database_filename(self) -> str:
        """Get database filename."""
        return self.get("database.filename", "repotree.db")

    @property
    def git_root(self) -> str:
        """Get the directory holding one working copy per repository."""
        return self.get("paths.git_root", "data/git")

    @property
    def log_filename(self) -> str:
        """Get log file name."""
        return self.get("paths.log_file", "repotree.log")

    @property
    def bot_name(self) -> str:
        return self.get("git.bot_name", "repotree-bot")

    @property
    def bot_email(self) -> str:
        return self.get("git.bot_email", "bot@repotree.local")

    @property
    def remote_name(self) -> str:
        return self.get("git.remote_name", "origin")

    @property
    def git_timeout(self) -> float:
        """Get the kill-after timeout (seconds) for a single git invocation."""
        return self.get("git.timeout", 120)

    @property
    def git_token(self) -> str:
        return self.get("git.token", "") or ""

    @property
    def file_extension(self) -> str:
        return self.get("projection.file_extension", ".md")

    @property
    def marker_file(self) -> str:
        return self.get("projection.marker_file", "README.md")

    @property
    def keep_file(self) -> str:
        return self.get("projection.keep_file", ".keep")

    @property
    def max_create_passes(self) -> int:
        """Get the bound on placeholder resolution passes per batch."""
        return self.get("structure.max_create_passes", 10)


# Global configuration instance
config = ConfigManager()


def get_config() -> ConfigManager:
    """
    Get the global configuration instance.

    Returns:
        The global ConfigManager instance
    """
    return config
