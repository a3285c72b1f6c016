"""Configuration loading from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from gitshlc.db.models import SshParams, ToolHints


def clamp_int(value, low: int, high: int, fallback: int) -> int:
    """Coerce to int and clamp to [low, high]; unparseable input yields fallback."""
    try:
        n = int(value)
    except (TypeError, ValueError):
        return fallback
    return max(low, min(high, n))


@dataclass
class Config:
    db_path: Path = field(default_factory=lambda: Path.home() / ".gitshlc" / "gitshlc.db")
    git_path: str = ""
    ssh_path: str = ""
    ssh_host: str = ""
    ssh_user: str = ""
    ssh_port: int = 22
    ssh_key_path: str = ""
    detect_max_depth: int = 6
    remote_max_depth: int = 6
    remote_max_repos: int = 50
    github_user: str = ""
    github_token: str = ""

    @classmethod
    def from_env(cls) -> "Config":
        config = cls()

        if db := os.environ.get("GITSHLC_DB_PATH"):
            config.db_path = Path(db)

        config.git_path = os.environ.get("GITSHLC_GIT_PATH", "").strip()
        config.ssh_path = os.environ.get("GITSHLC_SSH_PATH", "").strip()
        config.ssh_host = os.environ.get("GITSHLC_SSH_HOST", "").strip()
        config.ssh_user = os.environ.get("GITSHLC_SSH_USER", "").strip()
        config.ssh_key_path = os.environ.get("GITSHLC_SSH_KEY_PATH", "").strip()
        config.github_user = os.environ.get("GITSHLC_GITHUB_USER", "").strip()
        config.github_token = os.environ.get("GITSHLC_GITHUB_TOKEN", "").strip()

        if port := os.environ.get("GITSHLC_SSH_PORT"):
            config.ssh_port = clamp_int(port, 1, 65535, 22)

        if depth := os.environ.get("GITSHLC_DETECT_MAX_DEPTH"):
            config.detect_max_depth = clamp_int(depth, 1, 12, 6)

        if depth := os.environ.get("GITSHLC_REMOTE_MAX_DEPTH"):
            config.remote_max_depth = clamp_int(depth, 1, 30, 6)

        if repos := os.environ.get("GITSHLC_REMOTE_MAX_REPOS"):
            config.remote_max_repos = clamp_int(repos, 1, 5000, 50)

        return config

    def tool_hints(self) -> ToolHints:
        return ToolHints(git_path=self.git_path, ssh_path=self.ssh_path)

    def ssh_params(self) -> SshParams:
        return SshParams(
            host=self.ssh_host,
            user=self.ssh_user,
            port=self.ssh_port,
            key_path=self.ssh_key_path,
        )


def get_config() -> Config:
    return Config.from_env()
