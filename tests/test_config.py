"""Tests for configuration loading."""

from pathlib import Path

from gitshlc.config import Config, clamp_int


def test_clamp_int():
    assert clamp_int("7", 1, 12, 8) == 7
    assert clamp_int(99, 1, 12, 8) == 12
    assert clamp_int(0, 1, 12, 8) == 1
    assert clamp_int("deep", 1, 12, 8) == 8
    assert clamp_int(None, 1, 12, 8) == 8


def test_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("GITSHLC_DB_PATH", str(tmp_path / "x.db"))
    monkeypatch.setenv("GITSHLC_SSH_HOST", " example.com ")
    monkeypatch.setenv("GITSHLC_SSH_USER", "deploy")
    monkeypatch.setenv("GITSHLC_SSH_PORT", "70000")
    monkeypatch.setenv("GITSHLC_REMOTE_MAX_REPOS", "abc")

    config = Config.from_env()
    assert config.db_path == Path(tmp_path / "x.db")
    assert config.ssh_params().host == "example.com"
    assert config.ssh_port == 65535
    assert config.remote_max_repos == 50


def test_defaults(monkeypatch):
    for name in ("GITSHLC_DB_PATH", "GITSHLC_GIT_PATH", "GITSHLC_DETECT_MAX_DEPTH"):
        monkeypatch.delenv(name, raising=False)
    config = Config.from_env()
    assert config.db_path.name == "gitshlc.db"
    assert config.tool_hints().git_path == ""
    assert config.detect_max_depth == 6


def test_github_from_env(monkeypatch):
    monkeypatch.setenv("GITSHLC_GITHUB_USER", " me ")
    monkeypatch.setenv("GITSHLC_GITHUB_TOKEN", "ghp_x\n")
    config = Config.from_env()
    assert config.github_user == "me"
    assert config.github_token == "ghp_x"
