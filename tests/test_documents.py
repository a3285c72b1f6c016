"""Tests for document import/export and legacy migrations."""

from gitshlc.config import Config
from gitshlc.core import documents as documents_mod
from gitshlc.db.models import EnvKey, GitHubAccount, Mode, Project, ProjectEnv, UiState


class TestMigrateConfig:
    def test_current_shape(self):
        doc = {
            "version": 1,
            "key": "gitshlc.config.v1",
            "projects": [
                {
                    "id": "p1",
                    "name": "one",
                    "test": {"repoUrl": "git@h:one.git", "branch": "dev", "localPath": "/w/one"},
                    "deploy": {"remotePath": "/srv/one"},
                }
            ],
        }
        [p] = documents_mod.migrate_config(doc)
        assert p.id == "p1"
        assert p.test.branch == "dev"
        assert p.test.repo_url == "git@h:one.git"
        assert p.deploy.branch == "main"
        assert p.deploy.remote_path == "/srv/one"

    def test_legacy_envs_nesting(self):
        doc = {"projects": [{"id": "p1", "name": "one", "envs": {"test": {"localPath": "/w/a"}}}]}
        [p] = documents_mod.migrate_config(doc)
        assert p.test.local_path == "/w/a"
        assert p.deploy == ProjectEnv()

    def test_missing_id_generated(self):
        [p] = documents_mod.migrate_config({"projects": [{"name": "x"}]})
        assert p.id.startswith("p_")

    def test_garbage_ignored(self):
        assert documents_mod.migrate_config(None) == []
        assert documents_mod.migrate_config({"projects": "nope"}) == []
        assert documents_mod.migrate_config({"projects": [1, None]}) == []


class TestMigrateUi:
    def test_defaults(self):
        ui = documents_mod.migrate_ui({})
        assert ui == UiState()
        assert ui.mode is Mode.SSH

    def test_legacy_keys(self):
        ui = documents_mod.migrate_ui(
            {
                "mode": "local",
                "lastOpenProjectIds": ["a", "b", "a"],
                "selectedEnvKeyByProject": {"a": "deploy", "b": "weird"},
            }
        )
        assert ui.mode is Mode.LOCAL
        assert ui.pinned_project_ids == ["a", "b"]
        assert ui.selected_env_by_project == {"a": EnvKey.DEPLOY, "b": EnvKey.TEST}

    def test_pins_truncated(self):
        ui = documents_mod.migrate_ui({"pinnedProjectIds": [f"p{i}" for i in range(12)]})
        assert ui.pinned_project_ids == [f"p{i}" for i in range(8)]


class TestExport:
    def test_export_config_shape(self):
        project = Project(id="p1", name="one", test=ProjectEnv(local_path="/w/one"))
        doc = documents_mod.export_config([project], Config(ssh_host="h", ssh_user="u", ssh_port=2222))
        assert doc["key"] == documents_mod.CONFIG_KEY
        assert doc["ssh"] == {"host": "h", "user": "u", "port": 2222, "keyPath": ""}
        assert doc["projects"][0]["test"]["localPath"] == "/w/one"
        assert documents_mod.migrate_config(doc)[0] == project

    def test_export_ui_shape(self):
        ui = UiState(mode=Mode.LOCAL, pinned_project_ids=["a"], selected_project_id="a",
                     selected_env_by_project={"a": EnvKey.DEPLOY})
        doc = documents_mod.export_ui(ui)
        assert doc["mode"] == "local"
        assert doc["selectedEnvByProject"] == {"a": "deploy"}
        assert documents_mod.migrate_ui(doc) == ui

    def test_github_account_round_trip(self):
        account = GitHubAccount(username="me", token="ghp_x")
        doc = documents_mod.export_config([], Config(), account)
        assert doc["github"] == {"username": "me", "token": "ghp_x"}
        assert documents_mod.migrate_github(doc) == account

    def test_github_missing_or_malformed(self):
        assert documents_mod.migrate_github({"projects": []}) is None
        assert documents_mod.migrate_github({"github": "me"}) is None
        assert documents_mod.migrate_github({"github": {"username": " me "}}) == GitHubAccount(username="me")
