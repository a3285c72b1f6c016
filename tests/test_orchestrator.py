"""Tests for the orchestrator: project list, working set, actions and discovery."""

import tempfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from gitshlc.config import Config
from gitshlc.core.actions import ActionValidationError
from gitshlc.core.discovery import DiscoveryInProgressError
from gitshlc.core.orchestrator import Orchestrator
from gitshlc.db.models import (
    ActionOutcome,
    DiscoveredRepo,
    EnvKey,
    GitHubRepo,
    Mode,
    Project,
    ProjectEnv,
    SshConnectResult,
    ToolCheck,
)
from gitshlc.integrations.backend import BackendUnavailableError
from gitshlc.integrations.git import DetectError
from gitshlc.integrations.github import GitHubError


def _ok(request):
    return ActionOutcome(ok=True, env_key=request.env_key.value, action=request.action.value)


@pytest.fixture
def config():
    with tempfile.TemporaryDirectory() as tmp:
        yield Config(db_path=Path(tmp) / "test.db", ssh_host="example.com", ssh_user="deploy")


@pytest.fixture
def backend():
    b = MagicMock()
    b.run_action.side_effect = _ok
    b.ssh_connect.return_value = SshConnectResult(ok=True, ssh_ok=True, remote_git=ToolCheck(found=True, ok=True))
    b.detect_remote_repos.return_value = []
    return b


@pytest.fixture
def orch(config, backend):
    return Orchestrator(config, backend)


def _local(name, path, deploy_path=""):
    return Project(
        name=name,
        test=ProjectEnv(branch="main", local_path=path),
        deploy=ProjectEnv(branch="prod", local_path=deploy_path),
    )


def _remote(name, path):
    return Project(name=name, test=ProjectEnv(remote_path=path))


class TestProjects:
    def test_add_prepends_pins_and_selects(self, orch):
        a = orch.add_project(_local("a", "/w/a"), auto_init=False)
        b = orch.add_project(_local("b", "/w/b"), auto_init=False)
        assert [p.id for p in orch.projects] == [b.id, a.id]
        assert orch.working_set.pinned == [b.id, a.id]
        assert orch.selected_project_id == b.id

    def test_add_requires_name(self, orch):
        with pytest.raises(ValueError):
            orch.add_project(Project(name="  "), auto_init=False)

    def test_add_normalizes_blank_branch(self, orch):
        p = orch.add_project(Project(name="x", test=ProjectEnv(branch="  ", local_path=" /w/x ")), auto_init=False)
        assert p.test.branch == "main"
        assert p.test.local_path == "/w/x"

    def test_add_runs_init_for_local_paths(self, orch, backend):
        backend.init_local_repo.return_value = ActionOutcome(ok=True, env_key="test", action="init")
        orch.add_project(_local("a", "/w/a"))
        backend.init_local_repo.assert_called_once()
        assert backend.init_local_repo.call_args.args[0] == "/w/a"

    def test_init_failure_does_not_block_add(self, orch, backend):
        backend.init_local_repo.side_effect = BackendUnavailableError("down")
        p = orch.add_project(_local("a", "/w/a"))
        assert orch.find_project(p.id) is not None

    def test_replace_keeps_position(self, orch):
        a = orch.add_project(_local("a", "/w/a"), auto_init=False)
        orch.add_project(_local("b", "/w/b"), auto_init=False)
        orch.replace_project(Project(id=a.id, name="renamed", test=ProjectEnv(local_path="/w/a2")), auto_init=False)
        assert [p.name for p in orch.projects] == ["b", "renamed"]
        assert orch.get_project(a.id).deploy.branch == "main"

    def test_replace_unknown(self, orch):
        with pytest.raises(ValueError):
            orch.replace_project(Project(id="nope", name="x"), auto_init=False)

    def test_remove_reassigns_selection(self, orch):
        orch.set_mode(Mode.LOCAL)
        a = orch.add_project(_local("a", "/w/a"), auto_init=False)
        b = orch.add_project(_local("b", "/w/b"), auto_init=False)
        orch.set_selected_env(b.id, EnvKey.DEPLOY)
        orch.remove_project(b.id)
        assert orch.find_project(b.id) is None
        assert orch.working_set.pinned == [a.id]
        assert orch.selected_project_id == a.id
        assert b.id not in orch.ui_state().selected_env_by_project

    def test_state_persists(self, config, backend):
        orch = Orchestrator(config, backend)
        orch.set_mode(Mode.LOCAL)
        a = orch.add_project(_local("a", "/w/a"), auto_init=False)
        b = orch.add_project(_local("b", "/w/b"), auto_init=False)
        orch.select(a.id)
        orch.set_selected_env(a.id, EnvKey.DEPLOY)

        reloaded = Orchestrator(config, backend)
        assert reloaded.mode is Mode.LOCAL
        assert [p.id for p in reloaded.projects] == [b.id, a.id]
        assert reloaded.working_set.pinned == [b.id, a.id]
        assert reloaded.selected_project_id == a.id
        assert reloaded.selected_env(a.id) is EnvKey.DEPLOY
        assert reloaded.get_project(a.id).deploy.branch == "prod"


class TestWorkingSet:
    def test_pin_unknown_project(self, orch):
        with pytest.raises(ValueError):
            orch.pin("ghost")

    def test_select_implies_pinned(self, orch):
        a = orch.add_project(_local("a", "/w/a"), auto_init=False)
        orch.unpin(a.id)
        orch.select(a.id)
        assert a.id in orch.working_set.pinned

    def test_unpin_selected_moves_to_visible_pin(self, orch):
        orch.set_mode(Mode.LOCAL)
        hidden = orch.add_project(_remote("remote-only", "/srv/r"), auto_init=False)
        a = orch.add_project(_local("a", "/w/a"), auto_init=False)
        b = orch.add_project(_local("b", "/w/b"), auto_init=False)
        orch.unpin(b.id)
        assert orch.selected_project_id == a.id
        assert hidden.id in orch.working_set.pinned

    def test_mode_switch_revalidates_selection_only(self, orch):
        orch.set_mode(Mode.LOCAL)
        r = orch.add_project(_remote("r", "/srv/r"), auto_init=False)
        a = orch.add_project(_local("a", "/w/a"), auto_init=False)
        assert orch.selected_project_id == a.id

        orch.set_mode(Mode.SSH)
        assert orch.selected_project_id == r.id
        assert orch.working_set.pinned == [a.id, r.id]
        assert [p.id for p in orch.pinned_projects()] == [r.id]

    def test_visible_projects_follow_mode(self, orch):
        orch.set_mode(Mode.LOCAL)
        orch.add_project(_remote("r", "/srv/r"), auto_init=False)
        a = orch.add_project(_local("a", "/w/a"), auto_init=False)
        assert [p.id for p in orch.visible_projects()] == [a.id]


class TestRunAction:
    def test_runs_selected_env(self, orch, backend):
        orch.set_mode(Mode.LOCAL)
        p = orch.add_project(_local("a", "/w/a", "/w/a-prod"), auto_init=False)
        orch.set_selected_env(p.id, EnvKey.DEPLOY)
        outcome = orch.run_action(p.id, "pull")
        assert outcome.ok
        req = backend.run_action.call_args.args[0]
        assert req.env_key is EnvKey.DEPLOY
        assert req.local_path == "/w/a-prod"
        assert orch.last_action.project_id == p.id
        assert orch.last_action.env_key is EnvKey.DEPLOY

    def test_falls_back_to_visible_env(self, orch, backend):
        orch.set_mode(Mode.LOCAL)
        p = orch.add_project(_local("a", "/w/a"), auto_init=False)
        orch.set_selected_env(p.id, EnvKey.DEPLOY)
        orch.run_action(p.id, "pull")
        assert backend.run_action.call_args.args[0].env_key is EnvKey.TEST

    def test_hidden_project_refused(self, orch, backend):
        p = orch.add_project(_local("a", "/w/a"), auto_init=False)
        orch.set_mode(Mode.SSH)
        with pytest.raises(ActionValidationError):
            orch.run_action(p.id, "pull")
        backend.run_action.assert_not_called()

    def test_explicit_hidden_env_refused(self, orch, backend):
        orch.set_mode(Mode.LOCAL)
        p = orch.add_project(_local("a", "/w/a"), auto_init=False)
        with pytest.raises(ActionValidationError):
            orch.run_action(p.id, "pull", env_key="deploy")
        with pytest.raises(ActionValidationError):
            orch.run_action(p.id, "pull", env_key="staging")
        backend.run_action.assert_not_called()

    def test_unknown_project(self, orch):
        with pytest.raises(ActionValidationError):
            orch.run_action("ghost", "pull")

    def test_push_through_gate(self, orch, backend):
        orch.set_mode(Mode.LOCAL)
        p = orch.add_project(_local("a", "/w/a"), auto_init=False)
        gate = orch.request_push(p.id)
        gate.set_message("  release  ")
        outcome = gate.confirm()
        assert outcome.ok
        assert backend.run_action.call_args.args[0].commit_message == "release"
        assert not orch.commit_gate.pending

    def test_push_without_message_never_calls_backend(self, orch, backend):
        orch.set_mode(Mode.LOCAL)
        p = orch.add_project(_local("a", "/w/a"), auto_init=False)
        with pytest.raises(ActionValidationError):
            orch.run_action(p.id, "push", "")
        backend.run_action.assert_not_called()

    def test_unreachable_backend_recorded(self, orch, backend):
        orch.set_mode(Mode.LOCAL)
        p = orch.add_project(_local("a", "/w/a"), auto_init=False)
        backend.run_action.side_effect = BackendUnavailableError("no route")
        outcome = orch.run_action(p.id, "pull")
        assert outcome.error.code == "LOCAL-0001"
        assert orch.last_action.outcome is outcome


class TestConnectSsh:
    def test_auto_import_appends_and_fills_pins(self, orch, backend):
        existing = orch.add_project(_remote("existing", "/srv/existing"), auto_init=False)
        backend.detect_remote_repos.return_value = [
            DiscoveredRepo(path="/srv/existing"),
            DiscoveredRepo(path="/srv/new1", origin_url="git@h:new1.git"),
            DiscoveredRepo(path="/srv/new2"),
        ]
        report = orch.connect_ssh()

        assert [p.name for p in report.imported] == ["new1", "new2"]
        assert report.notice == "remote repos imported: +2"
        assert orch.projects[0].id == existing.id
        assert [p.name for p in orch.projects[1:]] == ["new1", "new2"]
        assert orch.working_set.pinned == [existing.id, *[p.id for p in report.imported]]
        assert orch.selected_project_id == existing.id

    def test_auto_import_respects_capacity(self, orch, backend):
        for i in range(7):
            orch.add_project(_remote(f"p{i}", f"/srv/p{i}"), auto_init=False)
        backend.detect_remote_repos.return_value = [DiscoveredRepo(path=f"/srv/n{i}") for i in range(3)]
        report = orch.connect_ssh()
        assert len(report.imported) == 3
        assert len(orch.working_set.pinned) == 8
        assert orch.working_set.pinned[-1] == report.imported[0].id

    def test_all_duplicated(self, orch, backend):
        orch.add_project(_remote("a", "/srv/a"), auto_init=False)
        backend.detect_remote_repos.return_value = [DiscoveredRepo(path="/srv/a")]
        assert orch.connect_ssh().notice == "remote repos found but all duplicated"

    def test_none_found(self, orch):
        assert orch.connect_ssh().notice == "remote repos not found (0)"

    def test_detect_failure_keeps_connection(self, orch, backend):
        backend.detect_remote_repos.side_effect = DetectError("remote detect failed")
        report = orch.connect_ssh()
        assert report.notice.startswith("remote repos import failed")
        assert orch.ssh_connection.ssh_ok

    def test_no_import_in_local_mode(self, orch, backend):
        orch.set_mode(Mode.LOCAL)
        orch.connect_ssh()
        backend.detect_remote_repos.assert_not_called()

    def test_no_import_when_ssh_down(self, orch, backend):
        backend.ssh_connect.return_value = SshConnectResult(ok=False, ssh_ok=False, stderr="refused")
        report = orch.connect_ssh()
        assert not report.connection.ok
        backend.detect_remote_repos.assert_not_called()


class TestDiscover:
    def test_local_discover_and_import(self, orch, backend):
        orch.set_mode(Mode.LOCAL)
        existing = orch.add_project(_local("b", "/w/b"), auto_init=False)
        backend.detect_local_repos.return_value = [
            DiscoveredRepo(path="/w/a", origin_url="git@h:a.git", has_remote=True),
            DiscoveredRepo(path="/w/b"),
            DiscoveredRepo(path="/w/c"),
        ]
        repos = orch.discover("/w", 3)
        assert len(repos) == 3
        assert backend.detect_local_repos.call_args.args[:2] == ("/w", 3)

        imported = orch.import_discovered(["/w/a", "/w/b", "/w/c"])
        assert [p.name for p in imported] == ["a", "c"]
        assert [p.name for p in orch.projects] == ["a", "c", "b"]
        assert orch.working_set.pinned == [imported[0].id, imported[1].id, existing.id]
        assert orch.selected_project_id == imported[0].id

    def test_depth_clamped(self, orch, backend):
        orch.set_mode(Mode.LOCAL)
        backend.detect_local_repos.return_value = []
        orch.discover("/w", 99)
        assert backend.detect_local_repos.call_args.args[1] == 12

    def test_root_required(self, orch):
        orch.set_mode(Mode.LOCAL)
        with pytest.raises(ActionValidationError):
            orch.discover("  ")

    def test_ssh_discover_requires_connection(self, orch, backend):
        with pytest.raises(ActionValidationError):
            orch.discover("/srv")
        orch.connect_ssh(auto_import=False)
        backend.detect_remote_repos.return_value = [DiscoveredRepo(path="/srv/x")]
        assert orch.discover("/srv")[0].path == "/srv/x"

    def test_import_nothing_selected(self, orch, backend):
        orch.set_mode(Mode.LOCAL)
        backend.detect_local_repos.return_value = [DiscoveredRepo(path="/w/a")]
        orch.discover("/w")
        with pytest.raises(ActionValidationError):
            orch.import_discovered(["/elsewhere"])

    def test_import_uses_scan_mode(self, orch, backend):
        orch.set_mode(Mode.LOCAL)
        backend.detect_local_repos.return_value = [DiscoveredRepo(path="/home/me/src/app")]
        orch.discover("/home/me/src")
        orch.set_mode(Mode.SSH)

        imported = orch.import_discovered(["/home/me/src/app"])
        assert imported[0].test.local_path == "/home/me/src/app"
        assert imported[0].test.remote_path == ""

        # the claimed-path check runs against local paths too
        orch.set_mode(Mode.LOCAL)
        orch.discover("/home/me/src")
        orch.set_mode(Mode.SSH)
        assert orch.import_discovered(["/home/me/src/app"]) == []

    def test_one_discovery_at_a_time(self, orch, backend):
        orch.set_mode(Mode.LOCAL)

        def reentrant(*args):
            orch.discover("/w")
            return []

        backend.detect_local_repos.side_effect = reentrant
        with pytest.raises(DiscoveryInProgressError):
            orch.discover("/w")


class TestDocuments:
    def test_export_import_round_trip(self, orch, config, backend):
        orch.set_mode(Mode.LOCAL)
        a = orch.add_project(_local("a", "/w/a"), auto_init=False)
        b = orch.add_project(_local("b", "/w/b"), auto_init=False)
        docs = orch.export_documents()

        with tempfile.TemporaryDirectory() as tmp:
            other = Orchestrator(Config(db_path=Path(tmp) / "other.db"), backend)
            count = other.import_documents(docs["gitshlc.config.v1"], docs["gitshlc.ui.v1"])
            assert count == 2
            assert [p.id for p in other.projects] == [b.id, a.id]
            assert other.working_set.pinned == [b.id, a.id]
            assert other.selected_project_id == b.id
            assert other.mode is Mode.LOCAL

    def test_import_drops_unknown_pins(self, orch):
        doc = {"projects": [{"id": "p1", "name": "one", "test": {"localPath": "/w/1"}}]}
        ui = {"mode": "local", "pinnedProjectIds": ["ghost", "p1"], "selectedProjectId": "ghost"}
        orch.import_documents(doc, ui)
        assert orch.working_set.pinned == ["p1"]
        assert orch.selected_project_id is None

    def test_github_account_round_trip(self, orch, backend):
        orch.set_github_account("me", "ghp_secret")
        docs = orch.export_documents()
        assert docs["gitshlc.config.v1"]["github"] == {"username": "me", "token": "ghp_secret"}

        with tempfile.TemporaryDirectory() as tmp:
            other = Orchestrator(Config(db_path=Path(tmp) / "other.db"), backend)
            other.import_documents(docs["gitshlc.config.v1"])
            assert other.github_account.username == "me"
            assert Orchestrator(other.config, backend).github_account.token == "ghp_secret"


class TestGitHub:
    @pytest.fixture
    def github(self):
        client = MagicMock()
        client.list_repos.return_value = [
            GitHubRepo(id=7, full_name="me/app", clone_url="https://github.com/me/app.git",
                       ssh_url="git@github.com:me/app.git"),
        ]
        return client

    @pytest.fixture
    def gh_orch(self, config, backend, github):
        return Orchestrator(config, backend, github)

    def test_token_required(self, gh_orch, github):
        with pytest.raises(ActionValidationError):
            gh_orch.list_github_repos()
        github.list_repos.assert_not_called()

    def test_env_token_takes_precedence(self, config, backend, github):
        config.github_token = "from-env"
        orch = Orchestrator(config, backend, github)
        orch.set_github_account("me", "stored")
        assert orch.github_account.token == "from-env"
        orch.list_github_repos()
        github.list_repos.assert_called_once_with("from-env")

    def test_account_persists(self, config, backend, github):
        Orchestrator(config, backend, github).set_github_account(username=" me ", token="t")
        reloaded = Orchestrator(config, backend, github)
        assert reloaded.github_account.username == "me"
        reloaded.set_github_account(username="other")
        assert reloaded.github_account.token == "t"

    def test_use_repo_fills_repo_url(self, gh_orch):
        project = gh_orch.add_project(_remote("a", "/srv/a"), auto_init=False)
        gh_orch.set_github_account(token="t")
        gh_orch.list_github_repos()

        updated = gh_orch.use_github_repo(project.id, EnvKey.DEPLOY, 7)
        assert updated.deploy.repo_url == "https://github.com/me/app.git"
        assert updated.test.repo_url == ""

        updated = gh_orch.use_github_repo(project.id, "test", 7, use_ssh_url=True)
        assert gh_orch.get_project(project.id).test.repo_url == "git@github.com:me/app.git"

    def test_use_unlisted_repo(self, gh_orch):
        project = gh_orch.add_project(_remote("a", "/srv/a"), auto_init=False)
        with pytest.raises(ValueError):
            gh_orch.use_github_repo(project.id, "test", 7)

    def test_api_errors_propagate(self, gh_orch, github):
        github.list_repos.side_effect = GitHubError("GitHub API failed: 401")
        gh_orch.set_github_account(token="t")
        with pytest.raises(GitHubError):
            gh_orch.list_github_repos()
