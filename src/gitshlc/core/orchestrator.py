"""The orchestrator: owns the project list and working set and is their only mutation surface."""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace

from gitshlc.config import Config, clamp_int
from gitshlc.core import documents as documents_mod
from gitshlc.core.actions import ActionExecutor, ActionValidationError, CommitGate
from gitshlc.core.discovery import DiscoveryInProgressError, reconcile
from gitshlc.core.environments import choose_env, env_is_visible, is_visible
from gitshlc.core.projects import (
    list_projects,
    load_github_account,
    load_ui_state,
    normalize_project,
    save_github_account,
    save_projects,
    save_ui_state,
)
from gitshlc.core.working_set import WorkingSet
from gitshlc.db.engine import get_db
from gitshlc.db.models import (
    ActionKind,
    ActionOutcome,
    BranchList,
    DiscoveredRepo,
    EnvKey,
    GitHubAccount,
    GitHubRepo,
    Mode,
    PreflightResult,
    Project,
    SshConnectResult,
    ToolCheck,
    UiState,
)
from gitshlc.integrations.backend import BackendUnavailableError, GitBackend
from gitshlc.integrations.git import DetectError
from gitshlc.integrations.github import GitHubClient
from gitshlc.integrations.tools import normalize_path_input, platform_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LastAction:
    project_id: str
    env_key: EnvKey
    outcome: ActionOutcome


@dataclass
class ConnectReport:
    connection: SshConnectResult
    imported: list[Project] = field(default_factory=list)
    notice: str | None = None


class Orchestrator:
    """Projects, pins, selection and mode, plus the actions run against them.

    State is loaded from the database on construction and written back as
    a whole after every mutation.
    """

    def __init__(self, config: Config, backend=None, github: GitHubClient | None = None):
        self.config = config
        self.backend = backend if backend is not None else GitBackend()
        self.github = github if github is not None else GitHubClient()
        self.executor = ActionExecutor(self.backend)
        self.commit_gate = CommitGate(self._run_confirmed_push)

        self.last_action: LastAction | None = None
        self.discovered: list[DiscoveredRepo] = []
        self.discovered_mode: Mode | None = None
        self.ssh_connection: SshConnectResult | None = None
        self.preflight_result: PreflightResult | None = None
        self.github_repos: list[GitHubRepo] = []

        self._lock = threading.RLock()
        self._discovery_guard = threading.Lock()
        self.reload()

    # ── State ────────────────────────────────────────────────────────────────

    def reload(self) -> None:
        with get_db(self.config.db_path) as db:
            projects = [normalize_project(p) for p in list_projects(db)]
            ui = load_ui_state(db)
            github = load_github_account(db)

        known = {p.id for p in projects}
        with self._lock:
            self._projects = projects
            self.mode = ui.mode
            self.working_set = WorkingSet.load(ui.pinned_project_ids, ui.selected_project_id, known)
            self._selected_env = {k: v for k, v in ui.selected_env_by_project.items() if k in known}
            self._github_account = github

    def _save(self) -> None:
        with get_db(self.config.db_path) as db:
            save_projects(db, self._projects)
            save_ui_state(db, self.ui_state())

    def ui_state(self) -> UiState:
        return UiState(
            mode=self.mode,
            pinned_project_ids=self.working_set.pinned,
            selected_project_id=self.working_set.selected,
            selected_env_by_project=dict(self._selected_env),
        )

    @property
    def projects(self) -> list[Project]:
        return list(self._projects)

    @property
    def selected_project_id(self) -> str | None:
        return self.working_set.selected

    def find_project(self, project_id: str) -> Project | None:
        return next((p for p in self._projects if p.id == project_id), None)

    def get_project(self, project_id: str) -> Project:
        project = self.find_project(project_id)
        if project is None:
            raise ValueError(f"Project not found: {project_id}")
        return project

    def is_visible(self, project_id: str) -> bool:
        project = self.find_project(project_id)
        return project is not None and is_visible(project, self.mode)

    def visible_projects(self) -> list[Project]:
        return [p for p in self._projects if is_visible(p, self.mode)]

    def pinned_projects(self) -> list[Project]:
        """Pinned projects visible in the current mode, in pin order."""
        return [
            self.find_project(pid)
            for pid in self.working_set.pinned
            if self.is_visible(pid)
        ]

    # ── Projects ─────────────────────────────────────────────────────────────

    def add_project(self, project: Project, auto_init: bool = True) -> Project:
        """Add a project at the top of the list, pin it and select it."""
        project = normalize_project(project)
        if not project.name:
            raise ValueError("project name is required")

        with self._lock:
            if self.find_project(project.id):
                raise ValueError(f"Project already exists: {project.id}")
            self._projects = [project, *self._projects]
            self.working_set.select(project.id)
            self._save()

        logger.info("Added project %s (%s)", project.id, project.name)
        if auto_init:
            self.init_local_repos(project)
        return project

    def replace_project(self, project: Project, auto_init: bool = True) -> Project:
        """Replace a project record as a whole, keeping its position."""
        project = normalize_project(project)
        if not project.name:
            raise ValueError("project name is required")

        with self._lock:
            index = next((i for i, p in enumerate(self._projects) if p.id == project.id), None)
            if index is None:
                raise ValueError(f"Project not found: {project.id}")
            projects = list(self._projects)
            projects[index] = project
            self._projects = projects
            self._save()

        if auto_init:
            self.init_local_repos(project)
        return project

    def remove_project(self, project_id: str) -> Project:
        """Delete a project and drop it from the pins, selection and env choices."""
        with self._lock:
            project = self.get_project(project_id)
            self._projects = [p for p in self._projects if p.id != project_id]
            self._selected_env.pop(project_id, None)
            self.working_set.forget(project_id, self.is_visible)
            self._save()
        logger.info("Removed project %s", project_id)
        return project

    # ── Working set ──────────────────────────────────────────────────────────

    def pin(self, project_id: str) -> None:
        with self._lock:
            self.get_project(project_id)
            self.working_set.pin(project_id)
            self._save()

    def unpin(self, project_id: str) -> None:
        with self._lock:
            self.working_set.unpin(project_id, self.is_visible)
            self._save()

    def select(self, project_id: str) -> None:
        with self._lock:
            self.get_project(project_id)
            self.working_set.select(project_id)
            self._save()

    def set_mode(self, mode: str | Mode) -> None:
        with self._lock:
            self.mode = Mode(mode)
            self.working_set.revalidate(self.is_visible)
            self._save()

    def selected_env(self, project_id: str) -> EnvKey:
        return self._selected_env.get(project_id, EnvKey.TEST)

    def set_selected_env(self, project_id: str, env_key: str | EnvKey) -> None:
        with self._lock:
            self.get_project(project_id)
            self._selected_env[project_id] = EnvKey(env_key)
            self._save()

    def active_env(self, project_id: str) -> EnvKey | None:
        """The env an action would run against in the current mode, if any."""
        project = self.get_project(project_id)
        return choose_env(project, self.mode, self.selected_env(project_id))

    # ── Actions ──────────────────────────────────────────────────────────────

    def run_action(
        self,
        project_id: str,
        action: str | ActionKind,
        commit_message: str | None = None,
        env_key: str | EnvKey | None = None,
    ) -> ActionOutcome:
        """Run pull/push/merge on a project's visible environment."""
        try:
            project = self.find_project(project_id)
            if project is None:
                raise ActionValidationError(f"Project not found: {project_id}")

            if env_key is not None:
                try:
                    env = EnvKey(env_key)
                except ValueError:
                    raise ActionValidationError(f"Unknown environment: {env_key}") from None
                if not env_is_visible(project, env, self.mode):
                    raise ActionValidationError(
                        f"Environment '{env.value}' has no {self.mode.value} path for {project.name or project.id}"
                    )
            else:
                env = choose_env(project, self.mode, self.selected_env(project_id))
                if env is None:
                    raise ActionValidationError(
                        f"No visible environment for {project.name or project.id} in {self.mode.value} mode"
                    )

            outcome = self.executor.run(
                project,
                env,
                action,
                self.mode,
                self.config.tool_hints(),
                self.config.ssh_params(),
                commit_message,
            )
        except ActionValidationError as e:
            logger.info("Action refused: %s", e)
            raise

        with self._lock:
            self.last_action = LastAction(project_id=project_id, env_key=env, outcome=outcome)
        return outcome

    def request_push(self, project_id: str) -> CommitGate:
        self.get_project(project_id)
        self.commit_gate.request_push(project_id)
        return self.commit_gate

    def _run_confirmed_push(self, project_id: str, message: str) -> ActionOutcome:
        return self.run_action(project_id, ActionKind.PUSH, message)

    # ── Tools and SSH ────────────────────────────────────────────────────────

    def preflight(self) -> PreflightResult:
        try:
            result = self.backend.preflight(self.config.tool_hints())
        except BackendUnavailableError as e:
            logger.warning("Preflight failed: %s", e)
            result = PreflightResult(
                platform=platform_name(),
                git=ToolCheck(error=str(e)),
                ssh=ToolCheck(error=str(e)),
            )
        self.preflight_result = result
        return result

    def list_branches(self, repo_url: str) -> BranchList:
        if not (repo_url or "").strip():
            raise ActionValidationError("repoUrl is not set")
        return self.backend.list_branches(repo_url.strip(), self.config.tool_hints().git_path)

    def init_local_repos(self, project: Project) -> list[tuple[EnvKey, ActionOutcome]]:
        """Best-effort init of every env with a local path. Failures are logged, not raised."""
        results = []
        for key in EnvKey:
            env = project.env(key)
            if not env.local_path.strip():
                continue
            try:
                outcome = self.backend.init_local_repo(
                    env.local_path,
                    self.config.tool_hints().git_path,
                    env.repo_url or None,
                    env.branch or None,
                )
            except BackendUnavailableError as e:
                logger.warning("init failed for %s/%s: %s", project.id, key.value, e)
                continue
            if not outcome.ok:
                message = outcome.error.message if outcome.error else "see steps"
                logger.warning("init failed for %s/%s: %s", project.id, key.value, message)
            results.append((key, outcome))
        return results

    @contextmanager
    def _discovery(self):
        if not self._discovery_guard.acquire(blocking=False):
            raise DiscoveryInProgressError("A repository discovery is already running")
        try:
            yield
        finally:
            self._discovery_guard.release()

    def connect_ssh(self, auto_import: bool = True) -> ConnectReport:
        """Check the SSH connection and, in SSH mode, import every unclaimed remote repo.

        Imports are not rolled back if a later step fails.
        """
        hints = self.config.tool_hints()
        params = self.config.ssh_params()

        with self._discovery():
            connection = self.backend.ssh_connect(hints.ssh_path, params)
            self.ssh_connection = connection
            report = ConnectReport(connection=connection)

            if not (auto_import and self.mode is Mode.SSH and connection.ssh_ok):
                return report

            try:
                repos = self.backend.detect_remote_repos(
                    "",
                    self.config.remote_max_depth,
                    params,
                    hints,
                    self.config.remote_max_repos,
                )
            except (DetectError, BackendUnavailableError) as e:
                report.notice = f"remote repos import failed: {e}"
                logger.warning(report.notice)
                return report

            if not repos:
                report.notice = "remote repos not found (0)"
                return report

            with self._lock:
                new_projects = reconcile(self._projects, repos, Mode.SSH)
                if new_projects:
                    self._projects = [*self._projects, *new_projects]
                    self.working_set.fill(p.id for p in new_projects)
                    self._save()

            report.imported = new_projects
            if new_projects:
                report.notice = f"remote repos imported: +{len(new_projects)}"
            else:
                report.notice = "remote repos found but all duplicated"
            logger.info(report.notice)
            return report

    # ── Discovery ────────────────────────────────────────────────────────────

    def discover(self, root_path: str | None = None, max_depth: int | None = None) -> list[DiscoveredRepo]:
        """Scan for repositories in the current mode and keep them, with that mode, for import."""
        depth = clamp_int(max_depth if max_depth is not None else self.config.detect_max_depth, 1, 12, 8)
        hints = self.config.tool_hints()

        with self._discovery():
            self.discovered = []
            self.discovered_mode = None
            mode = self.mode

            if mode is Mode.LOCAL:
                root = normalize_path_input(root_path or "")
                if not root:
                    raise ActionValidationError("Root path is required.")
                repos = self.backend.detect_local_repos(root, depth, hints.git_path)
            else:
                if not (self.ssh_connection and self.ssh_connection.ssh_ok):
                    raise ActionValidationError("SSH is not connected. Run SSH connect first.")
                root = (root_path or "").strip()
                if not root:
                    raise ActionValidationError("Root path is required.")
                repos = self.backend.detect_remote_repos(
                    root, depth, self.config.ssh_params(), hints, self.config.remote_max_repos
                )

            self.discovered = list(repos)
            self.discovered_mode = mode
            logger.info("Discovered %d repositories under %s", len(self.discovered), root)
            return list(self.discovered)

    def import_discovered(self, paths: list[str]) -> list[Project]:
        """Import the confirmed discovery rows at the top of the list.

        Rows are matched against the mode they were scanned in, not the current one.

        Imported projects are pinned and the first one is selected.
        """
        with self._discovery():
            wanted = set(paths)
            chosen = [r for r in self.discovered if r.path in wanted]
            if not chosen:
                raise ActionValidationError("No discovered repositories selected")

            with self._lock:
                new_projects = reconcile(self._projects, chosen, self.discovered_mode)
                if not new_projects:
                    logger.info("Nothing to import; all selected repositories are registered")
                    return []

                self._projects = [*new_projects, *self._projects]
                for project in reversed(new_projects):
                    self.working_set.pin(project.id)
                self.working_set.select(new_projects[0].id)
                self._save()

        logger.info("Imported %d discovered repositories", len(new_projects))
        return new_projects

    # ── GitHub ───────────────────────────────────────────────────────────────

    @property
    def github_account(self) -> GitHubAccount:
        """The stored account, with GITSHLC_GITHUB_* values taking precedence."""
        stored = self._github_account
        return GitHubAccount(
            username=self.config.github_user or stored.username,
            token=self.config.github_token or stored.token,
        )

    def set_github_account(self, username: str | None = None, token: str | None = None) -> GitHubAccount:
        with self._lock:
            stored = self._github_account
            self._github_account = GitHubAccount(
                username=stored.username if username is None else username.strip(),
                token=stored.token if token is None else token.strip(),
            )
            with get_db(self.config.db_path) as db:
                save_github_account(db, self._github_account)
        return self.github_account

    def list_github_repos(self) -> list[GitHubRepo]:
        """List the account's repositories and keep them for `use_github_repo`."""
        token = self.github_account.token
        if not token:
            raise ActionValidationError("GitHub token is not set")
        repos = self.github.list_repos(token)
        with self._lock:
            self.github_repos = repos
        return list(repos)

    def use_github_repo(
        self,
        project_id: str,
        env_key: str | EnvKey,
        repo_id: int,
        use_ssh_url: bool = False,
    ) -> Project:
        """Set an environment's repo URL from a listed GitHub repository."""
        key = EnvKey(env_key)
        repo = next((r for r in self.github_repos if r.id == repo_id), None)
        if repo is None:
            raise ValueError(f"GitHub repository not listed: {repo_id}")
        url = repo.ssh_url if use_ssh_url else repo.clone_url
        if not url:
            raise ValueError(f"GitHub repository {repo.full_name} has no URL")

        with self._lock:
            project = self.get_project(project_id)
            env = replace(project.env(key), repo_url=url)
            return self.replace_project(project.with_env(key, env), auto_init=False)

    # ── Documents ────────────────────────────────────────────────────────────

    def export_documents(self) -> dict:
        return {
            documents_mod.CONFIG_KEY: documents_mod.export_config(self._projects, self.config, self.github_account),
            documents_mod.UI_KEY: documents_mod.export_ui(self.ui_state()),
        }

    def import_documents(self, config_doc, ui_doc=None) -> int:
        """Replace the project list (and UI state, if given) from documents."""
        projects = [normalize_project(p) for p in documents_mod.migrate_config(config_doc)]
        unique: dict[str, Project] = {}
        for project in projects:
            unique.setdefault(project.id, project)
        projects = list(unique.values())
        ui = documents_mod.migrate_ui(ui_doc) if ui_doc is not None else self.ui_state()
        github = documents_mod.migrate_github(config_doc)

        known = {p.id for p in projects}
        with self._lock:
            self._projects = projects
            self.mode = ui.mode
            self.working_set = WorkingSet.load(ui.pinned_project_ids, ui.selected_project_id, known)
            self._selected_env = {k: v for k, v in ui.selected_env_by_project.items() if k in known}
            self._save()
            if github is not None:
                self._github_account = github
                with get_db(self.config.db_path) as db:
                    save_github_account(db, github)
        logger.info("Imported %d projects from documents", len(projects))
        return len(projects)
