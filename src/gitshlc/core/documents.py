"""Versioned JSON documents for the project list and the UI state.

Both loaders accept anything: unknown fields are ignored, missing ones
take defaults, and older shapes are migrated forward.
"""

from gitshlc.config import Config, clamp_int
from gitshlc.core.projects import DEFAULT_BRANCH, parse_env_map
from gitshlc.core.working_set import PIN_LIMIT, unique_keep_order
from gitshlc.db.models import EnvKey, GitHubAccount, Mode, Project, ProjectEnv, UiState, new_project_id

CONFIG_KEY = "gitshlc.config.v1"
UI_KEY = "gitshlc.ui.v1"


def _str(value) -> str:
    return "" if value is None else str(value)


def migrate_project_env(raw) -> ProjectEnv:
    raw = raw if isinstance(raw, dict) else {}
    return ProjectEnv(
        repo_url=_str(raw.get("repoUrl")),
        branch=_str(raw.get("branch")).strip() or DEFAULT_BRANCH,
        local_path=_str(raw.get("localPath")),
        remote_path=_str(raw.get("remotePath")),
    )


def migrate_project(raw) -> Project | None:
    if not isinstance(raw, dict):
        return None

    # Older documents nested environments under "envs"
    envs = raw.get("envs") if isinstance(raw.get("envs"), dict) else {}
    return Project(
        id=_str(raw.get("id")) or new_project_id(),
        name=_str(raw.get("name")),
        test=migrate_project_env(envs.get("test", raw.get("test"))),
        deploy=migrate_project_env(envs.get("deploy", raw.get("deploy"))),
    )


def migrate_config(doc) -> list[Project]:
    """Projects from a project-list document. Tool, SSH and GitHub settings are read elsewhere."""
    raw = doc.get("projects") if isinstance(doc, dict) else None
    if not isinstance(raw, list):
        return []
    projects = [migrate_project(p) for p in raw]
    return [p for p in projects if p is not None]


def migrate_github(doc) -> GitHubAccount | None:
    """The GitHub account of a project-list document, or None when it has none."""
    raw = doc.get("github") if isinstance(doc, dict) else None
    if not isinstance(raw, dict):
        return None
    return GitHubAccount(username=_str(raw.get("username")).strip(), token=_str(raw.get("token")).strip())


def migrate_ui(doc) -> UiState:
    doc = doc if isinstance(doc, dict) else {}

    pinned = doc.get("pinnedProjectIds")
    if not isinstance(pinned, list):
        pinned = doc.get("lastOpenProjectIds")
    if not isinstance(pinned, list):
        pinned = []

    envs = doc.get("selectedEnvByProject")
    if not isinstance(envs, dict):
        envs = doc.get("selectedEnvKeyByProject")

    selected = doc.get("selectedProjectId")
    return UiState(
        mode=Mode.LOCAL if doc.get("mode") == Mode.LOCAL.value else Mode.SSH,
        pinned_project_ids=unique_keep_order(str(v) for v in pinned)[:PIN_LIMIT],
        selected_project_id=str(selected) if selected else None,
        selected_env_by_project=parse_env_map(envs),
    )


def _env_doc(env: ProjectEnv) -> dict:
    return {
        "repoUrl": env.repo_url,
        "branch": env.branch,
        "localPath": env.local_path,
        "remotePath": env.remote_path,
    }


def export_config(projects: list[Project], config: Config, github: GitHubAccount | None = None) -> dict:
    github = github or GitHubAccount()
    return {
        "version": 1,
        "key": CONFIG_KEY,
        "toolPaths": {"gitPath": config.git_path, "sshPath": config.ssh_path},
        "ssh": {
            "host": config.ssh_host,
            "user": config.ssh_user,
            "port": clamp_int(config.ssh_port, 1, 65535, 22),
            "keyPath": config.ssh_key_path,
        },
        "github": {"username": github.username, "token": github.token},
        "projects": [
            {
                "id": p.id,
                "name": p.name,
                "test": _env_doc(p.env(EnvKey.TEST)),
                "deploy": _env_doc(p.env(EnvKey.DEPLOY)),
            }
            for p in projects
        ],
    }


def export_ui(ui: UiState) -> dict:
    return {
        "version": 1,
        "key": UI_KEY,
        "mode": ui.mode.value,
        "pinnedProjectIds": list(ui.pinned_project_ids),
        "selectedProjectId": ui.selected_project_id,
        "selectedEnvByProject": {k: v.value for k, v in ui.selected_env_by_project.items()},
    }
