"""Project and UI-state persistence."""

import json
import sqlite3

from gitshlc.db.models import EnvKey, GitHubAccount, Mode, Project, ProjectEnv, UiState

DEFAULT_BRANCH = "main"


def normalize_project(project: Project) -> Project:
    """Trim fields and restore blank branches to the default branch."""
    envs = {}
    for key in EnvKey:
        env = project.env(key)
        envs[key] = ProjectEnv(
            repo_url=env.repo_url.strip(),
            branch=env.branch.strip() or DEFAULT_BRANCH,
            local_path=env.local_path.strip(),
            remote_path=env.remote_path.strip(),
        )
    return Project(
        id=project.id,
        name=project.name.strip(),
        test=envs[EnvKey.TEST],
        deploy=envs[EnvKey.DEPLOY],
    )


def save_projects(db: sqlite3.Connection, projects: list[Project]) -> None:
    """Replace the stored project list with `projects`, preserving order."""
    keep = [p.id for p in projects]
    placeholders = ", ".join("?" for _ in keep)
    if keep:
        db.execute(f"DELETE FROM projects WHERE id NOT IN ({placeholders})", keep)
    else:
        db.execute("DELETE FROM projects")

    for position, project in enumerate(projects):
        db.execute(
            """INSERT INTO projects (id, name, position) VALUES (?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   name = excluded.name,
                   position = excluded.position,
                   updated_at = datetime('now')""",
            (project.id, project.name, position),
        )
        for key in EnvKey:
            env = project.env(key)
            db.execute(
                """INSERT OR REPLACE INTO project_envs
                   (project_id, env_key, repo_url, branch, local_path, remote_path)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    project.id,
                    key.value,
                    env.repo_url,
                    env.branch or DEFAULT_BRANCH,
                    env.local_path,
                    env.remote_path,
                ),
            )
    db.commit()


def list_projects(db: sqlite3.Connection) -> list[Project]:
    """List all projects in display order."""
    rows = db.execute("SELECT * FROM projects ORDER BY position, created_at").fetchall()
    env_rows = db.execute("SELECT * FROM project_envs").fetchall()

    envs: dict[tuple[str, str], ProjectEnv] = {}
    for row in env_rows:
        envs[(row["project_id"], row["env_key"])] = _row_to_env(row)

    return [
        Project(
            id=row["id"],
            name=row["name"],
            test=envs.get((row["id"], EnvKey.TEST.value), ProjectEnv()),
            deploy=envs.get((row["id"], EnvKey.DEPLOY.value), ProjectEnv()),
        )
        for row in rows
    ]


def get_project(db: sqlite3.Connection, project_id: str) -> Project | None:
    """Get a project by ID."""
    for project in list_projects(db):
        if project.id == project_id:
            return project
    return None


def load_ui_state(db: sqlite3.Connection) -> UiState:
    """Load the UI state row. Malformed values fall back to defaults."""
    row = db.execute("SELECT * FROM ui_state WHERE id = 1").fetchone()
    if not row:
        return UiState()

    mode = Mode.LOCAL if row["mode"] == Mode.LOCAL.value else Mode.SSH
    pinned = _load_json(row["pinned_project_ids"], [])
    envs = _load_json(row["selected_env_by_project"], {})

    return UiState(
        mode=mode,
        pinned_project_ids=[str(v) for v in pinned] if isinstance(pinned, list) else [],
        selected_project_id=row["selected_project_id"] or None,
        selected_env_by_project=parse_env_map(envs),
    )


def save_ui_state(db: sqlite3.Connection, ui: UiState) -> None:
    db.execute(
        """UPDATE ui_state SET mode = ?, pinned_project_ids = ?, selected_project_id = ?,
               selected_env_by_project = ?, updated_at = datetime('now')
           WHERE id = 1""",
        (
            ui.mode.value,
            json.dumps(ui.pinned_project_ids),
            ui.selected_project_id,
            json.dumps({k: v.value for k, v in ui.selected_env_by_project.items()}),
        ),
    )
    db.commit()


def load_github_account(db: sqlite3.Connection) -> GitHubAccount:
    rows = db.execute("SELECT key, value FROM settings WHERE key IN ('github_username', 'github_token')").fetchall()
    values = {row["key"]: row["value"] for row in rows}
    return GitHubAccount(
        username=values.get("github_username", ""),
        token=values.get("github_token", ""),
    )


def save_github_account(db: sqlite3.Connection, account: GitHubAccount) -> None:
    db.executemany(
        "INSERT INTO settings (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        [("github_username", account.username), ("github_token", account.token)],
    )
    db.commit()


def parse_env_map(raw) -> dict[str, EnvKey]:
    """Read a project-id to env-key mapping; anything but 'deploy' means test."""
    if not isinstance(raw, dict):
        return {}
    return {
        str(k): EnvKey.DEPLOY if v == EnvKey.DEPLOY.value else EnvKey.TEST
        for k, v in raw.items()
    }


def _row_to_env(row: sqlite3.Row) -> ProjectEnv:
    return ProjectEnv(
        repo_url=row["repo_url"],
        branch=row["branch"] or DEFAULT_BRANCH,
        local_path=row["local_path"],
        remote_path=row["remote_path"],
    )


def _load_json(val: str | None, default):
    if not val:
        return default
    try:
        return json.loads(val)
    except json.JSONDecodeError:
        return default
