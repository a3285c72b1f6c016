"""MCP server exposing gitshlc project and action tools."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from mcp.server.fastmcp import Context, FastMCP

from gitshlc.config import Config, get_config
from gitshlc.core.actions import ActionInProgressError, ActionValidationError
from gitshlc.core.discovery import DiscoveryInProgressError
from gitshlc.core.orchestrator import Orchestrator
from gitshlc.db.models import ActionOutcome, Project, ProjectEnv
from gitshlc.integrations.git import DetectError
from gitshlc.integrations.github import GitHubError


@dataclass
class AppContext:
    orchestrator: Orchestrator
    config: Config


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Load projects and UI state on startup."""
    config = get_config()
    yield AppContext(orchestrator=Orchestrator(config), config=config)


mcp = FastMCP("gitshlc", lifespan=app_lifespan)


def _ctx(ctx: Context) -> AppContext:
    """Extract AppContext from MCP Context."""
    return ctx.request_context.lifespan_context


def _orch(ctx: Context) -> Orchestrator:
    return _ctx(ctx).orchestrator


# ── Project Tools ─────────────────────────────────────────────────────────────


@mcp.tool()
def list_projects(ctx: Context, include_hidden: bool = False) -> list[dict]:
    """List projects. Projects without a path for the current mode are hidden unless include_hidden."""
    orch = _orch(ctx)
    projects = orch.projects if include_hidden else orch.visible_projects()
    return [_project_to_dict(p) for p in projects]


@mcp.tool()
def get_project(ctx: Context, project_id: str) -> dict:
    """Get a project with both of its environments."""
    project = _orch(ctx).find_project(project_id)
    if not project:
        return {"error": f"Project not found: {project_id}"}
    return _project_to_dict(project)


@mcp.tool()
def add_project(
    ctx: Context,
    name: str,
    test_repo_url: str = "",
    test_branch: str = "main",
    test_local_path: str = "",
    test_remote_path: str = "",
    deploy_repo_url: str = "",
    deploy_branch: str = "main",
    deploy_local_path: str = "",
    deploy_remote_path: str = "",
) -> dict:
    """Add a project; it is pinned and selected. Local paths are git-initialized."""
    project = Project(
        name=name,
        test=ProjectEnv(test_repo_url, test_branch, test_local_path, test_remote_path),
        deploy=ProjectEnv(deploy_repo_url, deploy_branch, deploy_local_path, deploy_remote_path),
    )
    try:
        return _project_to_dict(_orch(ctx).add_project(project))
    except ValueError as e:
        return {"error": str(e)}


@mcp.tool()
def remove_project(ctx: Context, project_id: str) -> dict:
    """Delete a project record. Repositories on disk are not touched."""
    try:
        project = _orch(ctx).remove_project(project_id)
    except ValueError as e:
        return {"error": str(e)}
    return {"deleted": project.id}


# ── Working Set Tools ─────────────────────────────────────────────────────────


@mcp.tool()
def workspace(ctx: Context) -> dict:
    """Current mode, pinned projects (visible ones, in order) and selection."""
    return _workspace_to_dict(_orch(ctx))


@mcp.tool()
def set_mode(ctx: Context, mode: str) -> dict:
    """Switch between 'local' and 'ssh' mode."""
    orch = _orch(ctx)
    try:
        orch.set_mode(mode)
    except ValueError:
        return {"error": "mode must be 'local' or 'ssh'"}
    return _workspace_to_dict(orch)


@mcp.tool()
def pin_project(ctx: Context, project_id: str) -> dict:
    """Pin a project to the working set (max 8, newest first)."""
    orch = _orch(ctx)
    try:
        orch.pin(project_id)
    except ValueError as e:
        return {"error": str(e)}
    return _workspace_to_dict(orch)


@mcp.tool()
def unpin_project(ctx: Context, project_id: str) -> dict:
    """Unpin a project. If it was selected, the first visible pin becomes selected."""
    orch = _orch(ctx)
    orch.unpin(project_id)
    return _workspace_to_dict(orch)


@mcp.tool()
def select_project(ctx: Context, project_id: str) -> dict:
    """Select a project. Selecting also pins it."""
    orch = _orch(ctx)
    try:
        orch.select(project_id)
    except ValueError as e:
        return {"error": str(e)}
    return _workspace_to_dict(orch)


@mcp.tool()
def set_project_env(ctx: Context, project_id: str, env_key: str) -> dict:
    """Choose the environment ('test' or 'deploy') actions run against."""
    orch = _orch(ctx)
    try:
        orch.set_selected_env(project_id, env_key)
    except ValueError as e:
        return {"error": str(e)}
    return _workspace_to_dict(orch)


# ── Action Tools ──────────────────────────────────────────────────────────────


@mcp.tool()
def run_action(
    ctx: Context,
    project_id: str,
    action: str,
    commit_message: str | None = None,
    env_key: str | None = None,
) -> dict:
    """Run 'pull', 'push' or 'merge' on a project. Push requires a commit message."""
    try:
        outcome = _orch(ctx).run_action(project_id, action, commit_message, env_key)
    except (ActionValidationError, ActionInProgressError) as e:
        return {"error": str(e)}
    return _outcome_to_dict(outcome)


@mcp.tool()
def preflight(ctx: Context) -> dict:
    """Check that git and ssh are available on this machine."""
    result = _orch(ctx).preflight()
    return {
        "platform": result.platform,
        "git": {"ok": result.git.ok, "path": str(result.git.path or ""), "error": result.git.error},
        "ssh": {"ok": result.ssh.ok, "path": str(result.ssh.path or ""), "error": result.ssh.error},
    }


@mcp.tool()
def list_branches(ctx: Context, repo_url: str) -> dict:
    """List branch names on a remote repository."""
    try:
        result = _orch(ctx).list_branches(repo_url)
    except ActionValidationError as e:
        return {"error": str(e)}
    return {"ok": result.ok, "branches": result.branches, "stderr": result.stderr}


# ── Discovery Tools ───────────────────────────────────────────────────────────


@mcp.tool()
def ssh_connect(ctx: Context, auto_import: bool = True) -> dict:
    """Check the SSH connection. In ssh mode, unclaimed remote repos are imported."""
    try:
        report = _orch(ctx).connect_ssh(auto_import)
    except DiscoveryInProgressError as e:
        return {"error": str(e)}
    return {
        "ok": report.connection.ok,
        "ssh_ok": report.connection.ssh_ok,
        "stderr": report.connection.stderr,
        "imported": [p.id for p in report.imported],
        "notice": report.notice,
    }


@mcp.tool()
def discover_repos(ctx: Context, root_path: str, max_depth: int | None = None) -> dict:
    """Scan for git repositories under root_path in the current mode."""
    try:
        repos = _orch(ctx).discover(root_path, max_depth)
    except (ActionValidationError, DetectError, DiscoveryInProgressError) as e:
        return {"error": str(e)}
    return {
        "repos": [
            {"path": r.path, "name": r.name, "origin_url": r.origin_url, "has_remote": r.has_remote}
            for r in repos
        ]
    }


@mcp.tool()
def import_repos(ctx: Context, paths: list[str]) -> dict:
    """Import discovered repositories by path. Already-registered paths are skipped."""
    try:
        imported = _orch(ctx).import_discovered(paths)
    except (ActionValidationError, DiscoveryInProgressError) as e:
        return {"error": str(e)}
    return {"imported": [_project_to_dict(p) for p in imported]}


# ── GitHub Tools ──────────────────────────────────────────────────────────────


@mcp.tool()
def list_github_repos(ctx: Context) -> dict:
    """List the GitHub account's repositories, most recently updated first."""
    try:
        repos = _orch(ctx).list_github_repos()
    except (ActionValidationError, GitHubError) as e:
        return {"error": str(e)}
    return {
        "repos": [
            {
                "id": r.id,
                "full_name": r.full_name,
                "clone_url": r.clone_url,
                "ssh_url": r.ssh_url,
                "default_branch": r.default_branch,
                "private": r.is_private,
            }
            for r in repos
        ]
    }


@mcp.tool()
def use_github_repo(
    ctx: Context,
    project_id: str,
    repo_id: int,
    env_key: str = "test",
    use_ssh_url: bool = False,
) -> dict:
    """Set a project environment's repo URL from a repository returned by list_github_repos."""
    try:
        project = _orch(ctx).use_github_repo(project_id, env_key, repo_id, use_ssh_url)
    except ValueError as e:
        return {"error": str(e)}
    return _project_to_dict(project)


# ── Helpers ───────────────────────────────────────────────────────────────────


def _project_to_dict(project: Project) -> dict:
    def env(e: ProjectEnv) -> dict:
        return {
            "repo_url": e.repo_url,
            "branch": e.branch,
            "local_path": e.local_path,
            "remote_path": e.remote_path,
        }

    return {"id": project.id, "name": project.name, "test": env(project.test), "deploy": env(project.deploy)}


def _workspace_to_dict(orch: Orchestrator) -> dict:
    return {
        "mode": orch.mode.value,
        "pinned": [{"id": p.id, "name": p.name} for p in orch.pinned_projects()],
        "selected_project_id": orch.selected_project_id,
    }


def _outcome_to_dict(outcome: ActionOutcome) -> dict:
    result = {
        "ok": outcome.ok,
        "env_key": outcome.env_key,
        "action": outcome.action,
        "mode": outcome.mode,
        "steps": [
            {"cmd": s.cmd, "exit_code": s.exit_code, "ok": s.ok, "stderr": s.stderr}
            for s in outcome.steps
        ],
    }
    if outcome.error:
        result["error"] = {
            "code": outcome.error.code,
            "severity": outcome.error.severity.value,
            "message": outcome.error.message,
            "detail": outcome.error.detail,
            "origin": outcome.error.origin.value,
        }
    return result
