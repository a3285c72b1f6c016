"""CLI entry point for gitshlc."""

import json
import logging
import sys

import click

from gitshlc.config import get_config
from gitshlc.core.actions import ActionInProgressError, ActionValidationError
from gitshlc.core.discovery import DiscoveryInProgressError
from gitshlc.core.orchestrator import Orchestrator
from gitshlc.db.models import ActionKind, EnvKey, Mode, Project, ProjectEnv
from gitshlc.integrations.git import DetectError
from gitshlc.integrations.github import GitHubError
from gitshlc.integrations.tools import default_detect_root


def _orchestrator() -> Orchestrator:
    return Orchestrator(get_config())


def _fail(message) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log to stderr")
def main(verbose):
    """gitshlc - run git pull/push/merge across test and deploy environments"""
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")


# ── Project Commands ──────────────────────────────────────────────────────────


@main.group("project")
def project_group():
    """Manage projects."""
    pass


def _env_options(func):
    for key in reversed(EnvKey):
        name = key.value
        func = click.option(f"--{name}-repo", default=None, help=f"{name} repository URL")(func)
        func = click.option(f"--{name}-branch", default=None, help=f"{name} branch")(func)
        func = click.option(f"--{name}-local", default=None, help=f"{name} local path")(func)
        func = click.option(f"--{name}-remote", default=None, help=f"{name} remote path")(func)
    return func


def _apply_env_options(env: ProjectEnv, options: dict, key: EnvKey) -> ProjectEnv:
    name = key.value
    return ProjectEnv(
        repo_url=_pick(options[f"{name}_repo"], env.repo_url),
        branch=_pick(options[f"{name}_branch"], env.branch),
        local_path=_pick(options[f"{name}_local"], env.local_path),
        remote_path=_pick(options[f"{name}_remote"], env.remote_path),
    )


def _pick(value, current):
    return current if value is None else value


@project_group.command("add")
@click.argument("name")
@_env_options
@click.option("--no-init", is_flag=True, help="Don't initialize local repositories")
def project_add(name, no_init, **options):
    """Add a project. It is pinned and selected."""
    project = Project(name=name)
    for key in EnvKey:
        project = project.with_env(key, _apply_env_options(project.env(key), options, key))

    orch = _orchestrator()
    try:
        project = orch.add_project(project, auto_init=not no_init)
    except ValueError as e:
        _fail(e)
    click.echo(f"Project added: {project.id} ({project.name})")


@project_group.command("edit")
@click.argument("project_id")
@click.option("--name", default=None, help="New project name")
@_env_options
@click.option("--no-init", is_flag=True, help="Don't initialize local repositories")
def project_edit(project_id, name, no_init, **options):
    """Edit a project's name or environments."""
    orch = _orchestrator()
    try:
        project = orch.get_project(project_id)
        if name is not None:
            project = Project(id=project.id, name=name, test=project.test, deploy=project.deploy)
        for key in EnvKey:
            project = project.with_env(key, _apply_env_options(project.env(key), options, key))
        orch.replace_project(project, auto_init=not no_init)
    except ValueError as e:
        _fail(e)
    click.echo(f"Project updated: {project.id}")


@project_group.command("remove")
@click.argument("project_id")
@click.confirmation_option(prompt="Remove this project?")
def project_remove(project_id):
    """Remove a project. Repositories on disk are left untouched."""
    orch = _orchestrator()
    try:
        project = orch.remove_project(project_id)
    except ValueError as e:
        _fail(e)
    click.echo(f"Project removed: {project.id} ({project.name})")


@project_group.command("list")
@click.option("--all", "show_all", is_flag=True, help="Include projects hidden in the current mode")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def project_list(show_all, json_output):
    """List projects visible in the current mode."""
    orch = _orchestrator()
    projects = orch.projects if show_all else orch.visible_projects()

    if json_output:
        click.echo(json.dumps([_project_dict(p) for p in projects], indent=2))
        return

    if not projects:
        click.echo(f"No projects found ({orch.mode.value} mode).")
        return

    for p in projects:
        marks = ("*" if p.id == orch.selected_project_id else " ") + (
            "+" if orch.working_set.is_pinned(p.id) else " "
        )
        hidden = "" if orch.is_visible(p.id) else " [hidden]"
        click.echo(f"  {marks} {p.id}: {p.name}{hidden}")


@project_group.command("show")
@click.argument("project_id")
def project_show(project_id):
    """Show project details."""
    orch = _orchestrator()
    try:
        project = orch.get_project(project_id)
    except ValueError as e:
        _fail(e)

    click.echo(f"Project: {project.id}")
    click.echo(f"  Name: {project.name}")
    click.echo(f"  Pinned: {'yes' if orch.working_set.is_pinned(project.id) else 'no'}")
    click.echo(f"  Selected env: {orch.selected_env(project.id).value}")
    for key in EnvKey:
        env = project.env(key)
        click.echo(f"  [{key.value}]")
        click.echo(f"    Repo: {env.repo_url or '-'}")
        click.echo(f"    Branch: {env.branch}")
        click.echo(f"    Local: {env.local_path or '-'}")
        click.echo(f"    Remote: {env.remote_path or '-'}")


# ── Working Set Commands ─────────────────────────────────────────────────────


@main.command("pin")
@click.argument("project_id")
def pin_command(project_id):
    """Pin a project."""
    orch = _orchestrator()
    try:
        orch.pin(project_id)
    except ValueError as e:
        _fail(e)
    click.echo(f"Pinned: {project_id}")


@main.command("unpin")
@click.argument("project_id")
def unpin_command(project_id):
    """Unpin a project."""
    orch = _orchestrator()
    orch.unpin(project_id)
    click.echo(f"Unpinned: {project_id}")
    if orch.selected_project_id:
        click.echo(f"  Selected: {orch.selected_project_id}")


@main.command("select")
@click.argument("project_id")
def select_command(project_id):
    """Select a project (pins it too)."""
    orch = _orchestrator()
    try:
        orch.select(project_id)
    except ValueError as e:
        _fail(e)
    click.echo(f"Selected: {project_id}")


@main.command("env")
@click.argument("project_id")
@click.argument("env_key", type=click.Choice([k.value for k in EnvKey]))
def env_command(project_id, env_key):
    """Choose which environment actions run against."""
    orch = _orchestrator()
    try:
        orch.set_selected_env(project_id, env_key)
    except ValueError as e:
        _fail(e)
    click.echo(f"{project_id}: {env_key}")


@main.command("mode")
@click.argument("mode", required=False, type=click.Choice([m.value for m in Mode]))
def mode_command(mode):
    """Show or switch the execution mode."""
    orch = _orchestrator()
    if mode:
        orch.set_mode(mode)
    click.echo(f"Mode: {orch.mode.value}")


@main.command("status")
def status_command():
    """Show mode, pins and selection."""
    orch = _orchestrator()
    click.echo(f"Mode: {orch.mode.value}")
    selected = orch.selected_project_id
    project = orch.find_project(selected) if selected else None
    click.echo(f"Selected: {f'{project.id} ({project.name})' if project else '-'}")

    pinned = orch.pinned_projects()
    if not pinned:
        click.echo("No pinned projects.")
        return
    click.echo("Pinned:")
    for p in pinned:
        env = orch.active_env(p.id)
        click.echo(f"  {p.id}: {p.name} [{env.value if env else '-'}]")


# ── Action Commands ──────────────────────────────────────────────────────────


def _run(run) -> None:
    try:
        outcome = run()
    except (ActionValidationError, ActionInProgressError) as e:
        _fail(e)

    for step in outcome.steps:
        icon = "✓" if step.ok else "✗"
        click.echo(f"  {icon} {step.cmd}")
        if not step.ok and step.stderr.strip():
            click.echo(f"      {step.stderr.strip().splitlines()[0]}")

    if outcome.ok:
        click.echo(f"{outcome.action} succeeded ({outcome.env_key})")
        return
    error = outcome.error
    if error:
        click.echo(f"{outcome.action} failed: [{error.code}] {error.message}", err=True)
        if error.detail:
            click.echo(f"  {error.detail}", err=True)
    else:
        click.echo(f"{outcome.action} failed", err=True)
    sys.exit(1)


def _target(orch: Orchestrator, project_id):
    project_id = project_id or orch.selected_project_id
    if not project_id:
        _fail("No project selected")
    return project_id


@main.command("pull")
@click.argument("project_id", required=False)
@click.option("--env", "env_key", default=None, type=click.Choice([k.value for k in EnvKey]))
def pull_command(project_id, env_key):
    """Pull the project's branch (fast-forward only)."""
    orch = _orchestrator()
    project_id = _target(orch, project_id)
    _run(lambda: orch.run_action(project_id, ActionKind.PULL, env_key=env_key))


@main.command("merge")
@click.argument("project_id", required=False)
@click.option("--env", "env_key", default=None, type=click.Choice([k.value for k in EnvKey]))
def merge_command(project_id, env_key):
    """Merge the other environment's branch into this one and push."""
    orch = _orchestrator()
    project_id = _target(orch, project_id)
    _run(lambda: orch.run_action(project_id, ActionKind.MERGE, env_key=env_key))


@main.command("push")
@click.argument("project_id", required=False)
@click.option("--message", "-m", default=None, help="Commit message")
@click.option("--env", "env_key", default=None, type=click.Choice([k.value for k in EnvKey]))
def push_command(project_id, message, env_key):
    """Commit local changes (if any) and push."""
    orch = _orchestrator()
    project_id = _target(orch, project_id)
    if env_key:
        _run(lambda: orch.run_action(project_id, ActionKind.PUSH, message, env_key=env_key))
        return

    try:
        gate = orch.request_push(project_id)
    except ValueError as e:
        _fail(e)
    if message is None:
        message = click.prompt("Commit message", default="", show_default=False)
    _run(lambda: gate.confirm(message))


# ── Discovery Commands ───────────────────────────────────────────────────────


@main.command("detect")
@click.argument("root_path", required=False)
@click.option("--depth", default=None, type=int, help="Maximum scan depth (1-12)")
@click.option("--all", "import_all", is_flag=True, help="Import every new repository without asking")
def detect_command(root_path, depth, import_all):
    """Scan for git repositories and import the ones you confirm.

    In local mode ROOT_PATH defaults to your home directory.
    """
    orch = _orchestrator()
    try:
        if orch.mode is Mode.SSH:
            report = orch.connect_ssh(auto_import=False)
            if not report.connection.ssh_ok:
                _fail(f"SSH connection failed: {report.connection.stderr or 'unknown error'}")
        elif not root_path:
            root_path = default_detect_root()
        repos = orch.discover(root_path, depth)
    except (ActionValidationError, DetectError, DiscoveryInProgressError) as e:
        _fail(e)

    if not repos:
        click.echo("No repositories found.")
        return

    chosen = []
    for repo in repos:
        origin = repo.origin_url or "no origin"
        if import_all or click.confirm(f"Import {repo.path} ({origin})?", default=True):
            chosen.append(repo.path)

    if not chosen:
        click.echo("Nothing selected.")
        return

    try:
        imported = orch.import_discovered(chosen)
    except (ActionValidationError, DiscoveryInProgressError) as e:
        _fail(e)
    if not imported:
        click.echo("All selected repositories are already registered.")
        return
    for p in imported:
        click.echo(f"  Imported: {p.id} ({p.name})")


@main.group("ssh")
def ssh_group():
    """SSH commands."""
    pass


@ssh_group.command("connect")
@click.option("--no-import", is_flag=True, help="Only check the connection")
def ssh_connect_command(no_import):
    """Check the SSH connection and import remote repositories."""
    orch = _orchestrator()
    try:
        report = orch.connect_ssh(auto_import=not no_import)
    except DiscoveryInProgressError as e:
        _fail(e)

    conn = report.connection
    click.echo(f"SSH: {'ok' if conn.ssh_ok else 'failed'}")
    if conn.remote_git.ok:
        click.echo(f"  Remote git: {conn.remote_git.path} ({conn.remote_git.version})")
    if conn.stderr:
        click.echo(f"  {conn.stderr}", err=True)
    if report.notice:
        click.echo(report.notice)
    if not conn.ok:
        sys.exit(1)


@main.command("preflight")
def preflight_command():
    """Check that git and ssh are available."""
    result = _orchestrator().preflight()
    click.echo(f"Platform: {result.platform}")
    for name, check in (("git", result.git), ("ssh", result.ssh)):
        if check.ok:
            click.echo(f"  ✓ {name}: {check.path} ({check.version})")
        else:
            click.echo(f"  ✗ {name}: {check.error or 'not found'}")


@main.command("branches")
@click.argument("repo_url")
def branches_command(repo_url):
    """List remote branches of a repository URL."""
    try:
        result = _orchestrator().list_branches(repo_url)
    except ActionValidationError as e:
        _fail(e)
    if not result.ok:
        _fail(result.stderr or "git ls-remote failed")
    for branch in result.branches:
        click.echo(f"  {branch}")


# ── GitHub Commands ──────────────────────────────────────────────────────────


@main.group("github")
def github_group():
    """Browse GitHub repositories for repo URLs."""
    pass


@github_group.command("account")
@click.option("--username", default=None, help="GitHub username")
@click.option("--token", default=None, help="Personal access token")
def github_account_command(username, token):
    """Show or store the GitHub account. GITSHLC_GITHUB_* variables take precedence."""
    orch = _orchestrator()
    if username is not None or token is not None:
        account = orch.set_github_account(username, token)
    else:
        account = orch.github_account
    click.echo(f"Username: {account.username or '-'}")
    click.echo(f"Token: {'set' if account.token else 'not set'}")


def _list_github(orch: Orchestrator):
    try:
        return orch.list_github_repos()
    except (ActionValidationError, GitHubError) as e:
        _fail(e)


@github_group.command("repos")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def github_repos_command(json_output):
    """List repositories of the GitHub account, most recently updated first."""
    repos = _list_github(_orchestrator())
    if json_output:
        click.echo(json.dumps([_github_repo_dict(r) for r in repos], indent=2))
        return
    if not repos:
        click.echo("No repositories found.")
        return
    for repo in repos:
        private = " [private]" if repo.is_private else ""
        click.echo(f"  {repo.id}: {repo.full_name}{private}  {repo.clone_url}")


@github_group.command("use")
@click.argument("project_id")
@click.argument("repo_id", type=int)
@click.option("--env", "env_key", default=EnvKey.TEST.value, type=click.Choice([k.value for k in EnvKey]))
@click.option("--ssh-url", is_flag=True, help="Use the SSH clone URL")
def github_use_command(project_id, repo_id, env_key, ssh_url):
    """Set a project environment's repo URL from a GitHub repository."""
    orch = _orchestrator()
    _list_github(orch)
    try:
        project = orch.use_github_repo(project_id, env_key, repo_id, ssh_url)
    except ValueError as e:
        _fail(e)
    click.echo(f"{project.id} [{env_key}] repo: {project.env(EnvKey(env_key)).repo_url}")


# ── Import / Export Commands ─────────────────────────────────────────────────


@main.command("export")
@click.argument("output", type=click.File("w"), default="-")
def export_command(output):
    """Export projects and UI state as JSON."""
    json.dump(_orchestrator().export_documents(), output, indent=2)
    output.write("\n")


@main.command("import")
@click.argument("source", type=click.File("r"))
def import_command(source):
    """Replace projects (and UI state, if present) from an exported JSON file."""
    from gitshlc.core.documents import CONFIG_KEY, UI_KEY

    try:
        doc = json.load(source)
    except json.JSONDecodeError as e:
        _fail(f"invalid JSON: {e}")
    if not isinstance(doc, dict):
        _fail("invalid document")

    # A bare project-list document is accepted as well as an export bundle
    config_doc = doc.get(CONFIG_KEY, doc)
    count = _orchestrator().import_documents(config_doc, doc.get(UI_KEY))
    click.echo(f"Imported {count} projects")


# ── Dashboard Command ────────────────────────────────────────────────────────


@main.command("ui")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8787, type=int, help="Port to listen on")
def ui_command(host, port):
    """Serve the JSON API."""
    from gitshlc.web.app import run_server

    click.echo(f"Serving API at http://{host}:{port}")
    run_server(host=host, port=port)


# ── MCP Server Command ───────────────────────────────────────────────────────


@main.group("mcp")
def mcp_group():
    """MCP server commands."""
    pass


@mcp_group.command("serve")
def mcp_serve():
    """Start the MCP server (stdio transport)."""
    from gitshlc.mcp.server import mcp

    mcp.run(transport="stdio")


# ── Helpers ───────────────────────────────────────────────────────────────────


def _project_dict(project: Project) -> dict:
    return {
        "id": project.id,
        "name": project.name,
        "test": _env_dict(project.test),
        "deploy": _env_dict(project.deploy),
    }


def _env_dict(env: ProjectEnv) -> dict:
    return {
        "repo_url": env.repo_url,
        "branch": env.branch,
        "local_path": env.local_path,
        "remote_path": env.remote_path,
    }


def _github_repo_dict(repo) -> dict:
    return {
        "id": repo.id,
        "full_name": repo.full_name,
        "clone_url": repo.clone_url,
        "ssh_url": repo.ssh_url,
        "default_branch": repo.default_branch,
        "private": repo.is_private,
    }


if __name__ == "__main__":
    main()
