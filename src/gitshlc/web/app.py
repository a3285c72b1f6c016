"""JSON API for gitshlc."""

import uvicorn
from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from gitshlc.config import Config, get_config
from gitshlc.core.actions import ActionInProgressError, ActionValidationError
from gitshlc.core.discovery import DiscoveryInProgressError
from gitshlc.core.orchestrator import Orchestrator
from gitshlc.db.models import EnvKey, Mode, Project, ProjectEnv
from gitshlc.integrations.git import DetectError
from gitshlc.integrations.github import GitHubError


def _orch(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def _error(message, status_code: int = 400) -> JSONResponse:
    return JSONResponse({"error": str(message)}, status_code=status_code)


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


# ── Handlers ──────────────────────────────────────────────────────────────────


async def api_list_projects(request: Request):
    orch = _orch(request)
    show_all = request.query_params.get("all") in ("1", "true")
    projects = orch.projects if show_all else orch.visible_projects()
    return JSONResponse([_project_dict(p) for p in projects])


async def api_get_project(request: Request):
    project = _orch(request).find_project(request.path_params["project_id"])
    if not project:
        return _error("Project not found", 404)
    return JSONResponse(_project_dict(project))


async def api_add_project(request: Request):
    body = await _json_body(request)
    try:
        project = await run_in_threadpool(
            _orch(request).add_project, _project_from_body(body), bool(body.get("auto_init", True))
        )
    except ValueError as e:
        return _error(e)
    return JSONResponse(_project_dict(project), status_code=201)


async def api_replace_project(request: Request):
    orch = _orch(request)
    project_id = request.path_params["project_id"]
    if not orch.find_project(project_id):
        return _error("Project not found", 404)

    body = await _json_body(request)
    body["id"] = project_id
    try:
        project = await run_in_threadpool(
            orch.replace_project, _project_from_body(body), bool(body.get("auto_init", True))
        )
    except ValueError as e:
        return _error(e)
    return JSONResponse(_project_dict(project))


async def api_delete_project(request: Request):
    try:
        project = _orch(request).remove_project(request.path_params["project_id"])
    except ValueError as e:
        return _error(e, 404)
    return JSONResponse({"deleted": project.id})


async def api_workspace(request: Request):
    return JSONResponse(_workspace_dict(_orch(request)))


async def api_set_mode(request: Request):
    body = await _json_body(request)
    try:
        mode = Mode(body.get("mode"))
    except ValueError:
        return _error("mode must be 'local' or 'ssh'")
    orch = _orch(request)
    orch.set_mode(mode)
    return JSONResponse(_workspace_dict(orch))


async def api_pin(request: Request):
    orch = _orch(request)
    try:
        orch.pin(request.path_params["project_id"])
    except ValueError as e:
        return _error(e, 404)
    return JSONResponse(_workspace_dict(orch))


async def api_unpin(request: Request):
    orch = _orch(request)
    orch.unpin(request.path_params["project_id"])
    return JSONResponse(_workspace_dict(orch))


async def api_select(request: Request):
    orch = _orch(request)
    try:
        orch.select(request.path_params["project_id"])
    except ValueError as e:
        return _error(e, 404)
    return JSONResponse(_workspace_dict(orch))


async def api_set_env(request: Request):
    orch = _orch(request)
    project_id = request.path_params["project_id"]
    if not orch.find_project(project_id):
        return _error("Project not found", 404)
    body = await _json_body(request)
    try:
        orch.set_selected_env(project_id, EnvKey(body.get("env_key")))
    except ValueError:
        return _error("env_key must be 'test' or 'deploy'")
    return JSONResponse(_workspace_dict(orch))


async def api_run_action(request: Request):
    orch = _orch(request)
    project_id = request.path_params["project_id"]
    if not orch.find_project(project_id):
        return _error("Project not found", 404)

    body = await _json_body(request)
    try:
        outcome = await run_in_threadpool(
            orch.run_action,
            project_id,
            request.path_params["action"],
            body.get("commit_message"),
            body.get("env_key"),
        )
    except ActionValidationError as e:
        return _error(e)
    except ActionInProgressError as e:
        return _error(e, 409)
    return JSONResponse(_outcome_dict(outcome))


async def api_last_action(request: Request):
    last = _orch(request).last_action
    if last is None:
        return JSONResponse(None)
    return JSONResponse(
        {
            "project_id": last.project_id,
            "env_key": last.env_key.value,
            "outcome": _outcome_dict(last.outcome),
        }
    )


async def api_preflight(request: Request):
    result = await run_in_threadpool(_orch(request).preflight)
    return JSONResponse(
        {
            "platform": result.platform,
            "git": _tool_dict(result.git),
            "ssh": _tool_dict(result.ssh),
        }
    )


async def api_ssh_connect(request: Request):
    body = await _json_body(request)
    try:
        report = await run_in_threadpool(_orch(request).connect_ssh, bool(body.get("auto_import", True)))
    except DiscoveryInProgressError as e:
        return _error(e, 409)
    conn = report.connection
    return JSONResponse(
        {
            "ok": conn.ok,
            "ssh_ok": conn.ssh_ok,
            "stderr": conn.stderr,
            "remote_git": _tool_dict(conn.remote_git),
            "imported": [_project_dict(p) for p in report.imported],
            "notice": report.notice,
        }
    )


async def api_discover(request: Request):
    body = await _json_body(request)
    try:
        repos = await run_in_threadpool(
            _orch(request).discover, body.get("root_path"), body.get("max_depth")
        )
    except (ActionValidationError, DetectError) as e:
        return _error(e)
    except DiscoveryInProgressError as e:
        return _error(e, 409)
    return JSONResponse([_repo_dict(r) for r in repos])


async def api_import_discovered(request: Request):
    body = await _json_body(request)
    paths = body.get("paths")
    if not isinstance(paths, list):
        return _error("paths must be a list")
    try:
        imported = _orch(request).import_discovered([str(p) for p in paths])
    except ActionValidationError as e:
        return _error(e)
    except DiscoveryInProgressError as e:
        return _error(e, 409)
    return JSONResponse([_project_dict(p) for p in imported])


async def api_branches(request: Request):
    repo_url = request.query_params.get("repo_url", "")
    try:
        result = await run_in_threadpool(_orch(request).list_branches, repo_url)
    except ActionValidationError as e:
        return _error(e)
    return JSONResponse({"ok": result.ok, "branches": result.branches, "stderr": result.stderr})


async def api_github_account(request: Request):
    return JSONResponse(_github_account_dict(_orch(request).github_account))


async def api_set_github_account(request: Request):
    body = await _json_body(request)
    username = body.get("username")
    token = body.get("token")
    account = _orch(request).set_github_account(
        None if username is None else str(username),
        None if token is None else str(token),
    )
    return JSONResponse(_github_account_dict(account))


async def api_github_repos(request: Request):
    try:
        repos = await run_in_threadpool(_orch(request).list_github_repos)
    except ActionValidationError as e:
        return _error(e)
    except GitHubError as e:
        return _error(e, 502)
    return JSONResponse([_github_repo_dict(r) for r in repos])


async def api_use_github_repo(request: Request):
    orch = _orch(request)
    project_id = request.path_params["project_id"]
    if not orch.find_project(project_id):
        return _error("Project not found", 404)

    body = await _json_body(request)
    try:
        project = orch.use_github_repo(
            project_id,
            EnvKey(body.get("env_key") or EnvKey.TEST.value),
            int(body.get("repo_id")),
            bool(body.get("use_ssh_url", False)),
        )
    except (TypeError, ValueError) as e:
        return _error(e)
    return JSONResponse(_project_dict(project))


async def api_export(request: Request):
    return JSONResponse(_orch(request).export_documents())


# ── Serialization ─────────────────────────────────────────────────────────────


def _env_dict(env: ProjectEnv) -> dict:
    return {
        "repo_url": env.repo_url,
        "branch": env.branch,
        "local_path": env.local_path,
        "remote_path": env.remote_path,
    }


def _project_dict(project: Project) -> dict:
    return {
        "id": project.id,
        "name": project.name,
        "test": _env_dict(project.test),
        "deploy": _env_dict(project.deploy),
    }


def _project_from_body(body: dict) -> Project:
    def env(raw) -> ProjectEnv:
        raw = raw if isinstance(raw, dict) else {}
        return ProjectEnv(
            repo_url=str(raw.get("repo_url") or ""),
            branch=str(raw.get("branch") or ""),
            local_path=str(raw.get("local_path") or ""),
            remote_path=str(raw.get("remote_path") or ""),
        )

    project = Project(name=str(body.get("name") or ""), test=env(body.get("test")), deploy=env(body.get("deploy")))
    if body.get("id"):
        project.id = str(body["id"])
    return project


def _workspace_dict(orch: Orchestrator) -> dict:
    return {
        "mode": orch.mode.value,
        "pinned_project_ids": [p.id for p in orch.pinned_projects()],
        "selected_project_id": orch.selected_project_id,
        "selected_env_by_project": {k: v.value for k, v in orch.ui_state().selected_env_by_project.items()},
        "action_state": orch.executor.state.value,
    }


def _outcome_dict(outcome) -> dict:
    error = outcome.error
    return {
        "ok": outcome.ok,
        "env_key": outcome.env_key,
        "action": outcome.action,
        "mode": outcome.mode,
        "steps": [
            {
                "cmd": s.cmd,
                "cwd": s.cwd,
                "exit_code": s.exit_code,
                "stdout": s.stdout,
                "stderr": s.stderr,
                "ok": s.ok,
            }
            for s in outcome.steps
        ],
        "error": None
        if error is None
        else {
            "severity": error.severity.value,
            "code": error.code,
            "message": error.message,
            "detail": error.detail,
            "origin": error.origin.value,
        },
    }


def _tool_dict(check) -> dict:
    return {
        "found": check.found,
        "path": str(check.path) if check.path else None,
        "version": check.version,
        "ok": check.ok,
        "error": check.error,
    }


def _repo_dict(repo) -> dict:
    return {
        "path": repo.path,
        "name": repo.name,
        "origin_url": repo.origin_url,
        "has_remote": repo.has_remote,
    }


def _github_account_dict(account) -> dict:
    return {"username": account.username, "token_set": bool(account.token)}


def _github_repo_dict(repo) -> dict:
    return {
        "id": repo.id,
        "full_name": repo.full_name,
        "clone_url": repo.clone_url,
        "ssh_url": repo.ssh_url,
        "default_branch": repo.default_branch,
        "updated_at": repo.updated_at,
        "stargazers_count": repo.stargazers_count,
        "private": repo.is_private,
    }


# ── App ───────────────────────────────────────────────────────────────────────


def create_app(config: Config | None = None, backend=None, github=None) -> Starlette:
    routes = [
        Route("/api/projects", api_list_projects),
        Route("/api/projects", api_add_project, methods=["POST"]),
        Route("/api/projects/{project_id}", api_get_project),
        Route("/api/projects/{project_id}", api_replace_project, methods=["PUT"]),
        Route("/api/projects/{project_id}", api_delete_project, methods=["DELETE"]),
        Route("/api/projects/{project_id}/pin", api_pin, methods=["POST"]),
        Route("/api/projects/{project_id}/unpin", api_unpin, methods=["POST"]),
        Route("/api/projects/{project_id}/select", api_select, methods=["POST"]),
        Route("/api/projects/{project_id}/env", api_set_env, methods=["POST"]),
        Route("/api/projects/{project_id}/actions/{action}", api_run_action, methods=["POST"]),
        Route("/api/projects/{project_id}/github-repo", api_use_github_repo, methods=["POST"]),
        Route("/api/workspace", api_workspace),
        Route("/api/mode", api_set_mode, methods=["POST"]),
        Route("/api/actions/last", api_last_action),
        Route("/api/preflight", api_preflight),
        Route("/api/ssh/connect", api_ssh_connect, methods=["POST"]),
        Route("/api/discover", api_discover, methods=["POST"]),
        Route("/api/discover/import", api_import_discovered, methods=["POST"]),
        Route("/api/branches", api_branches),
        Route("/api/github/account", api_github_account),
        Route("/api/github/account", api_set_github_account, methods=["PUT"]),
        Route("/api/github/repos", api_github_repos),
        Route("/api/export", api_export),
    ]
    app = Starlette(routes=routes)
    app.state.orchestrator = Orchestrator(config or get_config(), backend, github)
    return app


def run_server(host: str = "127.0.0.1", port: int = 8787):
    app = create_app()
    uvicorn.run(app, host=host, port=port)
