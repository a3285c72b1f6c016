"""Execution backend: runs pull/push/merge with git, locally or over SSH."""

import logging
import shlex
from dataclasses import replace
from pathlib import Path

from gitshlc.db.models import (
    ActionError,
    ActionKind,
    ActionOutcome,
    ActionRequest,
    BranchList,
    DiscoveredRepo,
    Mode,
    PreflightResult,
    Severity,
    SshConnectResult,
    SshParams,
    StepResult,
    ToolHints,
)
from gitshlc.integrations import git as git_mod
from gitshlc.integrations import ssh as ssh_mod
from gitshlc.integrations import tools

logger = logging.getLogger(__name__)


class BackendUnavailableError(Exception):
    """Raised when the execution backend cannot be reached at all."""


class _Failed(Exception):
    """Stops the step pipeline with a classified error."""

    def __init__(self, code: str, message: str, detail: str | None = None, severity: Severity = Severity.ERROR):
        super().__init__(message)
        self.error = ActionError(severity=severity, code=code, message=message, detail=detail)


class LocalRunner:
    def __init__(self, git: Path, path: Path):
        self.git_path = git
        self.path = path

    def git(self, *args: str) -> StepResult:
        return tools.run_capture(self.git_path, ["-C", str(self.path), *args])

    def current_branch(self) -> StepResult:
        # symbolic-ref also works on an unborn branch
        return self.git("symbolic-ref", "--short", "HEAD")


class SshRunner:
    def __init__(self, ssh: Path, params: SshParams, path: str):
        self.ssh = ssh
        self.params = params
        self.path = path

    def _in_repo(self, command: str) -> StepResult:
        return ssh_mod.ssh_run(self.ssh, self.params, f"cd {shlex.quote(self.path)} && {command}")

    def git(self, *args: str) -> StepResult:
        return self._in_repo("git " + " ".join(shlex.quote(a) for a in args))

    def current_branch(self) -> StepResult:
        return self._in_repo("(git symbolic-ref --short HEAD 2>/dev/null || git rev-parse --abbrev-ref HEAD)")


def _run_steps(req: ActionRequest, runner, steps: list[StepResult]) -> list[StepResult]:
    """Append each git step to `steps`. Raises _Failed on a blocking failure.

    Steps after a non-blocking failure still run, and every attempted step
    is kept in the trace. Returns the probe steps, whose failure does not
    count against the outcome.
    """
    remote = req.mode is Mode.SSH

    branch_step = runner.current_branch()
    steps.append(branch_step)
    if not branch_step.ok:
        raise _Failed("SSH-0201" if remote else "GIT-0100", "failed to get current branch", branch_step.stderr)
    current_branch = branch_step.stdout.strip()

    head_step = runner.git("rev-parse", "--verify", "HEAD")
    has_commits = head_step.ok
    steps.append(head_step)

    status_step = runner.git("status", "--porcelain", "--ignore-submodules")
    steps.append(status_step)
    if not status_step.ok:
        raise _Failed("SSH-0201" if remote else "GIT-0101", "git status failed", status_step.stderr)
    clean = not status_step.stdout.strip()

    message = (req.commit_message or "").strip()

    if req.action is not ActionKind.PUSH and not clean:
        stash_step = runner.git("stash", "--include-untracked")
        # stash may exit non-zero on permission noise after saving the changes
        if "Saved working directory" in stash_step.stdout:
            stash_step = replace(stash_step, ok=True)
        steps.append(stash_step)

    if req.action is ActionKind.PUSH and not clean:
        if current_branch != req.branch:
            raise _Failed(
                "GIT-0103",
                "working tree is dirty on a different branch",
                f"current_branch={current_branch} target_branch={req.branch}",
            )
        if not message:
            raise _Failed("GIT-0104", "push requires commitMessage when working tree is dirty")

        add_step = runner.git("add", "-A")
        steps.append(add_step)
        if not add_step.ok:
            raise _Failed("GIT-0105", "git add failed", add_step.stderr)

        commit_step = runner.git("commit", "-m", message)
        steps.append(commit_step)
        if not commit_step.ok:
            raise _Failed("GIT-0106", "git commit failed", commit_step.stderr)
        has_commits = True

    steps.append(runner.git("fetch", "origin"))
    # an unborn branch cannot be checked out; it is already the current one
    if has_commits or current_branch != req.branch:
        steps.append(runner.git("checkout", req.branch))

    # a first push needs at least one commit for the refspec to resolve
    if req.action is ActionKind.PUSH and not has_commits:
        if not message:
            raise _Failed("GIT-0107", "push requires commitMessage when repository has no commits")
        empty_step = runner.git("commit", "--allow-empty", "-m", message)
        steps.append(empty_step)
        if not empty_step.ok:
            raise _Failed("GIT-0108", "git commit --allow-empty failed", empty_step.stderr)

    if req.action is ActionKind.PULL:
        steps.append(runner.git("pull", "--ff-only", "origin", req.branch))
    elif req.action is ActionKind.PUSH:
        steps.append(runner.git("push", "origin", req.branch))
    elif req.action is ActionKind.MERGE:
        source = (req.merge_from_branch or "").strip()
        if not source:
            raise _Failed("CFG-0201" if remote else "CFG-0003", "mergeFromBranch is required for merge")
        steps.append(runner.git("fetch", "origin", source))
        steps.append(runner.git("merge", "--no-ff", f"origin/{source}" if remote else source))
        steps.append(runner.git("push", "origin", req.branch))

    return [head_step]


def _local_runner(req: ActionRequest) -> LocalRunner:
    git = tools.git_exe(req.tool_hints.git_path)
    if git is None:
        raise _Failed("GIT-0001", "git not found", severity=Severity.FATAL)

    lp = req.local_path.strip()
    if not lp:
        raise _Failed("FS-0100", "localPath is required")
    path = Path(lp)
    if not path.exists():
        raise _Failed("FS-0101", "localPath does not exist", str(path))
    if not path.is_dir():
        raise _Failed("FS-0101", "localPath is not a directory", str(path))
    if not git_mod.is_git_repo_dir(path):
        raise _Failed("FS-0102", "localPath is not a git repository", str(path))
    return LocalRunner(git, path)


def _ssh_runner(req: ActionRequest) -> SshRunner:
    ssh = tools.ssh_exe(req.tool_hints.ssh_path)
    if ssh is None:
        raise _Failed("SSH-0001", "ssh not found", severity=Severity.FATAL)
    if not ssh_mod.params_ok(req.ssh):
        raise _Failed("CFG-0302", "ssh host/user is required")
    remote_path = req.remote_path.strip()
    if not remote_path:
        raise _Failed("CFG-0303", "remotePath is required")
    return SshRunner(ssh, req.ssh, remote_path)


def run_action(req: ActionRequest) -> ActionOutcome:
    """Run one action. The outcome is ok only if every recorded step succeeded."""
    steps: list[StepResult] = []

    def outcome(ok: bool, error: ActionError | None) -> ActionOutcome:
        return ActionOutcome(
            ok=ok,
            env_key=req.env_key.value,
            action=req.action.value,
            steps=tuple(steps),
            error=error,
            mode=req.mode.value,
        )

    try:
        runner = _ssh_runner(req) if req.mode is Mode.SSH else _local_runner(req)
        probes = _run_steps(req, runner, steps)
    except _Failed as f:
        return outcome(False, f.error)

    if all(s.ok for s in steps if all(s is not p for p in probes)):
        return outcome(True, None)
    if req.mode is Mode.SSH:
        return outcome(False, ActionError(Severity.ERROR, "SSH-0200", "remote command failed"))
    return outcome(False, ActionError(Severity.ERROR, "GIT-0002", "git command failed"))


class GitBackend:
    """The boundary the orchestrator talks to, backed by local git and ssh processes."""

    def preflight(self, hints: ToolHints) -> PreflightResult:
        return tools.preflight(hints)

    def ssh_connect(self, ssh_path: str | None, params: SshParams) -> SshConnectResult:
        return ssh_mod.ssh_connect(ssh_path, params)

    def detect_local_repos(self, root_path: str, max_depth: int, git_hint: str | None = None) -> list[DiscoveredRepo]:
        return git_mod.detect_local_repos(root_path, max_depth, git_hint)

    def detect_remote_repos(
        self,
        root_path: str,
        max_depth: int,
        params: SshParams,
        hints: ToolHints,
        max_results: int,
    ) -> list[DiscoveredRepo]:
        return ssh_mod.detect_remote_repos(root_path, max_depth, params, hints.ssh_path, max_results)

    def list_branches(self, repo_url: str, git_hint: str | None = None) -> BranchList:
        return git_mod.list_branches(repo_url, git_hint)

    def run_action(self, request: ActionRequest) -> ActionOutcome:
        return run_action(request)

    def init_local_repo(
        self,
        local_path: str,
        git_hint: str | None = None,
        repo_url: str | None = None,
        default_branch: str | None = None,
    ) -> ActionOutcome:
        return git_mod.init_local_repo(local_path, git_hint, repo_url, default_branch)
