"""Local git operations: repository discovery, branch listing and init."""

import logging
import os
from pathlib import Path

from gitshlc.db.models import (
    ActionError,
    ActionOutcome,
    BranchList,
    DiscoveredRepo,
    Severity,
    StepResult,
)
from gitshlc.integrations.tools import first_message, git_exe, normalize_path_input, run_capture

logger = logging.getLogger(__name__)

SKIP_DIRS = {".git", "node_modules", "target", "dist", "build", ".venv", ".idea", ".vscode"}


class GitError(Exception):
    """Raised when a git command fails."""


class DetectError(Exception):
    """Raised when a repository scan cannot be performed."""


def run_git(git: Path, args: list[str], cwd: str | Path | None = None) -> str:
    """Run a git command and return stdout. Raises GitError on failure."""
    step = run_capture(git, args, cwd)
    if not step.ok:
        raise GitError(f"git {' '.join(args)} failed: {first_message(step)}")
    return step.stdout.strip()


def is_git_repo_dir(path: Path) -> bool:
    # .git is a file inside worktrees and submodules
    return (path / ".git").exists()


def remote_origin_url(git: Path, repo_dir: Path) -> str | None:
    try:
        url = run_git(git, ["-C", str(repo_dir), "remote", "get-url", "origin"])
    except GitError:
        return None
    return url or None


def _walk(directory: Path, depth: int, max_depth: int, out: list[Path]) -> None:
    if depth > max_depth:
        return
    try:
        entries = list(os.scandir(directory))
    except OSError:
        return

    for entry in entries:
        try:
            if not entry.is_dir(follow_symlinks=False):
                continue
        except OSError:
            continue
        if entry.name in SKIP_DIRS:
            continue

        path = Path(entry.path)
        if is_git_repo_dir(path):
            out.append(path)
            continue
        _walk(path, depth + 1, max_depth, out)


def detect_local_repos(root_path: str, max_depth: int, git_hint: str | None = None) -> list[DiscoveredRepo]:
    """Find git repositories under `root_path`, not descending into repositories."""
    root_text = normalize_path_input(root_path)
    if not root_text:
        raise DetectError("root_path is empty")

    root = Path(root_text)
    if not root.exists():
        raise DetectError(f"root_path does not exist: {root}")
    if not root.is_dir():
        raise DetectError(f"root_path is not a directory: {root}")

    depth = max(1, min(50, int(max_depth)))
    git = git_exe(git_hint)

    found: list[Path] = []
    if is_git_repo_dir(root):
        found.append(root)
    else:
        _walk(root, 0, depth, found)

    repos = []
    for repo_dir in sorted(set(found)):
        origin = remote_origin_url(git, repo_dir) if git else None
        repos.append(
            DiscoveredRepo(
                path=str(repo_dir),
                name=repo_dir.name or None,
                origin_url=origin,
                has_remote=origin is not None,
            )
        )
    logger.info("Detected %d local repositories under %s", len(repos), root)
    return repos


def parse_ls_remote_heads(output: str) -> list[str]:
    """Branch names from `git ls-remote --heads` output, sorted and unique."""
    branches = set()
    for line in output.splitlines():
        _, sep, ref = line.partition("\t")
        if not sep or not ref.startswith("refs/heads/"):
            continue
        name = ref[len("refs/heads/"):].strip()
        if name:
            branches.add(name)
    return sorted(branches)


def list_branches(repo_url: str, git_hint: str | None = None) -> BranchList:
    git = git_exe(git_hint)
    if git is None:
        return BranchList(ok=False, stderr="git not found")

    step = run_capture(git, ["ls-remote", "--heads", repo_url])
    if not step.ok:
        return BranchList(ok=False, stderr=step.stderr if step.stderr.strip() else step.stdout)
    return BranchList(ok=True, branches=parse_ls_remote_heads(step.stdout))


def _init_outcome(ok: bool, steps: list[StepResult], error: ActionError | None) -> ActionOutcome:
    return ActionOutcome(ok=ok, env_key="init", action="init", steps=tuple(steps), error=error, mode="local")


def init_local_repo(
    local_path: str,
    git_hint: str | None = None,
    repo_url: str | None = None,
    default_branch: str | None = None,
) -> ActionOutcome:
    """Create and initialize a local repository if it is not one already.

    Existing repositories are left untouched and reported with an INFO
    error so callers can tell "nothing to do" from "initialized".
    """
    steps: list[StepResult] = []

    git = git_exe(git_hint)
    if git is None:
        return _init_outcome(False, steps, ActionError(
            Severity.FATAL, "GIT-0001", "git not found. Run preflight and set the git path if needed."
        ))

    lp = (local_path or "").strip()
    if not lp:
        return _init_outcome(False, steps, ActionError(Severity.ERROR, "GIT-0401", "localPath is required"))

    directory = Path(lp)
    if not directory.exists():
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            steps.append(StepResult(cmd=f"mkdir -p {lp}", exit_code=None, stderr=str(e), ok=False))
            return _init_outcome(False, steps, ActionError(Severity.ERROR, "GIT-0402", "failed to create directory"))
        steps.append(StepResult(cmd=f"mkdir -p {lp}", exit_code=0, ok=True))

    if (directory / ".git").exists():
        steps.append(StepResult(cmd=f"[skip] already initialized: {lp}", cwd=str(directory), exit_code=0, ok=True))
        return _init_outcome(True, steps, ActionError(
            Severity.INFO, "GIT-0403", ".git already exists (already initialized)"
        ))

    steps.append(run_capture(git, ["init"], directory))

    # symbolic-ref works on every git version, unlike `init -b`
    branch = (default_branch or "main").strip()
    if branch:
        steps.append(run_capture(git, ["symbolic-ref", "HEAD", f"refs/heads/{branch}"], directory))

    url = (repo_url or "").strip()
    if url:
        remotes = run_capture(git, ["remote"], directory)
        has_origin = remotes.ok and any(line.strip() == "origin" for line in remotes.stdout.splitlines())
        steps.append(remotes)
        verb = "set-url" if has_origin else "add"
        steps.append(run_capture(git, ["remote", verb, "origin", url], directory))

    ok = all(s.ok for s in steps)
    error = None if ok else ActionError(Severity.ERROR, "GIT-0499", "init failed (see steps)")
    return _init_outcome(ok, steps, error)
