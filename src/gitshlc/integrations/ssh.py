"""SSH transport: connection checks, remote commands and remote repository discovery."""

import logging
import shlex
from pathlib import Path

from gitshlc.db.models import DiscoveredRepo, SshConnectResult, SshParams, StepResult, ToolCheck
from gitshlc.integrations.git import DetectError
from gitshlc.integrations.tools import first_message, run_capture, ssh_exe

logger = logging.getLogger(__name__)

PING_TOKEN = "GITSHLC_SSH_OK"

FIND_GIT_SCRIPT = (
    "if command -v git >/dev/null 2>&1; then command -v git; "
    "elif [ -x /usr/bin/git ]; then echo /usr/bin/git; "
    "elif [ -x /usr/local/bin/git ]; then echo /usr/local/bin/git; "
    "elif [ -x /bin/git ]; then echo /bin/git; "
    "else echo; fi"
)

DETECT_SCRIPT = """
ROOT={root};
MAXD={max_depth};
MAXR={max_repos};

if [ -z "$ROOT" ]; then
  ROOT="$HOME";
fi

if ! command -v find >/dev/null 2>&1; then
  echo "find not found" >&2
  exit 4
fi

GIT_BIN=""
if command -v git >/dev/null 2>&1; then
  GIT_BIN="$(command -v git)"
fi

if [ -z "$GIT_BIN" ]; then
  echo "git not found on remote" >&2
  exit 5
fi

count=0
find "$ROOT" -maxdepth "$MAXD" -type d -name .git 2>/dev/null | while IFS= read -r g; do
  repo="${{g%/.git}}"
  name="$(basename "$repo")"
  origin="$("$GIT_BIN" -C "$repo" remote get-url origin 2>/dev/null || true)"
  printf '%s\\t%s\\t%s\\n' "$repo" "$origin" "$name"
  count=$((count+1))
  if [ "$count" -ge "$MAXR" ]; then
    break
  fi
done
"""


def params_ok(params: SshParams) -> bool:
    return bool(params.host.strip() and params.user.strip())


def ssh_args(params: SshParams, remote_cmd: str) -> list[str]:
    """Non-interactive ssh arguments: fail fast rather than prompt."""
    args = [
        "-p", str(params.port or 22),
        "-o", "BatchMode=yes",
        "-o", "ConnectTimeout=5",
        "-o", "ConnectionAttempts=1",
    ]
    if params.key_path.strip():
        args += ["-i", params.key_path.strip()]
    args += [f"{params.user.strip()}@{params.host.strip()}", "--", remote_cmd]
    return args


def ssh_run(ssh: Path, params: SshParams, remote_cmd: str) -> StepResult:
    return run_capture(ssh, ssh_args(params, remote_cmd))


def sh_c(script: str) -> str:
    return f"sh -c {shlex.quote(script)}"


def detect_remote_git(ssh: Path, params: SshParams) -> ToolCheck:
    """Find a usable git on the remote, falling back to standard locations.

    Non-interactive shells often have a thin PATH.
    """
    find = ssh_run(ssh, params, sh_c(FIND_GIT_SCRIPT))
    if not find.ok:
        return ToolCheck(found=False, ok=False, error=first_message(find, ""))

    lines = find.stdout.splitlines()
    path = lines[0].strip() if lines else ""
    if not path:
        return ToolCheck(found=False, ok=False, error="git not found on remote (PATH or standard locations)")

    ver = ssh_run(ssh, params, f"{shlex.quote(path)} --version")
    if not ver.ok:
        return ToolCheck(found=True, path=path, ok=False, error=first_message(ver, ""))
    return ToolCheck(found=True, path=path, version=ver.stdout.strip(), ok=True)


def ssh_connect(ssh_hint: str | None, params: SshParams) -> SshConnectResult:
    """Check SSH reachability, then remote git. `ok` means both are usable."""
    ssh = ssh_exe(ssh_hint)
    if ssh is None:
        return SshConnectResult(ok=False, ssh_ok=False, stderr="ssh not found. preflight required")
    if not params_ok(params):
        return SshConnectResult(ok=False, ssh_ok=False, stderr="host/user is required")

    ping = ssh_run(ssh, params, f"echo {PING_TOKEN}")
    if not (ping.ok and PING_TOKEN in ping.stdout):
        logger.info("SSH connection to %s@%s failed", params.user, params.host)
        return SshConnectResult(ok=False, ssh_ok=False, stderr=first_message(ping, ""))

    remote_git = detect_remote_git(ssh, params)
    return SshConnectResult(
        ok=remote_git.ok,
        ssh_ok=True,
        stderr=None if remote_git.ok else remote_git.error,
        remote_git=remote_git,
    )


def parse_detect_output(output: str) -> list[DiscoveredRepo]:
    """Parse `path<TAB>origin<TAB>name` lines, keeping the first of each path."""
    seen = set()
    repos = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.strip().split("\t", 2)
        path = parts[0].strip()
        if not path or path in seen:
            continue
        seen.add(path)
        origin = parts[1].strip() if len(parts) > 1 else ""
        name = parts[2].strip() if len(parts) > 2 else ""
        repos.append(
            DiscoveredRepo(
                path=path,
                name=name or None,
                origin_url=origin or None,
                has_remote=bool(origin),
            )
        )
    return repos


def detect_remote_repos(
    root_path: str,
    max_depth: int,
    params: SshParams,
    ssh_hint: str | None = None,
    max_repos: int = 50,
) -> list[DiscoveredRepo]:
    """Scan the remote host for repositories. An empty root means the remote $HOME."""
    ssh = ssh_exe(ssh_hint)
    if ssh is None:
        raise DetectError("ssh not found. Run preflight and set the ssh path if needed.")
    if not params_ok(params):
        raise DetectError("ssh.host / ssh.user is required")

    script = DETECT_SCRIPT.format(
        root=shlex.quote((root_path or "").strip()),
        max_depth=max(1, min(30, int(max_depth))),
        max_repos=max(1, min(5000, int(max_repos))),
    )
    step = ssh_run(ssh, params, sh_c(script))
    if not step.ok:
        raise DetectError(f"remote detect failed: exit={step.exit_code} stderr={step.stderr}")

    repos = parse_detect_output(step.stdout)
    logger.info("Detected %d remote repositories on %s", len(repos), params.host)
    return repos
