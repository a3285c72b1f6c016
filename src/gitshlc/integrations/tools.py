"""Locating git/ssh executables and running them with captured output."""

import os
import platform
import shutil
import subprocess
from pathlib import Path

from gitshlc.db.models import PreflightResult, StepResult, ToolCheck, ToolHints

GIT_KNOWN_PATHS_WINDOWS = [
    r"C:\Program Files\Git\cmd\git.exe",
    r"C:\Program Files\Git\bin\git.exe",
    r"C:\Program Files (x86)\Git\cmd\git.exe",
    r"C:\Program Files (x86)\Git\bin\git.exe",
]
SSH_KNOWN_PATHS_WINDOWS = [r"C:\Windows\System32\OpenSSH\ssh.exe"]


def is_windows() -> bool:
    return os.name == "nt"


def platform_name() -> str:
    return platform.system().lower()


def _looks_like_path(s: str) -> bool:
    return "/" in s or "\\" in s or ":" in s


def strip_wrapping_quotes(s: str) -> str:
    t = (s or "").strip()
    if len(t) >= 2 and t[0] == t[-1] and t[0] in ("'", '"'):
        return t[1:-1].strip()
    return t


def normalize_path_input(s: str) -> str:
    """Strip wrapping quotes and expand a leading ~ from user-typed paths."""
    t = strip_wrapping_quotes(s)
    if t == "~" or t.startswith("~/") or t.startswith("~\\"):
        return os.path.expanduser(t)
    return t


def default_detect_root() -> str:
    home = Path.home()
    if home.is_dir():
        return str(home)
    return str(Path.cwd())


def resolve_executable(explicit: str | None, base_name: str, known_paths: list[str] | None = None) -> Path | None:
    """Find an executable from an explicit hint, known install paths, then PATH.

    A hint may be a file, a directory containing the tool, or a bare name
    to look up on PATH.
    """
    hint = (explicit or "").strip()
    if hint:
        if _looks_like_path(hint):
            p = Path(hint)
            if p.is_file():
                return p
            if p.is_dir():
                for name in (base_name, f"{base_name}.exe"):
                    candidate = p / name
                    if candidate.is_file():
                        return candidate
        elif found := shutil.which(hint):
            return Path(found)

    for kp in known_paths or []:
        p = Path(kp)
        if p.is_file():
            return p

    found = shutil.which(base_name)
    return Path(found) if found else None


def git_exe(hint: str | None) -> Path | None:
    return resolve_executable(hint, "git", GIT_KNOWN_PATHS_WINDOWS if is_windows() else [])


def ssh_exe(hint: str | None) -> Path | None:
    return resolve_executable(hint, "ssh", SSH_KNOWN_PATHS_WINDOWS if is_windows() else [])


def run_capture(exe: str | Path, args: list[str], cwd: str | Path | None = None) -> StepResult:
    """Run a command to completion and record it as a step.

    Stdin is closed and git terminal prompts are disabled so that a
    credential request fails immediately instead of hanging.
    """
    cmd_text = " ".join([str(exe), *args])
    cwd_text = str(cwd) if cwd is not None else None
    try:
        proc = subprocess.run(
            [str(exe), *args],
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
        )
    except OSError as e:
        return StepResult(cmd=cmd_text, cwd=cwd_text, exit_code=None, stderr=str(e), ok=False)

    return StepResult(
        cmd=cmd_text,
        cwd=cwd_text,
        exit_code=proc.returncode,
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
        ok=proc.returncode == 0,
    )


def first_message(step: StepResult, fallback: str = "command failed") -> str:
    """Prefer stderr, then stdout, for a human-readable failure message."""
    if step.stderr.strip():
        return step.stderr.strip()
    if step.stdout.strip():
        return step.stdout.strip()
    return fallback


def check_tool(explicit: str | None, base_name: str, known_paths: list[str], version_args: list[str]) -> ToolCheck:
    exe = resolve_executable(explicit, base_name, known_paths)
    if exe is None:
        return ToolCheck(found=False, ok=False, error=f"{base_name} not found")

    step = run_capture(exe, version_args)
    # ssh -V prints its version on stderr
    version = step.stdout.strip() or step.stderr.strip() or None
    return ToolCheck(
        found=True,
        path=str(exe),
        version=version,
        ok=step.ok,
        error=None if step.ok else first_message(step),
    )


def preflight(hints: ToolHints) -> PreflightResult:
    """Probe for git and ssh. Never raises; problems are reported per tool."""
    windows = is_windows()
    return PreflightResult(
        platform=platform_name(),
        git=check_tool(hints.git_path, "git", GIT_KNOWN_PATHS_WINDOWS if windows else [], ["--version"]),
        ssh=check_tool(hints.ssh_path, "ssh", SSH_KNOWN_PATHS_WINDOWS if windows else [], ["-V"]),
    )
