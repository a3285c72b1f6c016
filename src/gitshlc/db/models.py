"""Data models for gitshlc."""

import random
import time
from dataclasses import dataclass, field, replace
from enum import Enum


class Mode(str, Enum):
    LOCAL = "local"
    SSH = "ssh"


class EnvKey(str, Enum):
    TEST = "test"
    DEPLOY = "deploy"

    @property
    def other(self) -> "EnvKey":
        if self is EnvKey.TEST:
            return EnvKey.DEPLOY
        return EnvKey.TEST


class ActionKind(str, Enum):
    PULL = "pull"
    PUSH = "push"
    MERGE = "merge"


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    FATAL = "FATAL"


class ErrorOrigin(str, Enum):
    """Who produced an ActionError: the execution backend or this process."""

    BACKEND = "backend"
    LOCAL = "local"


class ActionState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def new_project_id() -> str:
    return f"p_{int(time.time() * 1000):x}_{random.getrandbits(48):012x}"


@dataclass
class ProjectEnv:
    repo_url: str = ""
    branch: str = "main"
    local_path: str = ""
    remote_path: str = ""

    def path_for(self, mode: Mode) -> str:
        if mode is Mode.LOCAL:
            return self.local_path
        return self.remote_path


@dataclass
class Project:
    id: str = field(default_factory=new_project_id)
    name: str = ""
    test: ProjectEnv = field(default_factory=ProjectEnv)
    deploy: ProjectEnv = field(default_factory=ProjectEnv)

    def env(self, key: EnvKey) -> ProjectEnv:
        if key is EnvKey.TEST:
            return self.test
        return self.deploy

    def with_env(self, key: EnvKey, env: ProjectEnv) -> "Project":
        if key is EnvKey.TEST:
            return replace(self, test=env)
        return replace(self, deploy=env)


@dataclass(frozen=True)
class StepResult:
    cmd: str
    cwd: str | None = None
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    ok: bool = False


@dataclass(frozen=True)
class ActionError:
    severity: Severity
    code: str
    message: str
    detail: str | None = None
    origin: ErrorOrigin = ErrorOrigin.BACKEND


@dataclass(frozen=True)
class ActionOutcome:
    ok: bool
    env_key: str
    action: str
    steps: tuple[StepResult, ...] = ()
    error: ActionError | None = None
    mode: str | None = None


@dataclass
class DiscoveredRepo:
    path: str
    name: str | None = None
    origin_url: str | None = None
    has_remote: bool | None = None


@dataclass
class ToolCheck:
    found: bool = False
    path: str | None = None
    version: str | None = None
    ok: bool = False
    error: str | None = None


@dataclass
class PreflightResult:
    platform: str
    git: ToolCheck
    ssh: ToolCheck


@dataclass
class SshConnectResult:
    ok: bool
    ssh_ok: bool
    stderr: str | None = None
    remote_git: ToolCheck = field(
        default_factory=lambda: ToolCheck(error="remote git not checked")
    )


@dataclass
class BranchList:
    ok: bool
    branches: list[str] = field(default_factory=list)
    stderr: str | None = None


@dataclass(frozen=True)
class ToolHints:
    git_path: str = ""
    ssh_path: str = ""


@dataclass(frozen=True)
class SshParams:
    host: str = ""
    user: str = ""
    port: int = 22
    key_path: str = ""


@dataclass(frozen=True)
class ActionRequest:
    mode: Mode
    env_key: EnvKey
    action: ActionKind
    local_path: str
    remote_path: str
    branch: str
    tool_hints: ToolHints
    ssh: SshParams
    merge_from_branch: str | None = None
    commit_message: str | None = None


@dataclass
class UiState:
    mode: Mode = Mode.SSH
    pinned_project_ids: list[str] = field(default_factory=list)
    selected_project_id: str | None = None
    selected_env_by_project: dict[str, EnvKey] = field(default_factory=dict)


@dataclass(frozen=True)
class GitHubAccount:
    username: str = ""
    token: str = ""


@dataclass
class GitHubRepo:
    id: int
    full_name: str = ""
    clone_url: str = ""
    ssh_url: str = ""
    default_branch: str = ""
    updated_at: str = ""
    stargazers_count: int = 0
    is_private: bool = False
