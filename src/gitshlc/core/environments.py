"""Environment resolution: which env of a project is visible and what to run it with."""

from dataclasses import dataclass

from gitshlc.db.models import ActionKind, EnvKey, Mode, Project


@dataclass(frozen=True)
class ResolvedEnv:
    env_key: EnvKey
    branch: str
    local_path: str
    remote_path: str
    repo_url: str
    merge_from_branch: str | None = None


def env_is_visible(project: Project, env_key: EnvKey, mode: Mode) -> bool:
    return bool((project.env(env_key).path_for(mode) or "").strip())


def is_visible(project: Project, mode: Mode) -> bool:
    """A project is visible when either environment has a path for `mode`."""
    return any(env_is_visible(project, key, mode) for key in EnvKey)


def visible_envs(project: Project, mode: Mode) -> list[EnvKey]:
    return [key for key in EnvKey if env_is_visible(project, key, mode)]


def choose_env(project: Project, mode: Mode, preferred: EnvKey | None = None) -> EnvKey | None:
    """Pick the env to act on: the preferred one if visible, else the first visible one."""
    envs = visible_envs(project, mode)
    if preferred is not None and preferred in envs:
        return preferred
    return envs[0] if envs else None


def resolve(
    project: Project,
    env_key: EnvKey,
    mode: Mode,
    action: ActionKind | None = None,
) -> ResolvedEnv:
    """Project an environment into execution parameters.

    A merge promotes between environments, so its source is the other
    env's branch. That is only defined when both envs are locally
    addressable, so under SSH mode the merge source stays None.
    """
    env = project.env(env_key)
    merge_from = None
    if action is ActionKind.MERGE and mode is Mode.LOCAL:
        merge_from = project.env(env_key.other).branch or ""

    return ResolvedEnv(
        env_key=env_key,
        branch=env.branch or "",
        local_path=env.local_path or "",
        remote_path=env.remote_path or "",
        repo_url=env.repo_url or "",
        merge_from_branch=merge_from,
    )
