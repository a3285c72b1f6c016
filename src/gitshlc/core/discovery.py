"""Reconcile discovered repositories into the project list."""

import re

from gitshlc.db.models import DiscoveredRepo, EnvKey, Mode, Project, ProjectEnv


class DiscoveryInProgressError(RuntimeError):
    """Raised when a discovery is requested while another one is running."""


def basename(path: str) -> str:
    """Last segment of a POSIX or Windows path."""
    parts = [p for p in re.split(r"[/\\]", path or "") if p]
    return parts[-1] if parts else (path or "")


def claimed_paths(projects: list[Project], mode: Mode) -> set[str]:
    """Non-empty paths already owned by a project under `mode`."""
    claimed = set()
    for project in projects:
        for key in EnvKey:
            path = project.env(key).path_for(mode).strip()
            if path:
                claimed.add(path)
    return claimed


def project_from_candidate(candidate: DiscoveredRepo, mode: Mode) -> Project:
    """Synthesize a project whose test and deploy envs both point at the candidate.

    Discovery cannot tell the two environments apart, so both are seeded
    identically.
    """
    path = candidate.path.strip()
    name = (candidate.name or "").strip() or basename(path)
    repo_url = (candidate.origin_url or "").strip()

    def seed() -> ProjectEnv:
        if mode is Mode.LOCAL:
            return ProjectEnv(repo_url=repo_url, local_path=path)
        return ProjectEnv(repo_url=repo_url, remote_path=path)

    return Project(name=name, test=seed(), deploy=seed())


def reconcile(
    existing: list[Project],
    candidates: list[DiscoveredRepo],
    mode: Mode,
) -> list[Project]:
    """Return new projects for candidates whose path no project claims yet.

    Candidates are taken in order and the first claim on a path wins, both
    against existing projects and within the batch. Existing projects are
    never modified.
    """
    claimed = claimed_paths(existing, mode)
    new_projects = []
    for candidate in candidates:
        path = (candidate.path or "").strip()
        if not path or path in claimed:
            continue
        new_projects.append(project_from_candidate(candidate, mode))
        claimed.add(path)
    return new_projects
