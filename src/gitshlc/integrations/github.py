"""GitHub API access for picking a repository URL."""

import logging

import httpx

from gitshlc.db.models import GitHubRepo

logger = logging.getLogger(__name__)

API_URL = "https://api.github.com"


class GitHubError(Exception):
    """Raised when the GitHub API cannot be reached or returns an error."""


def _repo_from_json(raw: dict) -> GitHubRepo:
    return GitHubRepo(
        id=int(raw.get("id") or 0),
        full_name=str(raw.get("full_name") or ""),
        clone_url=str(raw.get("clone_url") or ""),
        ssh_url=str(raw.get("ssh_url") or ""),
        default_branch=str(raw.get("default_branch") or ""),
        updated_at=str(raw.get("updated_at") or ""),
        stargazers_count=int(raw.get("stargazers_count") or 0),
        is_private=bool(raw.get("private", False)),
    )


class GitHubClient:
    """Lists the authenticated user's repositories.

    A transport can be passed in to serve responses without the network.
    """

    def __init__(
        self,
        base_url: str = API_URL,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.transport = transport

    def list_repos(self, token: str, per_page: int = 100) -> list[GitHubRepo]:
        """Repositories visible to the token, most recently updated first."""
        token = (token or "").strip()
        if not token:
            raise GitHubError("GitHub token is not set")

        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": "gitshlc",
        }
        try:
            with httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
                response = client.get(
                    "/user/repos",
                    params={"per_page": per_page, "sort": "updated"},
                    headers=headers,
                )
        except httpx.HTTPError as e:
            raise GitHubError(f"GitHub API request failed: {e}") from e

        if response.is_error:
            raise GitHubError(
                f"GitHub API failed: {response.status_code} {response.reason_phrase} {response.text}".strip()
            )

        try:
            data = response.json()
        except ValueError as e:
            raise GitHubError("GitHub API returned invalid JSON") from e
        if not isinstance(data, list):
            raise GitHubError("GitHub API returned an unexpected payload")

        repos = [_repo_from_json(r) for r in data if isinstance(r, dict)]
        logger.info("Listed %d GitHub repositories", len(repos))
        return repos
