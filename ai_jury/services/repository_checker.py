"""
GitHub repository accessibility checks used by the eligibility layer.

The checker never raises for network or API failures: every failure is
reported as an inaccessible repository carrying an error message, so the
eligibility layer can fail closed on it.
"""
import re
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Tuple

import httpx

from ai_jury.config import jury_config

logger = logging.getLogger(__name__)

GITHUB_URL_PATTERN = re.compile(r"github\.com[/:]([^/\s]+)/([^/\s?#]+)", re.IGNORECASE)


class InvalidRepositoryUrlError(ValueError):
    """Raised when a repository URL cannot be resolved to owner/repo."""
    pass


@dataclass
class RepositoryAccess:
    """Result of a repository accessibility check."""
    accessible: bool
    is_public: bool
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accessible": self.accessible,
            "is_public": self.is_public,
            "error": self.error,
            "metadata": self.metadata or None,
        }


def parse_repository_url(url: str) -> Tuple[str, str]:
    """
    Resolve a GitHub URL to its (owner, repo) pair.

    Accepts https and ssh forms, with or without a trailing ".git" or a
    sub-path (".../tree/main").

    Raises:
        InvalidRepositoryUrlError: If no owner/repo pair can be found
    """
    if not url or not url.strip():
        raise InvalidRepositoryUrlError("Empty repository URL")

    match = GITHUB_URL_PATTERN.search(url.strip())
    if not match:
        raise InvalidRepositoryUrlError("Invalid GitHub URL")

    owner = match.group(1)
    repo = re.sub(r"\.git$", "", match.group(2))
    if not owner or not repo:
        raise InvalidRepositoryUrlError("Invalid GitHub URL")

    return owner, repo


class GitHubRepositoryChecker:
    """
    Checks repository reachability and visibility through the GitHub REST API.

    A shared httpx.AsyncClient may be injected (tests pass one built on
    httpx.MockTransport); otherwise a client is opened per check.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        api_base: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self._client = client
        self.api_base = (api_base or jury_config.github_api_base).rstrip("/")
        self.token = token if token is not None else jury_config.github_token
        self.timeout = timeout if timeout is not None else jury_config.github_timeout_seconds

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "ai-jury-engine",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _get(self, url: str) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url, headers=self._headers(), timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(url, headers=self._headers())

    async def check(self, owner: str, repo: str) -> RepositoryAccess:
        url = f"{self.api_base}/repos/{owner}/{repo}"

        try:
            response = await self._get(url)
        except httpx.TimeoutException:
            logger.warning(f"GitHub check timed out for {owner}/{repo}")
            return RepositoryAccess(accessible=False, is_public=False, error="Repository check timed out")
        except httpx.HTTPError as e:
            logger.warning(f"GitHub check failed for {owner}/{repo}: {str(e)}")
            return RepositoryAccess(accessible=False, is_public=False, error=str(e) or "Unknown error")

        if response.status_code == 404:
            return RepositoryAccess(
                accessible=False,
                is_public=False,
                error="Repository not found or is private"
            )

        if response.status_code >= 400:
            message = f"GitHub API returned {response.status_code}"
            try:
                body = response.json()
                if isinstance(body, dict) and body.get("message"):
                    message = f"{message}: {body['message']}"
            except ValueError:
                pass
            logger.warning(f"GitHub check for {owner}/{repo}: {message}")
            return RepositoryAccess(accessible=False, is_public=False, error=message)

        try:
            data = response.json()
        except ValueError:
            return RepositoryAccess(accessible=False, is_public=False, error="Malformed GitHub API response")

        return RepositoryAccess(
            accessible=True,
            is_public=not data.get("private", False),
            metadata={
                "name": data.get("name"),
                "full_name": data.get("full_name"),
                "description": data.get("description"),
                "stars": data.get("stargazers_count"),
                "forks": data.get("forks_count"),
                "language": data.get("language"),
                "created_at": data.get("created_at"),
                "updated_at": data.get("updated_at"),
            }
        )
