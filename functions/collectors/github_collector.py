"""
GitHub collector - repository metrics for a package's source repository.

Provides:
- Stars, forks, watchers, open issues
- Commit activity (90 days, bot commits filtered)
- Contributor count and bus factor
- Repository status (archived, disabled)
- Repository security advisories (token required, otherwise skipped)

Every request is admitted through the ``github_repo`` rate window.
Rate limit: 5,000 requests/hour with token (single account)
"""

import asyncio
import logging
import os
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx

from collectors.http_client import get_http_client_with_headers, request_json
from collectors.models import AspectSkipped
from shared.constants import GITHUB_API
from shared.errors import AuthRequiredError, MalformedResponseError, NotFoundError
from shared.gateway import ProviderGateway
from shared.rate_limiter import Provider

logger = logging.getLogger(__name__)

# Known bot account patterns that should be filtered from activity metrics
BOT_PATTERNS = [
    "dependabot",
    "renovate",
    "greenkeeper",
    "snyk-bot",
    "github-actions",
    "semantic-release",
    "release-please",
]

ACTIVITY_WINDOW_DAYS = 90


def parse_github_url(url: Optional[str]) -> Optional[tuple[str, str]]:
    """
    Parse GitHub repository URL to extract owner and repo.

    Handles various URL formats:
    - https://github.com/owner/repo
    - git://github.com/owner/repo.git
    - git+https://github.com/owner/repo.git
    - git@github.com:owner/repo.git
    - ssh://git@github.com/owner/repo.git
    - github.com/owner/repo

    Returns:
        Tuple of (owner, repo) or None if not a valid GitHub URL
    """
    if not url:
        return None

    # Normalize URL
    url = url.strip()
    url = url.replace("git+", "").replace("git://", "https://")
    url = url.split("#", 1)[0].rstrip("/")
    if url.endswith(".git"):
        url = url[:-4]

    match = re.search(r"github\.com[/:]([^/]+)/([^/]+)$", url)
    if match:
        return match.group(1), match.group(2)

    return None


def _is_bot(login: str) -> bool:
    login = login.lower()
    return any(bot in login for bot in BOT_PATTERNS)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, TypeError):
        logger.warning(f"Could not parse GitHub timestamp: {value!r}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def summarize_commits(commits: list) -> dict:
    """Derive activity metrics from a list of commit objects (newest first)."""
    committers: dict[str, int] = {}
    non_bot = 0
    for commit in commits:
        if not isinstance(commit, dict):
            continue
        login = (commit.get("author") or {}).get("login") or ""
        if login:
            committers[login] = committers.get(login, 0) + 1
        if not _is_bot(login):
            non_bot += 1

    # True bus factor: minimum contributors for 50% of commits
    bus_factor = 1
    if committers:
        total = sum(committers.values())
        cumulative = 0
        bus_factor = 0
        for count in sorted(committers.values(), reverse=True):
            cumulative += count
            bus_factor += 1
            if cumulative >= total * 0.5:
                break
        bus_factor = max(1, bus_factor)

    last_commit_at = None
    if commits and isinstance(commits[0], dict):
        last_commit_at = ((commits[0].get("commit") or {}).get("author") or {}).get("date")

    return {
        "commits_90d": len(commits),
        "commits_90d_non_bot": non_bot,
        "active_contributors_90d": len(committers),
        "true_bus_factor": bus_factor,
        "last_commit_at": last_commit_at,
    }


class GitHubCollector:
    """
    GitHub API collector. Requests go through the provider gateway, which
    owns rate limiting and retries.
    """

    def __init__(
        self,
        gateway: ProviderGateway,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            gateway: Rate-limited, retrying executor
            token: GitHub Personal Access Token (5K requests/hour)
            client: HTTP client; defaults to one carrying the GitHub headers
        """
        self.gateway = gateway
        self.token = token or os.environ.get("GITHUB_TOKEN")
        self.headers = {
            "Accept": "application/vnd.github.v3+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            self.headers["Authorization"] = f"Bearer {self.token}"
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = get_http_client_with_headers(self.headers)
        return self._client

    async def _get(self, path: str, params: Optional[dict] = None):
        return await self.gateway.call(
            Provider.GITHUB_REPO,
            request_json,
            self.client,
            "GET",
            f"{GITHUB_API}{path}",
            provider=Provider.GITHUB_REPO.value,
            params=params,
            headers=self.headers,
        )

    async def _get_list(self, path: str, params: Optional[dict] = None) -> list:
        """Secondary listing; an empty repository (409) or missing listing reads as empty."""
        try:
            data = await self._get(path, params)
        except (NotFoundError, MalformedResponseError) as e:
            logger.debug(f"GitHub listing {path} unavailable: {e}")
            return []
        return data if isinstance(data, list) else []

    async def get_security_advisories(self, owner: str, repo: str) -> list:
        """
        Security advisories published by the repository.

        Raises:
            AuthRequiredError: no token is configured, or GitHub refused it
        """
        if not self.token:
            raise AuthRequiredError(
                "GITHUB_TOKEN not configured; repository security advisories skipped",
                provider=Provider.GITHUB_REPO.value,
            )
        advisories = await self._get_list(f"/repos/{owner}/{repo}/security-advisories", params={"per_page": 100})
        return [
            {
                "ghsa_id": advisory.get("ghsa_id"),
                "cve_id": advisory.get("cve_id"),
                "summary": advisory.get("summary"),
                "severity": advisory.get("severity"),
                "published_at": advisory.get("published_at"),
                "updated_at": advisory.get("updated_at"),
            }
            for advisory in advisories
            if isinstance(advisory, dict)
        ]

    async def _advisories_or_skipped(self, owner: str, repo: str):
        try:
            return await self.get_security_advisories(owner, repo)
        except AuthRequiredError as e:
            logger.info(f"Skipping security advisories for {owner}/{repo}: {e}")
            return AspectSkipped(e.message).to_dict()

    async def get_repo_metrics(self, owner: str, repo: str, now: Optional[datetime] = None) -> dict:
        """
        Fetch repository metrics (4 API calls: repo, then commits, contributors
        and security advisories concurrently).

        Raises:
            NotFoundError: the repository does not exist
        """
        now = now or datetime.now(timezone.utc)
        repo_data = await self._get(f"/repos/{owner}/{repo}")
        if not isinstance(repo_data, dict):
            raise MalformedResponseError(
                f"Unexpected repository payload for {owner}/{repo}",
                provider=Provider.GITHUB_REPO.value,
            )

        since = (now - timedelta(days=ACTIVITY_WINDOW_DAYS)).isoformat()
        commits, contributors, advisories = await asyncio.gather(
            self._get_list(f"/repos/{owner}/{repo}/commits", params={"since": since, "per_page": 100}),
            self._get_list(f"/repos/{owner}/{repo}/contributors", params={"per_page": 100}),
            self._advisories_or_skipped(owner, repo),
        )

        activity = summarize_commits(commits)

        # Fall back to pushed_at when no commits landed in the activity window
        last_activity = _parse_timestamp(activity.pop("last_commit_at")) or _parse_timestamp(
            repo_data.get("pushed_at")
        )
        days_since_commit = max(0, (now - last_activity).days) if last_activity else None

        return {
            "owner": owner,
            "repo": repo,
            "url": repo_data.get("html_url"),
            "description": repo_data.get("description"),
            "stars": repo_data.get("stargazers_count", 0),
            "forks": repo_data.get("forks_count", 0),
            "open_issues": repo_data.get("open_issues_count", 0),
            "watchers": repo_data.get("watchers_count", 0),
            "created_at": repo_data.get("created_at"),
            "updated_at": repo_data.get("updated_at"),
            "pushed_at": repo_data.get("pushed_at"),
            "days_since_last_commit": days_since_commit,
            "total_contributors": len(contributors),
            "archived": repo_data.get("archived", False),
            "disabled": repo_data.get("disabled", False),
            "default_branch": repo_data.get("default_branch", "main"),
            "language": repo_data.get("language"),
            "license": (repo_data.get("license") or {}).get("spdx_id"),
            "topics": repo_data.get("topics", []),
            "security_advisories": advisories,
            "source": "github",
            **activity,
        }

    async def fetch(self, name: str, version: str, repository_url: Optional[str]):
        """Collector entry point: metrics for the package's repository."""
        parsed = parse_github_url(repository_url)
        if not parsed:
            return AspectSkipped(f"Repository is not hosted on GitHub: {repository_url}")

        owner, repo = parsed
        logger.debug(f"Fetching GitHub metrics for {name}@{version} from {owner}/{repo}")
        return await self.get_repo_metrics(owner, repo)
