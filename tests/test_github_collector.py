"""
Tests for GitHub collector.
"""

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from collectors.github_collector import GitHubCollector, parse_github_url, summarize_commits
from collectors.models import AspectSkipped
from shared.errors import NotFoundError, TransientProviderError

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


class TestParseGithubUrl:
    @pytest.mark.parametrize(
        "url",
        [
            "https://github.com/expressjs/express",
            "https://github.com/expressjs/express.git",
            "git+https://github.com/expressjs/express.git",
            "git://github.com/expressjs/express.git",
            "git@github.com:expressjs/express.git",
            "ssh://git@github.com/expressjs/express.git",
            "github.com/expressjs/express",
            "https://github.com/expressjs/express#readme",
        ],
    )
    def test_forms(self, url):
        assert parse_github_url(url) == ("expressjs", "express")

    @pytest.mark.parametrize("url", [None, "", "https://gitlab.com/foo/bar", "https://github.com/only-owner"])
    def test_not_github(self, url):
        assert parse_github_url(url) is None


def _commit(login, date="2024-05-30T10:00:00Z"):
    return {"author": {"login": login}, "commit": {"author": {"date": date}}}


class TestSummarizeCommits:
    def test_bus_factor_and_bots(self):
        commits = [_commit("alice")] * 6 + [_commit("bob")] * 3 + [_commit("dependabot[bot]")] * 3

        summary = summarize_commits(commits)

        assert summary["commits_90d"] == 12
        assert summary["commits_90d_non_bot"] == 9
        assert summary["active_contributors_90d"] == 3
        assert summary["true_bus_factor"] == 1
        assert summary["last_commit_at"] == "2024-05-30T10:00:00Z"

    def test_empty(self):
        summary = summarize_commits([])
        assert summary["commits_90d"] == 0
        assert summary["true_bus_factor"] == 1
        assert summary["last_commit_at"] is None


def _github_handler(repo_status=200, commits_status=200, advisories_status=200):
    def handler(request):
        path = request.url.path
        if path == "/repos/stevemao/left-pad":
            if repo_status != 200:
                return httpx.Response(repo_status)
            return httpx.Response(
                200,
                json={
                    "html_url": "https://github.com/stevemao/left-pad",
                    "stargazers_count": 1200,
                    "forks_count": 100,
                    "archived": True,
                    "pushed_at": "2018-04-09T00:00:00Z",
                    "license": {"spdx_id": "WTFPL"},
                },
            )
        if path.endswith("/commits"):
            if commits_status != 200:
                return httpx.Response(commits_status)
            return httpx.Response(200, json=[_commit("stevemao", "2024-05-22T00:00:00Z")])
        if path.endswith("/contributors"):
            return httpx.Response(200, json=[{"login": "stevemao"}, {"login": "other"}])
        if path.endswith("/security-advisories"):
            if advisories_status != 200:
                return httpx.Response(advisories_status)
            return httpx.Response(
                200,
                json=[
                    {
                        "ghsa_id": "GHSA-xxxx-yyyy-zzzz",
                        "cve_id": None,
                        "summary": "Prototype pollution",
                        "severity": "high",
                        "published_at": "2019-01-01T00:00:00Z",
                        "updated_at": "2019-01-02T00:00:00Z",
                        "cvss": {"score": 7.5},
                    }
                ],
            )
        return httpx.Response(404)

    return handler


class TestGitHubCollector:
    @pytest.mark.asyncio
    async def test_repo_metrics(self, gateway, mock_client_factory):
        async with mock_client_factory(_github_handler()) as client:
            collector = GitHubCollector(gateway, token="test-token", client=client)
            metrics = await collector.get_repo_metrics("stevemao", "left-pad", now=NOW)

        assert metrics["stars"] == 1200
        assert metrics["archived"] is True
        assert metrics["license"] == "WTFPL"
        assert metrics["total_contributors"] == 2
        assert metrics["commits_90d"] == 1
        assert metrics["days_since_last_commit"] == 10
        assert metrics["source"] == "github"
        assert metrics["security_advisories"] == [
            {
                "ghsa_id": "GHSA-xxxx-yyyy-zzzz",
                "cve_id": None,
                "summary": "Prototype pollution",
                "severity": "high",
                "published_at": "2019-01-01T00:00:00Z",
                "updated_at": "2019-01-02T00:00:00Z",
            }
        ]

    @pytest.mark.asyncio
    async def test_security_advisories_skipped_without_token(self, gateway, mock_client_factory):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return _github_handler()(request)

        async with mock_client_factory(handler) as client:
            metrics = await GitHubCollector(gateway, client=client).get_repo_metrics(
                "stevemao", "left-pad", now=NOW
            )

        assert metrics["security_advisories"]["skipped"] is True
        assert "GITHUB_TOKEN" in metrics["security_advisories"]["reason"]
        assert not any(p.endswith("/security-advisories") for p in paths)
        assert metrics["stars"] == 1200

    @pytest.mark.asyncio
    async def test_refused_security_advisories_do_not_fail_metrics(self, gateway, mock_client_factory):
        async with mock_client_factory(_github_handler(advisories_status=403)) as client:
            collector = GitHubCollector(gateway, token="test-token", client=client)
            metrics = await collector.get_repo_metrics("stevemao", "left-pad", now=NOW)

        assert metrics["security_advisories"]["skipped"] is True
        assert metrics["total_contributors"] == 2

    @pytest.mark.asyncio
    async def test_listings_are_fetched_concurrently(self, gateway):
        collector = GitHubCollector(gateway, token="test-token")
        in_flight = 0
        peak = 0

        async def fake_get(path, params=None):
            nonlocal in_flight, peak
            if path == "/repos/stevemao/left-pad":
                return {"pushed_at": "2024-05-01T00:00:00Z"}
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return []

        collector._get = fake_get
        await collector.get_repo_metrics("stevemao", "left-pad", now=NOW)

        assert peak == 3

    @pytest.mark.asyncio
    async def test_sends_auth_header(self, gateway, mock_client_factory):
        seen = []

        def handler(request):
            seen.append(request.headers.get("Authorization"))
            return _github_handler()(request)

        async with mock_client_factory(handler) as client:
            await GitHubCollector(gateway, token="test-token", client=client).get_repo_metrics(
                "stevemao", "left-pad", now=NOW
            )

        assert seen and all(value == "Bearer test-token" for value in seen)

    @pytest.mark.asyncio
    async def test_empty_commit_listing_falls_back_to_pushed_at(self, gateway, mock_client_factory):
        async with mock_client_factory(_github_handler(commits_status=409)) as client:
            metrics = await GitHubCollector(gateway, client=client).get_repo_metrics(
                "stevemao", "left-pad", now=NOW
            )

        assert metrics["commits_90d"] == 0
        assert metrics["days_since_last_commit"] == (NOW - datetime(2018, 4, 9, tzinfo=timezone.utc)).days

    @pytest.mark.asyncio
    async def test_missing_repo(self, gateway, mock_client_factory):
        async with mock_client_factory(_github_handler(repo_status=404)) as client:
            with pytest.raises(NotFoundError):
                await GitHubCollector(gateway, client=client).get_repo_metrics("stevemao", "left-pad")

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, gateway, mock_client_factory, recording_sleep):
        calls = 0

        def handler(request):
            nonlocal calls
            if request.url.path == "/repos/stevemao/left-pad":
                calls += 1
                if calls == 1:
                    return httpx.Response(502)
            return _github_handler()(request)

        async with mock_client_factory(handler) as client:
            metrics = await GitHubCollector(gateway, client=client).get_repo_metrics(
                "stevemao", "left-pad", now=NOW
            )

        assert calls == 2
        assert metrics["stars"] == 1200
        assert recording_sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted_raises_transient(self, gateway, mock_client_factory):
        def handler(request):
            return httpx.Response(403, headers={"X-RateLimit-Remaining": "0"})

        async with mock_client_factory(handler) as client:
            with pytest.raises(TransientProviderError):
                await GitHubCollector(gateway, client=client).get_repo_metrics("stevemao", "left-pad")

    @pytest.mark.asyncio
    async def test_fetch_skips_non_github_repository(self, gateway, mock_client_factory):
        async with mock_client_factory(lambda r: httpx.Response(500)) as client:
            result = await GitHubCollector(gateway, client=client).fetch(
                "some-pkg", "1.0.0", "https://gitlab.com/foo/bar"
            )

        assert isinstance(result, AspectSkipped)
