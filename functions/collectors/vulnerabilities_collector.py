"""
Vulnerabilities collector - known advisories from several databases.

Sources (each under its own rate window):
- OSV:               POST /v1/query
- GitHub Advisories: GET /advisories?ecosystem=npm&affects=<name>@<version>
- OSS Index:         POST /component-report (requires credentials)
- npm audit:         not available without an npm toolchain, reported as skipped

Sources run concurrently. A failing source is recorded in the payload's
``sources`` map; the aspect only fails when every attempted source failed.
"""

import asyncio
import logging
import os
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from collectors.http_client import get_http_client, request_json
from shared.constants import GITHUB_API, OSS_INDEX_API, OSV_API, VULNERABILITY_SOURCES
from shared.error_classification import describe_error
from shared.errors import AuthRequiredError, CollectorError, MalformedResponseError
from shared.gateway import ProviderGateway
from shared.rate_limiter import Provider

logger = logging.getLogger(__name__)

OSV_MAX_PAGES = 5
SEVERITY_LEVELS = ("critical", "high", "medium", "low")
_SEVERITY_ALIASES = {"moderate": "medium"}
NPM_AUDIT_UNAVAILABLE = "npm audit requires a local npm toolchain and is not available"


def selected_sources(source_filter: Optional[str]) -> List[str]:
    """Expand a source filter (``all`` or one source name) into source names."""
    source_filter = (source_filter or "all").lower()
    if source_filter == "all":
        return list(VULNERABILITY_SOURCES)
    if source_filter not in VULNERABILITY_SOURCES:
        raise ValueError(
            f"Unknown vulnerability source {source_filter!r}; "
            f"expected 'all' or one of {', '.join(VULNERABILITY_SOURCES)}"
        )
    return [source_filter]


def normalize_severity(value) -> str:
    if not isinstance(value, str) or not value:
        return "unknown"
    value = value.lower()
    return _SEVERITY_ALIASES.get(value, value)


def _cvss_severity(score) -> str:
    if not isinstance(score, (int, float)):
        return "unknown"
    if score >= 9.0:
        return "critical"
    if score >= 7.0:
        return "high"
    if score >= 4.0:
        return "medium"
    if score > 0:
        return "low"
    return "unknown"


def npm_purl(name: str, version: str) -> str:
    """Package URL for an npm package (scope '@' percent-encoded)."""
    return f"pkg:npm/{quote(name, safe='/')}@{version}"


def summarize(vulnerabilities: List[dict]) -> dict:
    summary = {"total": len(vulnerabilities)}
    for level in SEVERITY_LEVELS:
        summary[level] = sum(1 for v in vulnerabilities if v["severity"] == level)
    return summary


class VulnerabilityCollector:
    """Composite fetcher; admits each source's calls under that source's provider."""

    def __init__(
        self,
        gateway: ProviderGateway,
        client: Optional[httpx.AsyncClient] = None,
        github_token: Optional[str] = None,
        oss_index_username: Optional[str] = None,
        oss_index_token: Optional[str] = None,
    ):
        self.gateway = gateway
        self.client = client
        self.github_token = github_token or os.environ.get("GITHUB_TOKEN")
        self.oss_index_username = oss_index_username or os.environ.get("OSS_INDEX_USERNAME")
        self.oss_index_token = oss_index_token or os.environ.get("OSS_INDEX_TOKEN")

    def _http(self) -> httpx.AsyncClient:
        return self.client or get_http_client()

    async def query_osv(self, name: str, version: str) -> List[dict]:
        vulnerabilities = []
        body = {"package": {"name": name, "ecosystem": "npm"}, "version": version}

        for _ in range(OSV_MAX_PAGES):
            data = await self.gateway.call(
                Provider.OSV,
                request_json,
                self._http(),
                "POST",
                f"{OSV_API}/v1/query",
                provider=Provider.OSV.value,
                json=body,
            )
            if not isinstance(data, dict):
                raise MalformedResponseError("Unexpected OSV response", provider=Provider.OSV.value)

            for vuln in data.get("vulns") or []:
                vulnerabilities.append(
                    {
                        "id": vuln.get("id"),
                        "source": "osv",
                        "aliases": vuln.get("aliases") or [],
                        "severity": normalize_severity(
                            (vuln.get("database_specific") or {}).get("severity")
                        ),
                        "summary": vuln.get("summary") or "",
                        "published": vuln.get("published"),
                        "modified": vuln.get("modified"),
                        "references": [
                            ref.get("url") for ref in vuln.get("references") or [] if ref.get("url")
                        ],
                    }
                )

            page_token = data.get("next_page_token")
            if not page_token:
                break
            body = dict(body, page_token=page_token)

        return vulnerabilities

    async def query_github(self, name: str, version: str) -> List[dict]:
        headers = {"Accept": "application/vnd.github+json", "X-GitHub-Api-Version": "2022-11-28"}
        if self.github_token:
            headers["Authorization"] = f"Bearer {self.github_token}"

        data = await self.gateway.call(
            Provider.GITHUB_ADVISORIES,
            request_json,
            self._http(),
            "GET",
            f"{GITHUB_API}/advisories",
            provider=Provider.GITHUB_ADVISORIES.value,
            params={"ecosystem": "npm", "affects": f"{name}@{version}", "per_page": 100},
            headers=headers,
        )
        if not isinstance(data, list):
            raise MalformedResponseError(
                "Unexpected GitHub advisories response", provider=Provider.GITHUB_ADVISORIES.value
            )

        vulnerabilities = []
        for advisory in data:
            affected = [
                v
                for v in advisory.get("vulnerabilities") or []
                if (v.get("package") or {}).get("name") == name
            ]
            vulnerabilities.append(
                {
                    "id": advisory.get("ghsa_id"),
                    "source": "github",
                    "aliases": [advisory["cve_id"]] if advisory.get("cve_id") else [],
                    "severity": normalize_severity(advisory.get("severity")),
                    "summary": advisory.get("summary") or "",
                    "published": advisory.get("published_at"),
                    "modified": advisory.get("updated_at"),
                    "vulnerable_version_range": affected[0].get("vulnerable_version_range")
                    if affected
                    else None,
                    "first_patched_version": affected[0].get("first_patched_version")
                    if affected
                    else None,
                    "references": [advisory["html_url"]] if advisory.get("html_url") else [],
                }
            )
        return vulnerabilities

    async def query_oss_index(self, name: str, version: str) -> List[dict]:
        if not (self.oss_index_username and self.oss_index_token):
            raise AuthRequiredError(
                "OSS Index requires OSS_INDEX_USERNAME and OSS_INDEX_TOKEN",
                provider=Provider.OSS_INDEX.value,
            )

        data = await self.gateway.call(
            Provider.OSS_INDEX,
            request_json,
            self._http(),
            "POST",
            f"{OSS_INDEX_API}/component-report",
            provider=Provider.OSS_INDEX.value,
            json={"coordinates": [npm_purl(name, version)]},
            auth=(self.oss_index_username, self.oss_index_token),
        )
        if not isinstance(data, list):
            raise MalformedResponseError(
                "Unexpected OSS Index response", provider=Provider.OSS_INDEX.value
            )

        vulnerabilities = []
        for component in data:
            for vuln in component.get("vulnerabilities") or []:
                vulnerabilities.append(
                    {
                        "id": vuln.get("id"),
                        "source": "ossindex",
                        "aliases": [vuln["cve"]] if vuln.get("cve") else [],
                        "severity": _cvss_severity(vuln.get("cvssScore")),
                        "summary": vuln.get("title") or "",
                        "cvss_score": vuln.get("cvssScore"),
                        "references": [vuln["reference"]] if vuln.get("reference") else [],
                    }
                )
        return vulnerabilities

    async def fetch(self, name: str, version: str, sources: Optional[str] = "all") -> dict:
        """
        Collector entry point.

        Raises:
            CollectorError: every attempted source failed (the first failure,
                in source order, is raised)
            AuthRequiredError: no selected source could be queried (missing
                credentials, or only npm audit was selected)
        """
        names = selected_sources(sources)
        queries = {
            "osv": self.query_osv,
            "github": self.query_github,
            "ossindex": self.query_oss_index,
        }
        attempted = [source for source in names if source in queries]
        outcomes = await asyncio.gather(
            *(queries[source](name, version) for source in attempted), return_exceptions=True
        )

        vulnerabilities: List[dict] = []
        source_status: Dict[str, dict] = {}
        failures: List[Tuple[str, CollectorError]] = []
        skipped: List[AuthRequiredError] = []

        if "npm" in names:
            source_status["npm"] = {"status": "skipped", "reason": NPM_AUDIT_UNAVAILABLE}

        for source, outcome in zip(attempted, outcomes):
            if isinstance(outcome, AuthRequiredError):
                skipped.append(outcome)
                source_status[source] = {"status": "skipped", "reason": outcome.message}
            elif isinstance(outcome, CollectorError):
                failures.append((source, outcome))
                source_status[source] = {"status": "error", "error": describe_error(outcome).to_dict()}
                logger.warning(
                    f"Vulnerability source {source} failed for {name}@{version}: {outcome}",
                    extra={"package": name, "vulnerability_source": source},
                )
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                vulnerabilities.extend(outcome)
                source_status[source] = {"status": "ok", "count": len(outcome)}

        succeeded = [s for s, status in source_status.items() if status["status"] == "ok"]
        if not succeeded and failures:
            raise failures[0][1]
        if not succeeded:
            reasons = [status["reason"] for status in source_status.values()]
            raise AuthRequiredError(
                "No vulnerability source available: " + "; ".join(reasons),
                provider=skipped[0].provider if skipped else Provider.NPM_AUDIT.value,
            )

        return {
            "package": {"name": name, "version": version},
            "vulnerabilities": vulnerabilities,
            "summary": summarize(vulnerabilities),
            "sources": source_status,
        }
