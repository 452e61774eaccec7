"""
Known-malicious package aggregation.

Sources:
- GitHub Security Advisories of type ``malware`` (paged)
- OSV batch queries for candidate names, keeping malware entries
- Research datasets (backstabber's knife collection README)

Each source that fails is logged and contributes nothing; the others still
count. Records from all sources are combined with ``merge_records``.
"""

import asyncio
import logging
import os
import re
from typing import Iterable, List, Optional

import httpx

from collectors.dedup import merge_records
from collectors.http_client import get_http_client, request_json, request_text
from collectors.models import Confidence, Label, PackageRecord
from shared.constants import BACKSTABBERS_README_URL, GITHUB_API, MAX_PACKAGE_NAME_LENGTH, OSV_API
from shared.errors import CollectorError
from shared.gateway import ProviderGateway
from shared.rate_limiter import Provider

logger = logging.getLogger(__name__)

SOURCE_GITHUB = "github-advisory"
SOURCE_OSV = "osv"
SOURCE_BACKSTABBERS = "research-backstabbers-knife-collection"

ALL_VERSIONS = "all"
GITHUB_MAX_PAGES = 10
GITHUB_PER_PAGE = 100
OSV_BATCH_SIZE = 100
OSV_CANDIDATE_LIMIT = 50

MALWARE_KEYWORDS = ("malware", "malicious", "typosquat", "dependency confusion")

_README_PATTERNS = [
    re.compile(r"`([^`\s@]+)`"),
    re.compile(r"\*\*([^*\s@]+)\*\*"),
    re.compile(r"\[([^\]]+)\]\([^)]+\)"),
    re.compile(r"npm\s+install\s+([^\s@]+)", re.IGNORECASE),
    re.compile(r"package[:\s]+([^\s@]+)", re.IGNORECASE),
]
_NAME_JUNK = re.compile(r"[^\w\-@/.]")


def parse_backstabbers_readme(content: str) -> List[str]:
    """Extract candidate package names from the collection's README, in order of appearance."""
    names: List[str] = []
    seen = set()
    for pattern in _README_PATTERNS:
        for match in pattern.finditer(content):
            name = _NAME_JUNK.sub("", match.group(1).strip().lower())
            if not name or len(name) > MAX_PACKAGE_NAME_LENGTH or name.startswith("http"):
                continue
            if name in seen:
                continue
            seen.add(name)
            names.append(name)
    return names


def is_malware_entry(vuln: dict) -> bool:
    """OSV entry that describes malware rather than an ordinary vulnerability."""
    if str(vuln.get("id", "")).startswith("MAL-"):
        return True
    if (vuln.get("database_specific") or {}).get("malicious") is True:
        return True
    text = f"{vuln.get('summary') or ''} {vuln.get('details') or ''}".lower()
    return any(keyword in text for keyword in MALWARE_KEYWORDS)


class MaliciousPackageCollector:
    def __init__(
        self,
        gateway: ProviderGateway,
        client: Optional[httpx.AsyncClient] = None,
        github_token: Optional[str] = None,
    ):
        self.gateway = gateway
        self.client = client
        self.github_token = github_token or os.environ.get("GITHUB_TOKEN")

    def _http(self) -> httpx.AsyncClient:
        return self.client or get_http_client()

    async def from_github_advisories(self, max_pages: int = GITHUB_MAX_PAGES) -> List[PackageRecord]:
        headers = {"Accept": "application/vnd.github+json", "X-GitHub-Api-Version": "2022-11-28"}
        if self.github_token:
            headers["Authorization"] = f"Bearer {self.github_token}"

        records = []
        for page in range(1, max_pages + 1):
            advisories = await self.gateway.call(
                Provider.GITHUB_ADVISORIES,
                request_json,
                self._http(),
                "GET",
                f"{GITHUB_API}/advisories",
                provider=Provider.GITHUB_ADVISORIES.value,
                params={"type": "malware", "ecosystem": "npm", "page": page, "per_page": GITHUB_PER_PAGE},
                headers=headers,
            )
            if not isinstance(advisories, list) or not advisories:
                break

            for advisory in advisories:
                for vuln in advisory.get("vulnerabilities") or []:
                    package = vuln.get("package") or {}
                    if package.get("ecosystem") != "npm" or not package.get("name"):
                        continue
                    records.append(
                        PackageRecord.from_source(
                            package["name"],
                            vuln.get("vulnerable_version_range") or ALL_VERSIONS,
                            Label.MALICIOUS,
                            SOURCE_GITHUB,
                            Confidence.HIGH,
                            ghsa_id=advisory.get("ghsa_id"),
                            summary=advisory.get("summary") or "",
                            reported_at=advisory.get("published_at") or advisory.get("updated_at"),
                        )
                    )

            if len(advisories) < GITHUB_PER_PAGE:
                break

        return records

    async def from_osv(self, package_names: Iterable[str]) -> List[PackageRecord]:
        names = list(package_names)
        records = []
        for start in range(0, len(names), OSV_BATCH_SIZE):
            batch = names[start : start + OSV_BATCH_SIZE]
            data = await self.gateway.call(
                Provider.OSV,
                request_json,
                self._http(),
                "POST",
                f"{OSV_API}/v1/querybatch",
                provider=Provider.OSV.value,
                json={"queries": [{"package": {"name": name, "ecosystem": "npm"}} for name in batch]},
            )
            results = data.get("results") if isinstance(data, dict) else None
            for name, result in zip(batch, results or []):
                for vuln in (result or {}).get("vulns") or []:
                    if is_malware_entry(vuln):
                        records.append(
                            PackageRecord.from_source(
                                name,
                                ALL_VERSIONS,
                                Label.MALICIOUS,
                                SOURCE_OSV,
                                Confidence.MEDIUM,
                                osv_id=vuln.get("id"),
                                reported_at=vuln.get("published") or vuln.get("modified"),
                            )
                        )
        return records

    async def from_research_datasets(self) -> List[PackageRecord]:
        content = await self.gateway.call(
            Provider.RESEARCH_DATASET,
            request_text,
            self._http(),
            "GET",
            BACKSTABBERS_README_URL,
            provider=Provider.RESEARCH_DATASET.value,
        )
        return [
            PackageRecord.from_source(name, ALL_VERSIONS, Label.MALICIOUS, SOURCE_BACKSTABBERS, Confidence.HIGH)
            for name in parse_backstabbers_readme(content)
        ]

    async def _safely(self, source: str, coro) -> List[PackageRecord]:
        try:
            records = await coro
        except CollectorError as e:
            logger.warning(
                f"Malicious package source {source} failed: {e}",
                extra={"label_source": source, "error_kind": e.kind},
            )
            return []
        logger.info(f"Collected {len(records)} records from {source}", extra={"label_source": source})
        return records

    async def collect_all(self) -> List[PackageRecord]:
        """Collect, combine and deduplicate records from every source."""
        github, research = await asyncio.gather(
            self._safely(SOURCE_GITHUB, self.from_github_advisories()),
            self._safely(SOURCE_BACKSTABBERS, self.from_research_datasets()),
        )
        candidates = [record.name for record in research][:OSV_CANDIDATE_LIMIT]
        osv = await self._safely(SOURCE_OSV, self.from_osv(candidates)) if candidates else []

        merged = merge_records([github, osv, research])
        logger.info(f"Collected {len(merged)} unique malicious packages")
        return merged
