"""
Known-benign package aggregation.

Sources:
- Popular packages (with last-month downloads)
- Packages published by verified organizations
- Manually curated packages (confidence ``very-high``)

Versions are resolved to each package's ``latest`` dist-tag. A package
whose lookup fails is logged and left out.
"""

import asyncio
import logging
from typing import List, Optional

import httpx

from collectors.dedup import merge_records
from collectors.models import Confidence, Label, PackageRecord
from collectors.npm_collector import get_download_stats, get_version_manifest
from shared.errors import CollectorError
from shared.gateway import ProviderGateway
from shared.rate_limiter import Provider

logger = logging.getLogger(__name__)

SOURCE_POPULAR = "top-downloaded"
SOURCE_VERIFIED_ORG = "verified-org"
SOURCE_CURATED = "manually-curated"

POPULAR_PACKAGES = [
    "lodash", "express", "react", "axios", "moment", "async",
    "chalk", "commander", "debug", "fs-extra", "glob", "inquirer",
    "minimist", "mkdirp", "rimraf", "semver", "uuid", "yargs",
    "winston", "dotenv", "cors", "body-parser", "cookie-parser",
    "helmet", "morgan", "compression", "serve-static",
]

VERIFIED_ORG_PACKAGES = {
    "@microsoft": ["typescript"],
    "@google": ["@angular/core"],
    "@facebook": ["react", "react-dom"],
    "@aws": ["aws-sdk", "@aws-sdk/client-s3"],
    "@types": ["@types/node", "@types/express"],
    "@babel": ["@babel/core", "@babel/preset-env"],
    "@eslint": ["eslint", "@eslint/js"],
}

CURATED_PACKAGES = [
    "lodash", "underscore", "ramda",
    "express", "koa", "fastify", "@hapi/hapi",
    "axios", "node-fetch",
]


class BenignPackageCollector:
    def __init__(self, gateway: ProviderGateway, client: Optional[httpx.AsyncClient] = None):
        self.gateway = gateway
        self.client = client

    async def latest_version(self, name: str) -> str:
        manifest = await self.gateway.call(
            Provider.NPM_REGISTRY, get_version_manifest, name, "latest", client=self.client
        )
        return manifest.get("version") or "latest"

    async def _record(self, name: str, source: str, confidence: Confidence, with_downloads: bool = False, **details):
        try:
            version = await self.latest_version(name)
            if with_downloads:
                stats = await self.gateway.call(
                    Provider.NPM_DOWNLOADS, get_download_stats, name, "last-month", client=self.client
                )
                details["downloads_last_month"] = stats["downloads"]
        except CollectorError as e:
            logger.warning(
                f"Skipping benign candidate {name}: {e}",
                extra={"package": name, "label_source": source, "error_kind": e.kind},
            )
            return None
        return PackageRecord.from_source(name, version, Label.BENIGN, source, confidence, **details)

    async def _collect(self, coros) -> List[PackageRecord]:
        records = await asyncio.gather(*coros)
        return [record for record in records if record is not None]

    async def popular(self, limit: int = 100) -> List[PackageRecord]:
        return await self._collect(
            self._record(name, SOURCE_POPULAR, Confidence.HIGH, with_downloads=True)
            for name in POPULAR_PACKAGES[: max(0, limit)]
        )

    async def verified_org(self, limit: int = 50) -> List[PackageRecord]:
        candidates = [
            (org, name) for org, names in VERIFIED_ORG_PACKAGES.items() for name in names
        ][: max(0, limit)]
        return await self._collect(
            self._record(name, SOURCE_VERIFIED_ORG, Confidence.HIGH, organization=org)
            for org, name in candidates
        )

    async def curated(self) -> List[PackageRecord]:
        return await self._collect(
            self._record(name, SOURCE_CURATED, Confidence.VERY_HIGH) for name in CURATED_PACKAGES
        )

    async def collect_all(self, count: int = 10000) -> List[PackageRecord]:
        """Collect, combine and deduplicate benign records, truncated to ``count``."""
        popular, orgs, curated = await asyncio.gather(
            self.popular(int(count * 0.4)),
            self.verified_org(int(count * 0.2)),
            self.curated(),
        )
        merged = merge_records([popular, orgs, curated])
        logger.info(f"Collected {len(merged)} unique benign packages", extra={"requested": count})
        return merged[: max(0, count)]
