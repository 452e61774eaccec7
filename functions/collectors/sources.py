"""
Wiring for the default fetchers.

Builds the rate limiter registry, the provider gateway and the default
source set from environment configuration. Handlers and scripts call
``build_package_collector()`` once per invocation; tests build their own
pieces with fake fetchers.
"""

import asyncio
import logging
from functools import partial
from typing import Mapping, Optional

import httpx

from collectors.dependencies_collector import DependencyCollector
from collectors.github_collector import GitHubCollector
from collectors.models import CollectorSources, SourceFetcher
from collectors.npm_collector import get_npm_metadata
from collectors.package_collector import PackageCollector, PersistenceSink
from collectors.vulnerabilities_collector import VulnerabilityCollector
from shared.config import DEFAULT_RETRY_CONFIGS, load_rate_limit_config, load_retry_config
from shared.gateway import ProviderGateway
from shared.rate_limiter import Provider, RateLimiterRegistry
from shared.retry import SleepFunc

logger = logging.getLogger(__name__)


def build_gateway(
    environ: Optional[Mapping[str, str]] = None,
    sleep: SleepFunc = asyncio.sleep,
) -> ProviderGateway:
    """Gateway over the configured provider windows and retry policies."""
    registry = RateLimiterRegistry.from_config(load_rate_limit_config(environ), sleep=sleep)
    return ProviderGateway(
        registry,
        retry_configs=DEFAULT_RETRY_CONFIGS,
        default_retry=load_retry_config(environ),
        sleep=sleep,
    )


def build_default_sources(
    gateway: ProviderGateway,
    client: Optional[httpx.AsyncClient] = None,
    static_analysis: Optional[SourceFetcher] = None,
) -> CollectorSources:
    """
    Default npm-ecosystem fetchers.

    Static analysis has no built-in implementation; pass one in to enable it.
    """
    return CollectorSources(
        metadata=SourceFetcher(partial(get_npm_metadata, client=client), Provider.NPM_REGISTRY),
        dependencies=SourceFetcher(DependencyCollector(gateway, client).fetch),
        vulnerabilities=SourceFetcher(VulnerabilityCollector(gateway, client).fetch),
        github=SourceFetcher(GitHubCollector(gateway, client=client).fetch),
        static_analysis=static_analysis,
    )


def build_package_collector(
    gateway: Optional[ProviderGateway] = None,
    persistence_sink: Optional[PersistenceSink] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> PackageCollector:
    gateway = gateway or build_gateway()
    return PackageCollector(
        build_default_sources(gateway, client),
        gateway,
        persistence_sink=persistence_sink,
    )
