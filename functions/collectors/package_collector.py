"""
Single-package collector.

Collects everything known about one npm package version:
1. Metadata from the npm registry (mandatory; resolves the version)
2. Dependencies, vulnerabilities, GitHub repository metrics and static
   analysis (optional aspects, fetched concurrently)

A metadata failure fails the whole collection with ``FatalMetadataError``.
An optional aspect failure is recorded under that aspect and never aborts
the others. Cancellation always surfaces as ``CollectionCancelledError``.
"""

import asyncio
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from collectors.models import (
    AspectSkipped,
    CollectionOptions,
    CollectionResult,
    CollectorSources,
    SourceFetcher,
)
from shared.cancellation import CancellationToken, run_cancellable
from shared.config import env_flag
from shared.constants import (
    ASPECT_DEPENDENCIES,
    ASPECT_GITHUB,
    ASPECT_STATIC_ANALYSIS,
    ASPECT_VULNERABILITIES,
)
from shared.error_classification import describe_error
from shared.errors import (
    AuthRequiredError,
    CollectionCancelledError,
    FatalMetadataError,
    MalformedResponseError,
)
from shared.gateway import ProviderGateway
from shared.logging_utils import LogSink, logger_sink

logger = logging.getLogger(__name__)

# Receives each successful result; may be sync or async
PersistenceSink = Callable[[CollectionResult], Any]


class PackageCollector:
    """
    Orchestrates the fetchers for a single package.

    Examples:
        >>> collector = PackageCollector(sources, gateway)
        >>> result = await collector.collect("left-pad", "1.3.0")
        >>> result.per_aspect_data["dependencies"]
    """

    def __init__(
        self,
        sources: CollectorSources,
        gateway: ProviderGateway,
        log_sink: Optional[LogSink] = None,
        persistence_sink: Optional[PersistenceSink] = None,
        static_analysis_enabled: Optional[bool] = None,
    ):
        self.sources = sources
        self.gateway = gateway
        self.log = log_sink or logger_sink(logger)
        self.persistence_sink = persistence_sink
        if static_analysis_enabled is None:
            static_analysis_enabled = env_flag("ENABLE_STATIC_ANALYSIS", False)
        self.static_analysis_enabled = static_analysis_enabled

    async def _call(self, fetcher: SourceFetcher, *args: Any, **kwargs: Any) -> Any:
        if fetcher.provider is None:
            return await fetcher.fetch(*args, **kwargs)
        return await self.gateway.call(fetcher.provider, fetcher.fetch, *args, **kwargs)

    async def _fetch_metadata(self, name: str, version: str) -> dict:
        try:
            metadata = await self._call(self.sources.metadata, name, version)
        except CollectionCancelledError:
            raise
        except Exception as e:
            raise FatalMetadataError(name, e) from e

        if not isinstance(metadata, dict) or not metadata.get("resolved_version"):
            raise FatalMetadataError(
                name, MalformedResponseError(f"No resolved version in metadata for {name}")
            )
        return metadata

    async def _run_aspect(self, aspect: str, name: str, fetcher: SourceFetcher, *args: Any) -> Any:
        try:
            return await self._call(fetcher, *args)
        except CollectionCancelledError:
            raise
        except AuthRequiredError as e:
            self.log(logging.INFO, f"Skipping {aspect} for {name}: {e}", {"aspect": aspect, "package": name})
            return AspectSkipped(e.message)
        except Exception as e:
            descriptor = describe_error(e)
            self.log(
                logging.WARNING,
                f"Failed to collect {aspect} for {name}: {descriptor.message}",
                {"aspect": aspect, "package": name, "error_kind": descriptor.kind},
            )
            return descriptor

    def _plan_aspects(self, name: str, resolved: str, metadata: dict, options: CollectionOptions) -> Dict[str, Any]:
        """Map each requested aspect to a coroutine, or to AspectSkipped when it cannot run."""
        plan: Dict[str, Any] = {}

        if options.include_dependencies:
            if self.sources.dependencies is None:
                plan[ASPECT_DEPENDENCIES] = AspectSkipped("No dependencies source configured")
            else:
                plan[ASPECT_DEPENDENCIES] = self._run_aspect(
                    ASPECT_DEPENDENCIES, name, self.sources.dependencies, name, resolved, options.dependency_depth
                )

        if options.include_vulnerabilities:
            if self.sources.vulnerabilities is None:
                plan[ASPECT_VULNERABILITIES] = AspectSkipped("No vulnerabilities source configured")
            else:
                plan[ASPECT_VULNERABILITIES] = self._run_aspect(
                    ASPECT_VULNERABILITIES,
                    name,
                    self.sources.vulnerabilities,
                    name,
                    resolved,
                    options.vulnerability_sources,
                )

        if options.include_github:
            repository_url = metadata.get("repository_url")
            if not repository_url:
                plan[ASPECT_GITHUB] = AspectSkipped("No repository URL in package metadata")
            elif self.sources.github is None:
                plan[ASPECT_GITHUB] = AspectSkipped("No GitHub source configured")
            else:
                plan[ASPECT_GITHUB] = self._run_aspect(
                    ASPECT_GITHUB, name, self.sources.github, name, resolved, repository_url
                )

        if options.include_static_analysis:
            tarball_url = metadata.get("tarball_url")
            if not self.static_analysis_enabled or self.sources.static_analysis is None:
                plan[ASPECT_STATIC_ANALYSIS] = AspectSkipped("Static analysis is disabled")
            elif not tarball_url:
                plan[ASPECT_STATIC_ANALYSIS] = AspectSkipped("No tarball URL in package metadata")
            else:
                plan[ASPECT_STATIC_ANALYSIS] = self._run_aspect(
                    ASPECT_STATIC_ANALYSIS, name, self.sources.static_analysis, name, resolved, tarball_url
                )

        return plan

    async def _persist(self, result: CollectionResult) -> None:
        if self.persistence_sink is None:
            return
        try:
            outcome = self.persistence_sink(result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            # Don't fail the collection if storage fails
            self.log(
                logging.WARNING,
                f"Failed to persist result for {result.package_name}@{result.version}: {e}",
                {"package": result.package_name, "version": result.version},
            )

    async def _collect(self, name: str, version: str, options: CollectionOptions) -> CollectionResult:
        self.log(logging.INFO, f"Collecting {name}@{version}", {"package": name, "requested_version": version})

        metadata = await self._fetch_metadata(name, version)
        resolved = metadata["resolved_version"]

        plan = self._plan_aspects(name, resolved, metadata, options)
        pending = {aspect: step for aspect, step in plan.items() if inspect.isawaitable(step)}
        outcomes = await asyncio.gather(*pending.values())
        per_aspect = dict(plan)
        per_aspect.update(zip(pending.keys(), outcomes))

        result = CollectionResult(
            package_name=name,
            version=resolved,
            requested_version=version,
            collected_at=datetime.now(timezone.utc).isoformat(),
            metadata=metadata,
            per_aspect_data=per_aspect,
        )

        self.log(
            logging.INFO,
            f"Collected {name}@{resolved}",
            {
                "package": name,
                "version": resolved,
                "aspects": sorted(per_aspect),
                "failed_aspects": sorted(result.errors),
            },
        )

        await self._persist(result)
        return result

    async def collect(
        self,
        name: str,
        version: Optional[str] = "latest",
        options: Optional[CollectionOptions] = None,
        token: Optional[CancellationToken] = None,
    ) -> CollectionResult:
        """
        Collect one package version.

        Raises:
            FatalMetadataError: metadata could not be resolved
            CollectionCancelledError: ``token`` fired before completion
        """
        return await run_cancellable(
            self._collect(name, version or "latest", options or CollectionOptions()), token
        )
