"""
Data model for the collection engine.

Records, per-package collection results and batch results. Results are
immutable once returned: aspect mappings are exposed read-only and the
dataclasses are frozen.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Mapping, Optional, Tuple

from shared.constants import (
    ASPECT_DEPENDENCIES,
    ASPECT_GITHUB,
    ASPECT_STATIC_ANALYSIS,
    ASPECT_VULNERABILITIES,
)
from shared.error_classification import ErrorDescriptor
from shared.rate_limiter import Provider

__all__ = [
    "AspectSkipped",
    "BatchFailure",
    "BatchItem",
    "BatchResult",
    "CollectionOptions",
    "CollectionResult",
    "CollectorSources",
    "Confidence",
    "ErrorDescriptor",
    "Label",
    "PackageRecord",
    "SourceFetcher",
]


class Label(str, Enum):
    MALICIOUS = "malicious"
    BENIGN = "benign"
    UNLABELED = "unlabeled"

    @property
    def precedence(self) -> int:
        """Higher wins when two sources disagree about the same package."""
        return {"unlabeled": 0, "benign": 1, "malicious": 2}[self.value]


class Confidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very-high"

    @property
    def rank(self) -> int:
        return ["low", "medium", "high", "very-high"].index(self.value)

    @classmethod
    def highest(cls, *levels: "Confidence") -> "Confidence":
        return max(levels, key=lambda level: level.rank)


@dataclass(frozen=True)
class PackageRecord:
    """A labeled package identity reported by one or more sources.

    Identity key is ``(name, version)``.
    """

    name: str
    version: str
    label: Label = Label.UNLABELED
    sources: FrozenSet[str] = frozenset()
    confidence: Confidence = Confidence.LOW
    details: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_source(
        cls,
        name: str,
        version: str,
        label: Label,
        source: str,
        confidence: Confidence = Confidence.MEDIUM,
        **details: Any,
    ) -> "PackageRecord":
        return cls(
            name=name,
            version=version,
            label=Label(label),
            sources=frozenset([source]),
            confidence=Confidence(confidence),
            details=dict(details),
        )

    @property
    def key(self) -> Tuple[str, str]:
        return (self.name, self.version)

    def to_dict(self) -> dict:
        data = dict(self.details)
        data.update(
            {
                "name": self.name,
                "version": self.version,
                "label": self.label.value,
                "sources": sorted(self.sources),
                "confidence": self.confidence.value,
            }
        )
        return data


@dataclass(frozen=True)
class AspectSkipped:
    """An aspect that was not attempted, with the reason."""

    reason: str

    def to_dict(self) -> dict:
        return {"skipped": True, "reason": self.reason}


@dataclass(frozen=True)
class CollectionOptions:
    """Which optional aspects to collect for a package."""

    include_dependencies: bool = True
    include_vulnerabilities: bool = True
    include_github: bool = True
    include_static_analysis: bool = False
    vulnerability_sources: str = "all"
    dependency_depth: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "CollectionOptions":
        """Build options from a request body (camelCase keys, as sent by clients)."""
        data = data or {}
        defaults = cls()
        return cls(
            include_dependencies=bool(data.get("includeDependencies", defaults.include_dependencies)),
            include_vulnerabilities=bool(
                data.get("includeVulnerabilities", defaults.include_vulnerabilities)
            ),
            include_github=bool(
                data.get("includeGitHub", data.get("includeGitHubData", defaults.include_github))
            ),
            include_static_analysis=bool(
                data.get("includeStaticAnalysis", defaults.include_static_analysis)
            ),
            vulnerability_sources=str(data.get("vulnerabilitySources", defaults.vulnerability_sources)),
            dependency_depth=int(data.get("dependencyDepth", defaults.dependency_depth)),
        )


def _render_aspect(value: Any) -> Any:
    if isinstance(value, ErrorDescriptor):
        return {"error": value.to_dict()}
    if isinstance(value, AspectSkipped):
        return value.to_dict()
    return value


@dataclass(frozen=True)
class CollectionResult:
    """Everything collected for one package in one invocation."""

    package_name: str
    version: str
    requested_version: str
    collected_at: str
    metadata: Mapping[str, Any]
    per_aspect_data: Mapping[str, Any]

    def __post_init__(self):
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))
        object.__setattr__(self, "per_aspect_data", MappingProxyType(dict(self.per_aspect_data)))

    @property
    def errors(self) -> Dict[str, ErrorDescriptor]:
        """Aspects that failed, keyed by aspect name."""
        return {
            aspect: value
            for aspect, value in self.per_aspect_data.items()
            if isinstance(value, ErrorDescriptor)
        }

    def is_complete(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        data = {"metadata": dict(self.metadata)}
        for aspect in (ASPECT_DEPENDENCIES, ASPECT_VULNERABILITIES, ASPECT_GITHUB, ASPECT_STATIC_ANALYSIS):
            if aspect in self.per_aspect_data:
                data[aspect] = _render_aspect(self.per_aspect_data[aspect])
        return {
            "packageName": self.package_name,
            "version": self.version,
            "requestedVersion": self.requested_version,
            "collectedAt": self.collected_at,
            "data": data,
        }


@dataclass(frozen=True)
class BatchItem:
    """Identity of one package requested in a batch."""

    name: str
    version: str = "latest"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BatchItem":
        return cls(name=data["name"], version=data.get("version") or "latest")

    def to_dict(self) -> dict:
        return {"name": self.name, "version": self.version}

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"


@dataclass(frozen=True)
class BatchFailure:
    item: BatchItem
    error: ErrorDescriptor

    def to_dict(self) -> dict:
        return {"package": self.item.to_dict(), "error": self.error.to_dict()}


@dataclass(frozen=True)
class BatchResult:
    """Per-item outcomes of a batch, each list in input order."""

    successes: Tuple[CollectionResult, ...] = ()
    failures: Tuple[BatchFailure, ...] = ()

    @property
    def summary(self) -> dict:
        return {
            "total": len(self.successes) + len(self.failures),
            "successful": len(self.successes),
            "failed": len(self.failures),
        }

    def to_dict(self) -> dict:
        return {
            "results": [result.to_dict() for result in self.successes],
            "errors": [failure.to_dict() for failure in self.failures],
            "summary": self.summary,
        }


FetchFunc = Callable[..., Awaitable[Any]]


@dataclass(frozen=True)
class SourceFetcher:
    """An upstream lookup and the provider whose rate window it consumes.

    ``provider=None`` marks a composite fetcher that admits its own calls
    (for example the vulnerability fetcher, which spans several providers).
    """

    fetch: FetchFunc
    provider: Optional[Provider] = None


@dataclass(frozen=True)
class CollectorSources:
    """The fetchers a package collector runs.

    Call conventions:
        metadata(name, version) -> dict with "resolved_version"
        dependencies(name, version, max_depth=0) -> dict
        vulnerabilities(name, version, sources) -> dict
        github(name, version, repository_url) -> dict
        static_analysis(name, version, tarball_url) -> dict
    """

    metadata: SourceFetcher
    dependencies: Optional[SourceFetcher] = None
    vulnerabilities: Optional[SourceFetcher] = None
    github: Optional[SourceFetcher] = None
    static_analysis: Optional[SourceFetcher] = None
