"""
npm Registry collector - authoritative metadata source.

Resolves the requested version (``latest``, a dist-tag or an exact version)
and extracts the fields later collection steps depend on:
- Resolved version
- Repository URL (for GitHub collection)
- Tarball URL (for static analysis)
- Normalized license
- Install scripts and deprecation status

Rate limit: ~100 requests/minute (undocumented but conservative)
"""

import logging
from typing import Optional

import httpx

from collectors.http_client import get_http_client, request_json
from collectors.licenses import license_compatibility, normalize_license
from shared.constants import NPM_API, NPM_REGISTRY
from shared.errors import MalformedResponseError, NotFoundError
from shared.rate_limiter import Provider

logger = logging.getLogger(__name__)

INSTALL_SCRIPT_HOOKS = ("preinstall", "install", "postinstall")


def encode_scoped_package(name: str) -> str:
    """
    URL-encode scoped npm package names for the registry API.

    Scoped packages like @babel/core need the forward slash encoded:
    @babel/core -> @babel%2Fcore

    Note: The @ symbol should NOT be encoded for npm registry.
    """
    if name.startswith("@") and "/" in name:
        scope, package_name = name.split("/", 1)
        return f"{scope}%2F{package_name}"
    return name


def clean_repository_url(repository) -> Optional[str]:
    """Turn a manifest ``repository`` field into a browsable URL."""
    if isinstance(repository, dict):
        repository = repository.get("url")
    if not isinstance(repository, str) or not repository.strip():
        return None

    url = repository.strip()
    if url.startswith("github:"):
        url = "https://github.com/" + url[len("github:"):]
    elif "://" not in url and url.count("/") == 1 and not url.startswith("git@"):
        # Shorthand "owner/repo" means GitHub
        url = f"https://github.com/{url}"

    url = url.replace("git+", "").replace("git://", "https://")
    if url.startswith("git@github.com:"):
        url = "https://github.com/" + url[len("git@github.com:"):]
    if url.startswith("ssh://git@"):
        url = "https://" + url[len("ssh://git@"):]
    if url.endswith(".git"):
        url = url[:-4]
    return url


def resolve_version(document: dict, name: str, version: Optional[str]) -> str:
    """
    Resolve ``version`` against a registry document.

    ``latest`` (or empty) and other dist-tags map through ``dist-tags``;
    anything else must be an exact published version.
    """
    dist_tags = document.get("dist-tags") or {}
    versions = document.get("versions") or {}
    requested = version or "latest"

    if requested in dist_tags:
        resolved = dist_tags[requested]
    elif requested == "latest":
        # Some unpublished/odd documents lack dist-tags; fall back to the last version
        if not versions:
            raise MalformedResponseError(
                f"No versions published for {name}", provider=Provider.NPM_REGISTRY.value
            )
        resolved = list(versions)[-1]
    else:
        resolved = requested

    if resolved not in versions:
        raise NotFoundError(
            f"Version {requested} not found for package {name}",
            provider=Provider.NPM_REGISTRY.value,
        )
    return resolved


def _install_scripts(version_data: dict) -> dict:
    scripts = version_data.get("scripts") or {}
    if not isinstance(scripts, dict):
        return {}
    return {hook: scripts[hook] for hook in INSTALL_SCRIPT_HOOKS if hook in scripts}


async def get_npm_metadata(
    name: str,
    version: Optional[str] = "latest",
    client: Optional[httpx.AsyncClient] = None,
) -> dict:
    """
    Fetch npm metadata for one version of a package.

    Args:
        name: Package name (e.g., "lodash" or "@babel/core")
        version: "latest", a dist-tag, or an exact version

    Returns:
        Dictionary with the resolved version and the fields later steps use.

    Raises:
        NotFoundError: package or version does not exist
        MalformedResponseError: registry document has an unexpected shape
    """
    client = client or get_http_client()
    url = f"{NPM_REGISTRY}/{encode_scoped_package(name)}"
    document = await request_json(
        client,
        "GET",
        url,
        provider=Provider.NPM_REGISTRY.value,
        headers={"Accept": "application/json"},
    )

    if not isinstance(document, dict) or not isinstance(document.get("versions", {}), dict):
        raise MalformedResponseError(
            f"Unexpected registry document for {name}", provider=Provider.NPM_REGISTRY.value
        )

    resolved = resolve_version(document, name, version)
    version_data = document["versions"][resolved] or {}
    dist = version_data.get("dist") or {}
    time_data = document.get("time") or {}
    deprecated = version_data.get("deprecated")
    maintainers = [
        m.get("name") for m in document.get("maintainers") or [] if isinstance(m, dict) and m.get("name")
    ]

    license_name = normalize_license(version_data.get("license") or document.get("license"))

    return {
        "name": document.get("name", name),
        "requested_version": version or "latest",
        "resolved_version": resolved,
        "description": version_data.get("description") or document.get("description") or "",
        "repository_url": clean_repository_url(
            version_data.get("repository") or document.get("repository")
        ),
        "homepage": version_data.get("homepage") or document.get("homepage"),
        "license": license_name,
        "license_compatibility": license_compatibility(license_name),
        "keywords": version_data.get("keywords") or document.get("keywords") or [],
        "maintainers": maintainers,
        "maintainer_count": len(maintainers),
        "tarball_url": dist.get("tarball"),
        "integrity": dist.get("integrity") or dist.get("shasum"),
        "published_at": time_data.get(resolved),
        "created_at": time_data.get("created"),
        "dist_tags": document.get("dist-tags") or {},
        "version_count": len(document.get("versions") or {}),
        "is_deprecated": bool(deprecated),
        "deprecation_message": deprecated if isinstance(deprecated, str) else None,
        "install_scripts": _install_scripts(version_data),
        "source": "npm",
    }


async def get_version_manifest(
    name: str,
    version: str,
    client: Optional[httpx.AsyncClient] = None,
) -> dict:
    """Fetch the manifest of one published version (``/{name}/{version}``)."""
    client = client or get_http_client()
    url = f"{NPM_REGISTRY}/{encode_scoped_package(name)}/{version}"
    manifest = await request_json(
        client,
        "GET",
        url,
        provider=Provider.NPM_REGISTRY.value,
        headers={"Accept": "application/json"},
    )
    if not isinstance(manifest, dict):
        raise MalformedResponseError(
            f"Unexpected manifest for {name}@{version}", provider=Provider.NPM_REGISTRY.value
        )
    return manifest


async def get_download_stats(
    name: str,
    period: str = "last-week",
    client: Optional[httpx.AsyncClient] = None,
) -> dict:
    """
    Get download statistics for a package.

    Args:
        name: Package name
        period: Time period (last-day, last-week, last-month, last-year)
    """
    client = client or get_http_client()
    url = f"{NPM_API}/downloads/point/{period}/{name}"
    data = await request_json(client, "GET", url, provider=Provider.NPM_DOWNLOADS.value)
    if not isinstance(data, dict):
        raise MalformedResponseError(
            f"Unexpected download stats for {name}", provider=Provider.NPM_DOWNLOADS.value
        )
    return {
        "package": name,
        "downloads": data.get("downloads", 0),
        "start": data.get("start"),
        "end": data.get("end"),
    }
