"""
Dependencies collector - direct, dev and transitive dependencies from npm.

Direct and dev dependencies come from the resolved version's manifest. When
a depth is requested the transitive tree is expanded level by level down to
that depth. Ranges are resolved to the ``latest`` dist-tag (exact versions
are used as-is). A package@version seen earlier in the tree is returned as
an ``already_visited`` leaf, so cycles terminate.
"""

import asyncio
import logging
import re
from typing import Dict, List, Optional, Set

import httpx

from collectors.npm_collector import get_version_manifest
from shared.error_classification import describe_error
from shared.errors import CollectorError
from shared.gateway import ProviderGateway
from shared.rate_limiter import Provider

logger = logging.getLogger(__name__)

EXACT_VERSION = re.compile(r"^\d+\.\d+\.\d+(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?$")

# Upper bound on depth regardless of what the caller asks for
MAX_DEPENDENCY_DEPTH = 5


def _dependency_list(manifest: dict, field: str, dep_type: str) -> List[dict]:
    deps = manifest.get(field) or {}
    if not isinstance(deps, dict):
        return []
    return [
        {"name": dep_name, "version": version_range, "type": dep_type}
        for dep_name, version_range in sorted(deps.items())
    ]


class DependencyCollector:
    """Fetches dependency data through the npm registry rate window."""

    def __init__(self, gateway: ProviderGateway, client: Optional[httpx.AsyncClient] = None):
        self.gateway = gateway
        self.client = client

    async def _manifest(self, name: str, version: str) -> dict:
        return await self.gateway.call(
            Provider.NPM_REGISTRY, get_version_manifest, name, version, client=self.client
        )

    async def _resolve_child(self, name: str, version_range: str) -> dict:
        """Fetch the manifest a dependency range resolves to."""
        target = version_range if isinstance(version_range, str) and EXACT_VERSION.match(version_range) else "latest"
        return await self._manifest(name, target)

    async def build_tree(self, name: str, version: str, manifest: dict, max_depth: int) -> dict:
        """
        Expand the transitive tree below ``name@version`` to ``max_depth`` levels.

        A failed lookup for one node is recorded on that node and does not
        stop the rest of the tree.
        """
        root = {"name": name, "version": version, "depth": 0, "dependencies": []}
        visited: Set[str] = {f"{name}@{version}"}
        frontier = [(root, manifest)]
        total = 0
        depth_reached = 0

        for depth in range(1, max_depth + 1):
            children = []
            for node, node_manifest in frontier:
                for dep in _dependency_list(node_manifest, "dependencies", "transitive"):
                    child = {"name": dep["name"], "range": dep["version"], "depth": depth}
                    node["dependencies"].append(child)
                    children.append(child)
            if not children:
                break

            manifests = await asyncio.gather(
                *(self._resolve_child(child["name"], child["range"]) for child in children),
                return_exceptions=True,
            )

            next_frontier = []
            for child, child_manifest in zip(children, manifests):
                total += 1
                depth_reached = depth
                if isinstance(child_manifest, CollectorError):
                    child["error"] = describe_error(child_manifest).to_dict()
                    continue
                if isinstance(child_manifest, BaseException):
                    raise child_manifest

                child["version"] = child_manifest.get("version", child["range"])
                key = f"{child['name']}@{child['version']}"
                if key in visited:
                    child["already_visited"] = True
                    continue
                visited.add(key)
                child["dependencies"] = []
                next_frontier.append((child, child_manifest))

            frontier = next_frontier

        return {
            "tree": root,
            "statistics": {
                "totalTransitiveDependencies": total,
                "uniquePackages": len(visited) - 1,
                "maxDepthReached": depth_reached,
                "requestedDepth": max_depth,
            },
        }

    async def fetch(self, name: str, version: str, max_depth: int = 0) -> dict:
        """
        Collector entry point.

        Args:
            name: Package name
            version: Resolved version
            max_depth: Transitive depth; 0 returns direct dependencies only
        """
        manifest = await self._manifest(name, version)
        dependencies = _dependency_list(manifest, "dependencies", "direct")
        dev_dependencies = _dependency_list(manifest, "devDependencies", "dev")
        peer_dependencies = _dependency_list(manifest, "peerDependencies", "peer")

        result: Dict[str, object] = {
            "package": {"name": name, "version": version},
            "dependencies": dependencies,
            "devDependencies": dev_dependencies,
            "peerDependencies": peer_dependencies,
            "statistics": {
                "totalDependencies": len(dependencies),
                "totalDevDependencies": len(dev_dependencies),
                "totalPeerDependencies": len(peer_dependencies),
            },
        }

        depth = min(max(0, int(max_depth or 0)), MAX_DEPENDENCY_DEPTH)
        if depth > 0:
            tree = await self.build_tree(name, version, manifest, depth)
            result["transitive"] = tree["tree"]
            result["statistics"].update(tree["statistics"])
            logger.debug(
                f"Built dependency tree for {name}@{version}",
                extra={"package": name, "depth": depth, **tree["statistics"]},
            )

        return result
