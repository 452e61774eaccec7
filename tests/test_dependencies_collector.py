"""
Tests for the dependencies collector.
"""

import httpx
import pytest

from collectors.dependencies_collector import MAX_DEPENDENCY_DEPTH, DependencyCollector

# name -> {version -> manifest}; "latest" resolves to the last entry
REGISTRY = {
    "app": {
        "1.0.0": {
            "name": "app",
            "version": "1.0.0",
            "dependencies": {"a": "^1.0.0", "b": "2.0.0"},
            "devDependencies": {"jest": "^29.0.0"},
            "peerDependencies": {"react": ">=17"},
        }
    },
    "a": {"1.2.0": {"name": "a", "version": "1.2.0", "dependencies": {"c": "^3.0.0"}}},
    "b": {"2.0.0": {"name": "b", "version": "2.0.0", "dependencies": {"c": "3.1.0"}}},
    # c depends back on a, closing a cycle
    "c": {"3.1.0": {"name": "c", "version": "3.1.0", "dependencies": {"a": "1.2.0"}}},
}


def registry_handler(missing=(), failing=()):
    requested = []

    def handler(request):
        _, name, version = request.url.path.split("/")
        requested.append(f"{name}@{version}")
        if name in failing:
            return httpx.Response(503)
        if name in missing or name not in REGISTRY:
            return httpx.Response(404)
        versions = REGISTRY[name]
        if version == "latest":
            version = list(versions)[-1]
        if version not in versions:
            return httpx.Response(404)
        return httpx.Response(200, json=versions[version])

    handler.requested = requested
    return handler


class TestDirectDependencies:
    @pytest.mark.asyncio
    async def test_direct_dev_and_peer(self, gateway, mock_client_factory):
        async with mock_client_factory(registry_handler()) as client:
            result = await DependencyCollector(gateway, client).fetch("app", "1.0.0")

        assert result["package"] == {"name": "app", "version": "1.0.0"}
        assert result["dependencies"] == [
            {"name": "a", "version": "^1.0.0", "type": "direct"},
            {"name": "b", "version": "2.0.0", "type": "direct"},
        ]
        assert result["devDependencies"] == [{"name": "jest", "version": "^29.0.0", "type": "dev"}]
        assert result["peerDependencies"] == [{"name": "react", "version": ">=17", "type": "peer"}]
        assert result["statistics"]["totalDependencies"] == 2
        assert "transitive" not in result

    @pytest.mark.asyncio
    async def test_no_dependencies(self, gateway, mock_client_factory):
        async with mock_client_factory(registry_handler()) as client:
            result = await DependencyCollector(gateway, client).fetch("c", "3.1.0")

        assert result["devDependencies"] == []
        assert result["statistics"]["totalDevDependencies"] == 0


class TestTransitiveTree:
    @pytest.mark.asyncio
    async def test_ranges_resolve_to_latest_and_exact_versions_are_kept(self, gateway, mock_client_factory):
        handler = registry_handler()
        async with mock_client_factory(handler) as client:
            await DependencyCollector(gateway, client).fetch("app", "1.0.0", max_depth=1)

        assert "a@latest" in handler.requested
        assert "b@2.0.0" in handler.requested

    @pytest.mark.asyncio
    async def test_cycles_terminate(self, gateway, mock_client_factory):
        async with mock_client_factory(registry_handler()) as client:
            result = await DependencyCollector(gateway, client).fetch("app", "1.0.0", max_depth=5)

        tree = result["transitive"]
        a, b = tree["dependencies"]
        assert a["version"] == "1.2.0"
        c_under_a = a["dependencies"][0]
        assert c_under_a["name"] == "c"
        # b's c@3.1.0 was already expanded under a
        c_under_b = b["dependencies"][0]
        assert c_under_b["already_visited"] is True
        # c -> a closes the cycle
        assert c_under_a["dependencies"][0]["already_visited"] is True

        stats = result["statistics"]
        assert stats["uniquePackages"] == 3
        assert stats["requestedDepth"] == 5
        assert stats["maxDepthReached"] == 3

    @pytest.mark.asyncio
    async def test_failed_node_is_recorded(self, gateway, mock_client_factory):
        async with mock_client_factory(registry_handler(missing={"b"})) as client:
            result = await DependencyCollector(gateway, client).fetch("app", "1.0.0", max_depth=1)

        a, b = result["transitive"]["dependencies"]
        assert "error" not in a
        assert b["error"]["kind"] == "not_found"

    @pytest.mark.asyncio
    async def test_depth_is_capped(self, gateway, mock_client_factory):
        async with mock_client_factory(registry_handler()) as client:
            result = await DependencyCollector(gateway, client).fetch("app", "1.0.0", max_depth=50)

        assert result["statistics"]["requestedDepth"] == MAX_DEPENDENCY_DEPTH

    @pytest.mark.asyncio
    async def test_root_manifest_failure_raises(self, gateway, mock_client_factory):
        from shared.errors import NotFoundError

        async with mock_client_factory(registry_handler()) as client:
            with pytest.raises(NotFoundError):
                await DependencyCollector(gateway, client).fetch("app", "9.9.9")
