"""Tests for collection result and batch models."""

import dataclasses

import pytest

from collectors.models import (
    AspectSkipped,
    BatchFailure,
    BatchItem,
    BatchResult,
    CollectionOptions,
    CollectionResult,
    Confidence,
    Label,
    PackageRecord,
)
from shared.error_classification import ErrorDescriptor


def _result(**aspects):
    return CollectionResult(
        package_name="left-pad",
        version="1.3.0",
        requested_version="latest",
        collected_at="2024-01-01T00:00:00+00:00",
        metadata={"name": "left-pad", "license": "WTFPL"},
        per_aspect_data=aspects,
    )


class TestCollectionResult:
    def test_is_immutable(self):
        result = _result(dependencies={"dependencies": {}})

        with pytest.raises(dataclasses.FrozenInstanceError):
            result.version = "2.0.0"
        with pytest.raises(TypeError):
            result.per_aspect_data["github"] = {}
        with pytest.raises(TypeError):
            result.metadata["license"] = "MIT"

    def test_errors_and_completeness(self):
        failure = ErrorDescriptor("transient", "HTTP 503", "osv")
        result = _result(dependencies={}, vulnerabilities=failure, github=AspectSkipped("no repo"))

        assert result.errors == {"vulnerabilities": failure}
        assert not result.is_complete()
        assert _result(dependencies={}).is_complete()

    def test_to_dict_renders_aspects(self):
        result = _result(
            dependencies={"dependencies": {"a": "1.0.0"}},
            vulnerabilities=ErrorDescriptor("transient", "HTTP 503", "osv"),
            github=AspectSkipped("No repository URL"),
        )

        data = result.to_dict()

        assert data["packageName"] == "left-pad"
        assert data["requestedVersion"] == "latest"
        assert data["data"]["metadata"]["license"] == "WTFPL"
        assert data["data"]["dependencies"] == {"dependencies": {"a": "1.0.0"}}
        assert data["data"]["vulnerabilities"] == {
            "error": {"kind": "transient", "message": "HTTP 503", "provider": "osv"}
        }
        assert data["data"]["github"] == {"skipped": True, "reason": "No repository URL"}
        assert "staticAnalysis" not in data["data"]


class TestCollectionOptions:
    def test_defaults(self):
        options = CollectionOptions.from_dict(None)
        assert options.include_dependencies
        assert options.include_github
        assert not options.include_static_analysis
        assert options.vulnerability_sources == "all"

    def test_camel_case_keys(self):
        options = CollectionOptions.from_dict(
            {"includeGitHubData": False, "vulnerabilitySources": "osv", "dependencyDepth": 2}
        )
        assert options.include_github is False
        assert options.vulnerability_sources == "osv"
        assert options.dependency_depth == 2


class TestBatchModels:
    def test_batch_item_defaults_to_latest(self):
        assert BatchItem.from_dict({"name": "lodash"}) == BatchItem("lodash", "latest")
        assert str(BatchItem("lodash", "4.17.21")) == "lodash@4.17.21"

    def test_batch_result_summary(self):
        failure = BatchFailure(BatchItem("missing-pkg"), ErrorDescriptor("fatal_metadata", "not found"))
        batch = BatchResult(successes=(_result(),), failures=(failure,))

        assert batch.summary == {"total": 2, "successful": 1, "failed": 1}
        data = batch.to_dict()
        assert data["errors"][0]["package"] == {"name": "missing-pkg", "version": "latest"}
        assert data["errors"][0]["error"]["kind"] == "fatal_metadata"


class TestPackageRecord:
    def test_to_dict(self):
        record = PackageRecord.from_source(
            "crossenv", "1.0.0", Label.MALICIOUS, "osv", Confidence.HIGH, advisory="MAL-2023-1"
        )
        assert record.to_dict() == {
            "name": "crossenv",
            "version": "1.0.0",
            "label": "malicious",
            "sources": ["osv"],
            "confidence": "high",
            "advisory": "MAL-2023-1",
        }

    def test_confidence_ordering(self):
        assert Confidence.highest(Confidence.LOW, Confidence.VERY_HIGH, Confidence.HIGH) is Confidence.VERY_HIGH
