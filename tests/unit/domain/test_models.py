"""Unit tests for package, outcome, and report models."""

from __future__ import annotations

from pathlib import Path

import pytest
from hypothesis import given
from hypothesis import strategies as st

from contract_forge.domain.models import (
    BuildOptions,
    BuildOutcome,
    BuildReport,
    DependencyResolution,
    Package,
    PipelineStep,
    artifact_name,
)
from contract_forge.errors import (
    ArtifactCleanupError,
    ErrorKind,
    ForgeUsageError,
    ManifestNotFoundError,
)

_NAME_CHARS = st.text(
    alphabet="abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-_",
    min_size=1,
    max_size=40,
)


def test_artifact_name_replaces_hyphens() -> None:
    assert artifact_name("my-contract") == "my_contract.wasm"
    assert artifact_name("plain") == "plain.wasm"
    assert artifact_name("a-b-c", "bin") == "a_b_c.bin"


@given(_NAME_CHARS)
def test_artifact_name_never_contains_hyphens_or_spaces(name: str) -> None:
    result = artifact_name(name)

    assert result.endswith(".wasm")
    stem = result[: -len(".wasm")]
    assert "-" not in stem
    assert " " not in result
    assert len(stem) == len(name)


def test_package_from_manifest_derives_artifact(tmp_path: Path) -> None:
    package = Package.from_manifest(tmp_path, "hello-contract")

    assert package.source_path == tmp_path
    assert package.artifact == "hello_contract.wasm"


def test_build_options_reject_tag_with_sandboxless() -> None:
    with pytest.raises(ForgeUsageError):
        BuildOptions(sandboxless=True, image_tag="0.4.2")

    assert BuildOptions(sandboxless=True).image_tag is None


def test_pipeline_step_validation() -> None:
    with pytest.raises(ValueError, match="empty command"):
        PipelineStep(name="noop", workdir="/", argv=())
    with pytest.raises(ValueError, match="timeout"):
        PipelineStep(name="mv", workdir="/", argv=("mv",), timeout_seconds=0)

    bounded = PipelineStep(name="mv", workdir="/", argv=("mv", "a", "b"), timeout_seconds=1.0)
    assert bounded.bounded
    assert not PipelineStep(name="cargo", workdir="/", argv=("cargo",)).bounded


def test_outcome_requires_exactly_one_of_artifact_or_error(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        BuildOutcome(source_path=tmp_path, destination=tmp_path)
    with pytest.raises(ValueError):
        BuildOutcome(
            source_path=tmp_path,
            destination=tmp_path,
            artifact="a.wasm",
            error=ManifestNotFoundError(),
        )


def test_dependency_resolution_membership_and_order(tmp_path: Path) -> None:
    first, second = tmp_path / "b", tmp_path / "a"
    resolution = DependencyResolution(resolved=frozenset({first, second}))

    assert first in resolution
    assert tmp_path not in resolution
    assert len(resolution) == 2
    assert resolution.ordered() == (second, first)


def test_report_partitions_and_serializes(tmp_path: Path) -> None:
    dest = tmp_path / "out"
    ok = BuildOutcome.success(
        tmp_path / "a",
        dest,
        Package.from_manifest(tmp_path / "a", "pkg-a"),
        warnings=(ArtifactCleanupError("forge-abc12345", "busy"),),
    )
    bad = BuildOutcome.failure(tmp_path / "b", dest, ManifestNotFoundError())

    report = BuildReport.from_outcomes([ok, bad])

    assert report.mixed
    assert not report.all_succeeded
    payload = report.to_dict()
    assert payload["succeeded"] == [{"name": "pkg_a.wasm", "path": str(dest)}]
    failed = payload["failed"]
    assert isinstance(failed, list)
    assert failed[0]["kind"] == ErrorKind.MANIFEST_NOT_FOUND.value  # type: ignore[index]
    assert failed[0]["source"] == str(tmp_path / "b")  # type: ignore[index]
    warnings = payload["warnings"]
    assert isinstance(warnings, list)
    assert warnings[0]["sandbox"] == "forge-abc12345"  # type: ignore[index]
