"""Frozen dataclass models for packages, pipeline steps, and build outcomes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from contract_forge.constants import DEFAULT_ARTIFACT_EXTENSION
from contract_forge.errors import ArtifactCleanupError, ForgeError, ForgeUsageError

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]


class BuildState(StrEnum):
    INIT = "init"
    DEPENDENCIES_RESOLVED = "dependencies_resolved"
    SANDBOX_READY = "sandbox_ready"
    SOURCE_TRANSFERRED = "source_transferred"
    BUILT = "built"
    ARTIFACT_RETRIEVED = "artifact_retrieved"
    DONE = "done"
    FAILED = "failed"


def artifact_name(package_name: str, extension: str = DEFAULT_ARTIFACT_EXTENSION) -> str:
    """Return the output filename for ``package_name`` (``my-contract`` -> ``my_contract.wasm``)."""

    return f"{package_name.replace('-', '_')}.{extension}"


@dataclass(frozen=True, slots=True)
class Package:
    """One buildable unit rooted at an absolute source directory."""

    source_path: Path
    name: str
    artifact: str

    @classmethod
    def from_manifest(
        cls,
        source_path: Path,
        name: str,
        *,
        extension: str = DEFAULT_ARTIFACT_EXTENSION,
    ) -> Package:
        return cls(source_path=source_path, name=name, artifact=artifact_name(name, extension))


@dataclass(frozen=True, slots=True)
class UnresolvedDependency:
    """A local dependency whose own manifest could not be followed."""

    manifest_dir: Path
    name: str
    declared_path: str
    reason: str


@dataclass(frozen=True, slots=True)
class DependencyResolution:
    """Local path-dependencies reachable from a package manifest.

    ``resolved`` never contains the package root itself. ``ignored`` lists entries that were
    skipped while recursing into dependency manifests; those failures do not fail the build.
    """

    resolved: frozenset[Path] = frozenset()
    ignored: tuple[UnresolvedDependency, ...] = ()

    def __contains__(self, item: object) -> bool:
        return item in self.resolved

    def __len__(self) -> int:
        return len(self.resolved)

    def ordered(self) -> tuple[Path, ...]:
        """Resolved paths in a stable order for transfer."""

        return tuple(sorted(self.resolved))


@dataclass(frozen=True, slots=True)
class PipelineStep:
    """One command of the fixed build sequence."""

    name: str
    workdir: str
    argv: tuple[str, ...]
    capture_output: bool = False
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        if not self.argv:
            raise ValueError(f"pipeline step {self.name!r} has an empty command")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError(f"pipeline step {self.name!r} timeout must be > 0")

    @property
    def bounded(self) -> bool:
        return self.timeout_seconds is not None


@dataclass(frozen=True, slots=True)
class BuildOptions:
    """Per-run build options shared by every requested package."""

    sandboxless: bool = False
    image_tag: str | None = None
    lock_dependency_versions: bool = False

    def __post_init__(self) -> None:
        if self.sandboxless and self.image_tag is not None:
            raise ForgeUsageError("an image tag cannot be combined with a sandboxless build")


@dataclass(frozen=True, slots=True)
class BuildOutcome:
    """Result of building one requested package."""

    source_path: Path
    destination: Path
    package_name: str | None = None
    artifact: str | None = None
    error: ForgeError | None = None
    warnings: tuple[ForgeError, ...] = ()

    def __post_init__(self) -> None:
        if (self.artifact is None) == (self.error is None):
            raise ValueError("a build outcome carries exactly one of artifact or error")

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @classmethod
    def success(
        cls,
        source_path: Path,
        destination: Path,
        package: Package,
        *,
        warnings: tuple[ForgeError, ...] = (),
    ) -> BuildOutcome:
        return cls(
            source_path=source_path,
            destination=destination,
            package_name=package.name,
            artifact=package.artifact,
            warnings=warnings,
        )

    @classmethod
    def failure(
        cls,
        source_path: Path,
        destination: Path,
        error: ForgeError,
        *,
        package_name: str | None = None,
        warnings: tuple[ForgeError, ...] = (),
    ) -> BuildOutcome:
        return cls(
            source_path=source_path,
            destination=destination,
            package_name=package_name,
            error=error,
            warnings=warnings,
        )


@dataclass(frozen=True, slots=True)
class BuildReport:
    """Partitioned outcomes of a fan-out run, in completion order."""

    succeeded: tuple[BuildOutcome, ...] = ()
    failed: tuple[BuildOutcome, ...] = ()
    warnings: tuple[ForgeError, ...] = ()

    @classmethod
    def from_outcomes(cls, outcomes: list[BuildOutcome] | tuple[BuildOutcome, ...]) -> BuildReport:
        succeeded = tuple(item for item in outcomes if item.succeeded)
        failed = tuple(item for item in outcomes if not item.succeeded)
        warnings = tuple(warning for item in outcomes for warning in item.warnings)
        return cls(succeeded=succeeded, failed=failed, warnings=warnings)

    @property
    def mixed(self) -> bool:
        return bool(self.succeeded) and bool(self.failed)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "succeeded": [
                {"name": item.artifact, "path": str(item.destination)} for item in self.succeeded
            ],
            "failed": [
                {
                    "kind": item.error.kind.value if item.error is not None else None,
                    "source": str(item.source_path),
                    "detail": item.error.detail if item.error is not None else None,
                }
                for item in self.failed
            ],
            "warnings": [
                {
                    "kind": warning.kind.value,
                    "sandbox": warning.sandbox_name
                    if isinstance(warning, ArtifactCleanupError)
                    else None,
                    "detail": warning.detail,
                }
                for warning in self.warnings
            ],
        }


__all__ = [
    "BuildOptions",
    "BuildOutcome",
    "BuildReport",
    "BuildState",
    "DependencyResolution",
    "JSONValue",
    "Package",
    "PipelineStep",
    "UnresolvedDependency",
    "artifact_name",
]
