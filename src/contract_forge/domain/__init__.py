"""Domain types shared by the resolver, sandbox, and build layers."""

from contract_forge.domain.models import (
    BuildOptions,
    BuildOutcome,
    BuildReport,
    BuildState,
    DependencyResolution,
    Package,
    PipelineStep,
    UnresolvedDependency,
    artifact_name,
)

__all__ = [
    "BuildOptions",
    "BuildOutcome",
    "BuildReport",
    "BuildState",
    "DependencyResolution",
    "Package",
    "PipelineStep",
    "UnresolvedDependency",
    "artifact_name",
]
