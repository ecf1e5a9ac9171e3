"""Build pipeline, orchestrators, and the concurrent fan-out driver."""

from contract_forge.build.fanout import (
    build,
    build_target,
    install_interrupt_listener,
    prepare_package,
    resolve_destination,
)
from contract_forge.build.host import HostBuildOrchestrator
from contract_forge.build.orchestrator import BuildRun, SandboxBuildOrchestrator
from contract_forge.build.pipeline import (
    Pipeline,
    cargo_build_argv,
    host_pipeline,
    lock_requested,
    run_steps,
    sandbox_pipeline,
)

__all__ = [
    "BuildRun",
    "HostBuildOrchestrator",
    "Pipeline",
    "SandboxBuildOrchestrator",
    "build",
    "build_target",
    "cargo_build_argv",
    "host_pipeline",
    "install_interrupt_listener",
    "lock_requested",
    "prepare_package",
    "resolve_destination",
    "run_steps",
    "sandbox_pipeline",
]
