"""Sandboxless builds: the same pipeline run with host tools in a scratch directory."""

from __future__ import annotations

import asyncio
import contextlib
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from contract_forge.build.orchestrator import BuildRun
from contract_forge.build.pipeline import host_pipeline, lock_requested, run_steps
from contract_forge.constants import LOCK_FILENAME
from contract_forge.domain.models import BuildOutcome, BuildState
from contract_forge.errors import (
    BuildFailedError,
    BuildFailedWithLogsError,
    BuildInterruptedError,
    ForgeError,
    ScratchDirectoryError,
)
from contract_forge.manifests.resolver import resolve_dependencies
from contract_forge.observability.logging import correlation_scope
from contract_forge.sandbox.host_runner import HostCommandRunner
from contract_forge.sandbox.transport import write_files
from contract_forge.utils.concurrency import OperationCancelled, run_cancellable
from contract_forge.utils.fs import scratch_directory

if TYPE_CHECKING:
    from contract_forge.config.schema import ForgeSettings
    from contract_forge.domain.models import Package, PipelineStep
    from contract_forge.sandbox.transport import RetrievedFile
    from contract_forge.utils.concurrency import CancellationToken

HOST_RUN_LABEL = "host"


class HostBuildOrchestrator:
    """Build packages with the host toolchain instead of a sandbox.

    Follows the sandbox state machine without the transfer states: the scratch directory
    takes the place of the sandbox and is removed on every exit path.
    """

    def __init__(
        self,
        settings: ForgeSettings,
        *,
        cancel_token: CancellationToken | None = None,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings
        self._cancel_token = cancel_token
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    async def build(
        self,
        package: Package,
        destination: Path,
        *,
        lock_dependency_versions: bool = False,
    ) -> BuildOutcome:
        run = BuildRun(package, HOST_RUN_LABEL, self._logger)
        error: ForgeError | None = None

        with correlation_scope(package=package.name, sandbox=HOST_RUN_LABEL):
            try:
                await run_cancellable(
                    self._run_pipeline(run, destination, lock_dependency_versions),
                    self._cancel_token,
                    grace_seconds=self._settings.sandbox.cancel_grace_seconds,
                )
            except OperationCancelled as exc:
                error = BuildInterruptedError(f"build of {package.name} interrupted: {exc}")
            except ForgeError as exc:
                error = exc

            if error is not None:
                run.fail(error)
                return BuildOutcome.failure(
                    package.source_path, destination, error, package_name=package.name
                )
            run.advance(BuildState.DONE, artifact=package.artifact)
            return BuildOutcome.success(package.source_path, destination, package)

    async def _run_pipeline(
        self, run: BuildRun, destination: Path, lock_dependency_versions: bool
    ) -> None:
        package = run.package
        resolution = await asyncio.to_thread(resolve_dependencies, package.source_path)
        run.advance(
            BuildState.DEPENDENCIES_RESOLVED,
            dependencies=len(resolution),
            ignored=len(resolution.ignored),
        )

        with contextlib.ExitStack() as stack:
            try:
                scratch = stack.enter_context(scratch_directory())
            except OSError as exc:
                raise ScratchDirectoryError(f"cannot create scratch directory: {exc}") from exc
            run.advance(BuildState.SANDBOX_READY, scratch=str(scratch))

            runner = HostCommandRunner(
                (package.source_path, scratch),
                default_timeout_seconds=self._settings.sandbox.step_timeout_seconds,
            )
            locked = lock_requested(package, lock_dependency_versions)
            pipeline = host_pipeline(package, self._settings, scratch, locked=locked)

            async def run_step(step: PipelineStep) -> str:
                self._checkpoint()
                return await runner.run(step)

            build_log = await run_steps(pipeline.steps, run_step)
            run.advance(BuildState.BUILT, locked=locked)

            files = _collect_outputs(package, Path(pipeline.output_location), locked=locked)
            if not files:
                raise BuildFailedWithLogsError(
                    build_log or f"{pipeline.output_location} was empty after the build"
                )
            written = await asyncio.to_thread(write_files, files, destination)
            run.advance(BuildState.ARTIFACT_RETRIEVED, files=[path.name for path in written])

    def _checkpoint(self) -> None:
        token = self._cancel_token
        if token is not None and token.is_cancelled:
            raise BuildInterruptedError(f"build interrupted: {token.reason}")


def _collect_outputs(package: Package, optimized: Path, *, locked: bool) -> list[RetrievedFile]:
    if not optimized.is_file() or optimized.stat().st_size == 0:
        return []
    sources = [(package.artifact, optimized)]
    lock_file = package.source_path / LOCK_FILENAME
    if locked and lock_file.is_file():
        sources.append((LOCK_FILENAME, lock_file))

    files: list[RetrievedFile] = []
    for name, path in sources:
        try:
            files.append((name, path.read_bytes()))
        except OSError as exc:
            raise BuildFailedError(f"cannot read {path}: {exc}") from exc
    return files


__all__ = ["HostBuildOrchestrator"]
