"""Sandbox build orchestration for a single package.

One :meth:`SandboxBuildOrchestrator.build` call walks the package through
``init -> dependencies_resolved -> sandbox_ready -> source_transferred -> built ->
artifact_retrieved -> done``; any failure moves it to ``failed``. Once a sandbox start
has been attempted the sandbox is removed exactly once on every exit path, including
cancellation. A removal failure is attached to the outcome as a warning and never
changes whether the build succeeded.

State transitions are emitted as ``structlog`` events so they land in the same sinks as
the rest of the run.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import structlog

from contract_forge.build.pipeline import lock_requested, run_steps, sandbox_pipeline
from contract_forge.domain.models import BuildOutcome, BuildState
from contract_forge.errors import BuildFailedWithLogsError, BuildInterruptedError, ForgeError
from contract_forge.manifests.resolver import resolve_dependencies
from contract_forge.observability.logging import correlation_scope
from contract_forge.sandbox import transport
from contract_forge.sandbox.executor import CommandExecutor
from contract_forge.sandbox.lifecycle import SandboxLifecycle, random_sandbox_name
from contract_forge.utils.concurrency import OperationCancelled, run_cancellable

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from docker import APIClient

    from contract_forge.config.schema import ForgeSettings
    from contract_forge.domain.models import Package, PipelineStep
    from contract_forge.errors import ArtifactCleanupError
    from contract_forge.sandbox.lifecycle import SandboxHandle
    from contract_forge.utils.concurrency import CancellationToken


class BuildRun:
    """Mutable progress of one orchestration, shared with its cancellable task."""

    def __init__(self, package: Package, sandbox_name: str, logger: Any) -> None:
        self.package = package
        self.sandbox_name = sandbox_name
        self.state = BuildState.INIT
        self.start_attempted = False
        self.start_task: asyncio.Future[SandboxHandle] | None = None
        self._logger = logger

    def advance(self, state: BuildState, **fields: object) -> None:
        self._logger.info(
            "build_state_transition",
            package=self.package.name,
            sandbox=self.sandbox_name,
            previous=self.state.value,
            state=state.value,
            **fields,
        )
        self.state = state

    def fail(self, error: ForgeError) -> None:
        self._logger.warning(
            "build_failed",
            package=self.package.name,
            sandbox=self.sandbox_name,
            previous=self.state.value,
            state=BuildState.FAILED.value,
            kind=error.kind.value,
        )
        self.state = BuildState.FAILED


class SandboxBuildOrchestrator:
    """Build packages inside disposable sandboxes.

    The API client is shared read-only by concurrent ``build`` calls; every call owns its
    own sandbox name and never touches another call's sandbox.
    """

    def __init__(
        self,
        api: APIClient,
        settings: ForgeSettings,
        *,
        cancel_token: CancellationToken | None = None,
        logger: Any | None = None,
        name_factory: Callable[[], str] = random_sandbox_name,
    ) -> None:
        self._api = api
        self._settings = settings
        self._cancel_token = cancel_token
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._name_factory = name_factory
        self._lifecycle = SandboxLifecycle(api, label=settings.sandbox.label)
        self._executor = CommandExecutor(
            api, poll_interval_seconds=settings.sandbox.poll_interval_seconds
        )

    @property
    def lifecycle(self) -> SandboxLifecycle:
        return self._lifecycle

    async def build(
        self,
        package: Package,
        destination: Path,
        *,
        image_tag: str,
        lock_dependency_versions: bool = False,
    ) -> BuildOutcome:
        run = BuildRun(package, self._name_factory(), self._logger)
        error: ForgeError | None = None
        warnings: tuple[ForgeError, ...] = ()

        with correlation_scope(package=package.name, sandbox=run.sandbox_name):
            try:
                await run_cancellable(
                    self._run_pipeline(run, destination, image_tag, lock_dependency_versions),
                    self._cancel_token,
                    grace_seconds=self._settings.sandbox.cancel_grace_seconds,
                )
            except OperationCancelled as exc:
                error = BuildInterruptedError(f"build of {package.name} interrupted: {exc}")
            except ForgeError as exc:
                error = exc
            finally:
                if run.start_attempted:
                    warnings = await self._cleanup(run)

            if error is not None:
                run.fail(error)
                return BuildOutcome.failure(
                    package.source_path,
                    destination,
                    error,
                    package_name=package.name,
                    warnings=warnings,
                )
            run.advance(BuildState.DONE, artifact=package.artifact)
            return BuildOutcome.success(
                package.source_path, destination, package, warnings=warnings
            )

    async def _run_pipeline(
        self,
        run: BuildRun,
        destination: Path,
        image_tag: str,
        lock_dependency_versions: bool,
    ) -> None:
        package = run.package
        resolution = await asyncio.to_thread(resolve_dependencies, package.source_path)
        run.advance(
            BuildState.DEPENDENCIES_RESOLVED,
            dependencies=len(resolution),
            ignored=len(resolution.ignored),
        )

        self._checkpoint()
        image = await self._lifecycle.pull(self._settings.sandbox.image_repository, image_tag)
        run.start_attempted = True
        # Cancellation must not abandon the worker thread that is creating the container.
        run.start_task = asyncio.ensure_future(self._lifecycle.start(run.sandbox_name, image))
        await asyncio.shield(run.start_task)
        run.advance(BuildState.SANDBOX_READY, image=image.reference)

        for directory in (*resolution.ordered(), package.source_path):
            self._checkpoint()
            await transport.push(self._api, run.sandbox_name, directory)
        run.advance(BuildState.SOURCE_TRANSFERRED)

        locked = lock_requested(package, lock_dependency_versions)
        pipeline = sandbox_pipeline(package, self._settings, locked=locked)

        async def run_step(step: PipelineStep) -> str:
            self._checkpoint()
            return await self._executor.execute(run.sandbox_name, step)

        build_log = await run_steps(pipeline.steps, run_step)
        run.advance(BuildState.BUILT, locked=locked)

        self._checkpoint()
        files = await transport.pull(self._api, run.sandbox_name, pipeline.output_location)
        if not files:
            raise BuildFailedWithLogsError(
                build_log or f"{pipeline.output_location} was empty after the build"
            )
        written = await asyncio.to_thread(transport.write_files, files, destination)
        run.advance(BuildState.ARTIFACT_RETRIEVED, files=[path.name for path in written])

    async def _cleanup(self, run: BuildRun) -> tuple[ForgeError, ...]:
        # Shielded so a second cancellation cannot interrupt removal half-way.
        failure = await asyncio.shield(self._remove_after_start(run))
        if failure is None:
            self._logger.debug("sandbox_removed", sandbox=run.sandbox_name)
            return ()
        self._logger.warning(
            "sandbox_cleanup_failed", sandbox=run.sandbox_name, reason=failure.reason
        )
        return (failure,)

    async def _remove_after_start(self, run: BuildRun) -> ArtifactCleanupError | None:
        starting = run.start_task
        if starting is not None:
            await asyncio.wait({starting})
            if not starting.cancelled() and starting.exception() is not None:
                self._logger.debug("sandbox_start_failed", sandbox=run.sandbox_name)
        return await self._lifecycle.remove(run.sandbox_name)

    def _checkpoint(self) -> None:
        token = self._cancel_token
        if token is not None and token.is_cancelled:
            raise BuildInterruptedError(f"build interrupted: {token.reason}")


__all__ = ["BuildRun", "SandboxBuildOrchestrator"]
