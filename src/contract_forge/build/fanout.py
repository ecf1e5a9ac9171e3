"""Concurrent fan-out of package builds and the public ``build`` entry points."""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from typing import TYPE_CHECKING, Any

from contract_forge.build.host import HostBuildOrchestrator
from contract_forge.build.orchestrator import SandboxBuildOrchestrator
from contract_forge.config.schema import ForgeSettings
from contract_forge.domain.models import BuildOptions, BuildOutcome, BuildReport, Package
from contract_forge.errors import (
    ForgeError,
    ForgeUsageError,
    InvalidDestinationPathError,
    InvalidSourcePathError,
)
from contract_forge.manifests.reader import InvalidPathError, absolute_writable_path, read_manifest
from contract_forge.sandbox.lifecycle import connect, select_image_tag
from contract_forge.utils.concurrency import WorkerPool

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from docker import APIClient

    from contract_forge.utils.concurrency import CancellationToken

logger = logging.getLogger(__name__)

PathInput = str | Path
Orchestrator = SandboxBuildOrchestrator | HostBuildOrchestrator


def resolve_destination(destination: PathInput | None) -> Path:
    """Create ``destination`` (default: the working directory) and return it as absolute."""

    target = Path.cwd() if destination is None else Path(destination)
    try:
        target.mkdir(parents=True, exist_ok=True)
        return absolute_writable_path(target)
    except (OSError, InvalidPathError) as exc:
        raise InvalidDestinationPathError(f"{target}: {exc}") from exc


def prepare_package(source: PathInput, settings: ForgeSettings) -> Package:
    """Validate a requested source directory and derive its :class:`Package`."""

    try:
        source_path = absolute_writable_path(source)
    except InvalidPathError as exc:
        raise InvalidSourcePathError(str(exc)) from exc
    manifest = read_manifest(source_path)
    return Package.from_manifest(
        source_path, manifest.package_name, extension=settings.artifact_extension
    )


async def build(
    source_paths: Iterable[PathInput],
    destination: PathInput | None = None,
    options: BuildOptions | None = None,
    *,
    settings: ForgeSettings | None = None,
    api: APIClient | None = None,
    cancel_token: CancellationToken | None = None,
    event_logger: Any | None = None,
) -> BuildReport:
    """Build every package in ``source_paths`` concurrently and report all outcomes.

    Failures are per package: each ends up in ``BuildReport.failed`` while sibling builds
    carry on. Raises :class:`ForgeUsageError` only for invocations that never reach a build,
    such as an empty ``source_paths``.
    """

    sources = list(source_paths)
    if not sources:
        raise ForgeUsageError("at least one source path is required")
    options = options if options is not None else BuildOptions()
    settings = settings if settings is not None else ForgeSettings.defaults()

    image_tag: str | None = None
    backend_error: ForgeError | None = None
    orchestrator: Orchestrator | None = None
    try:
        if options.sandboxless:
            orchestrator = HostBuildOrchestrator(
                settings, cancel_token=cancel_token, logger=event_logger
            )
        else:
            image_tag = select_image_tag(options.image_tag, settings.sandbox.default_tag)
            if api is None:
                api = await asyncio.to_thread(connect, settings.sandbox)
            orchestrator = SandboxBuildOrchestrator(
                api, settings, cancel_token=cancel_token, logger=event_logger
            )
    except ForgeError as exc:
        backend_error = exc

    async def build_one(source: PathInput) -> BuildOutcome:
        fallback_destination = Path.cwd() if destination is None else Path(destination)
        try:
            resolved_destination = resolve_destination(destination)
            package = prepare_package(source, settings)
            if backend_error is not None:
                raise backend_error
        except ForgeError as exc:
            logger.debug("skipping %s: %s", source, exc)
            return BuildOutcome.failure(Path(source), fallback_destination, exc)

        if isinstance(orchestrator, SandboxBuildOrchestrator):
            assert image_tag is not None
            return await orchestrator.build(
                package,
                resolved_destination,
                image_tag=image_tag,
                lock_dependency_versions=options.lock_dependency_versions,
            )
        assert orchestrator is not None
        return await orchestrator.build(
            package,
            resolved_destination,
            lock_dependency_versions=options.lock_dependency_versions,
        )

    pool: WorkerPool[BuildOutcome] = WorkerPool(settings.max_concurrency or len(sources))
    outcomes = [outcome async for outcome in pool.run(build_one(source) for source in sources)]
    report = BuildReport.from_outcomes(outcomes)
    logger.info(
        "built %d package(s): %d succeeded, %d failed",
        len(outcomes),
        len(report.succeeded),
        len(report.failed),
    )
    return report


async def build_target(
    source_path: PathInput,
    destination: PathInput | None = None,
    options: BuildOptions | None = None,
    **kwargs: Any,
) -> str:
    """Build one package and return its artifact filename, raising its typed error on failure."""

    report = await build([source_path], destination, options, **kwargs)
    if report.failed:
        error = report.failed[0].error
        assert error is not None
        raise error
    artifact = report.succeeded[0].artifact
    assert artifact is not None
    return artifact


def install_interrupt_listener(
    cancel_token: CancellationToken,
    *,
    on_interrupt: Callable[[str], None] | None = None,
) -> Callable[[], None]:
    """Fire ``cancel_token`` on SIGINT/SIGTERM; returns a callable that restores handlers.

    Must be called from inside the running event loop.
    """

    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    previous: dict[signal.Signals, Any] = {}

    def handle(signum: signal.Signals) -> None:
        reason = f"received {signum.name}"
        logger.warning("%s, stopping builds", reason)
        if on_interrupt is not None:
            on_interrupt(reason)
        cancel_token.cancel(reason)

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, handle, signum)
            installed.append(signum)
        except (NotImplementedError, RuntimeError):
            previous[signum] = signal.signal(
                signum,
                lambda received, _frame: loop.call_soon_threadsafe(
                    handle, signal.Signals(received)
                ),
            )

    def restore() -> None:
        for signum in installed:
            loop.remove_signal_handler(signum)
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    return restore


__all__ = [
    "build",
    "build_target",
    "install_interrupt_listener",
    "prepare_package",
    "resolve_destination",
]
