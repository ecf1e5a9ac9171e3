"""Command-line interface router for contract-forge."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from contract_forge.build.fanout import build, install_interrupt_listener
from contract_forge.config import ForgeSettings, load_settings
from contract_forge.constants import SANDBOX_IMAGE_TAGS
from contract_forge.domain.models import BuildOptions, BuildReport
from contract_forge.errors import ErrorKind, ForgeError, ForgeUsageError
from contract_forge.main import ExitCode
from contract_forge.observability import LoggingConfig, setup_structured_logging, shutdown_logging
from contract_forge.sandbox.lifecycle import SandboxLifecycle, connect
from contract_forge.ui.render import CLIRenderer, create_renderer
from contract_forge.utils.concurrency import CancellationToken


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = ExitCode.BUILD_FAILED

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router."""

    parser = argparse.ArgumentParser(
        prog="contract-forge",
        description=(
            "contract-forge: build smart-contract crates into optimized WASM inside "
            "disposable Docker sandboxes.\n\n"
            "Common workflows:\n"
            "  contract-forge build -s ./my-contract -d ./out\n"
            "  contract-forge build -s ./a -s ./b --image-tag 0.4.2\n"
            "  contract-forge build -s ./a --sandboxless\n"
            "  contract-forge prune --dry-run\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to a TOML config file (default: ./forge.toml if present).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Log progress to stderr.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )
    common.add_argument("--json", action="store_true", help="Emit deterministic JSON output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # build ---------------------------------------------------------------
    build_cmd = subparsers.add_parser(
        "build",
        parents=[common],
        help="Build one or more packages",
        description="Build each --source package concurrently and report every outcome.",
    )
    build_cmd.add_argument(
        "--source",
        "-s",
        dest="sources",
        action="append",
        default=[],
        metavar="PATH",
        help="Package root directory (repeatable)",
    )
    build_cmd.add_argument(
        "--destination",
        "-d",
        default=None,
        metavar="PATH",
        help="Directory for built artifacts (default: current directory, created if missing)",
    )
    backend = build_cmd.add_mutually_exclusive_group()
    backend.add_argument(
        "--sandboxless",
        action="store_true",
        default=False,
        help="Build with the host toolchain instead of a Docker sandbox",
    )
    backend.add_argument(
        "--image-tag",
        default=None,
        metavar="TAG",
        help=f"Sandbox image tag, one of: {', '.join(SANDBOX_IMAGE_TAGS)}",
    )
    build_cmd.add_argument(
        "--locked",
        action="store_true",
        default=False,
        help="Honour Cargo.lock exactly and ship it next to the artifact",
    )
    build_cmd.set_defaults(handler=_cmd_build)

    # prune ---------------------------------------------------------------
    prune_parser = subparsers.add_parser(
        "prune",
        parents=[common],
        help="Remove sandboxes left behind by interrupted runs",
    )
    prune_parser.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        help="List leftover sandboxes without removing them",
    )
    prune_parser.set_defaults(handler=_cmd_prune)

    # tags ----------------------------------------------------------------
    tags_parser = subparsers.add_parser(
        "tags",
        parents=[common],
        help="List supported sandbox image tags",
    )
    tags_parser.set_defaults(handler=_cmd_tags)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return ExitCode.CONFIG_ERROR

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_build(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    try:
        options = BuildOptions(
            sandboxless=bool(args.sandboxless),
            image_tag=args.image_tag,
            lock_dependency_versions=bool(args.locked),
        )
    except ForgeUsageError as exc:
        raise CLIError(str(exc), exit_code=ExitCode.CONFIG_ERROR) from exc
    if not args.sources:
        raise CLIError("at least one --source is required", exit_code=ExitCode.CONFIG_ERROR)

    renderer = _get_renderer(args)
    destination = Path(args.destination) if args.destination is not None else None
    handle = setup_structured_logging(_logging_config(args, settings))
    try:
        report, interrupted = asyncio.run(
            _run_build(args.sources, destination, options, settings, renderer)
        )
    finally:
        shutdown_logging(handle)

    if args.json:
        _emit_json(report.to_dict())
    else:
        render_report(renderer, report)
    return report_exit_code(report, interrupted=interrupted)


async def _run_build(
    sources: Sequence[str],
    destination: Path | None,
    options: BuildOptions,
    settings: ForgeSettings,
    renderer: CLIRenderer,
) -> tuple[BuildReport, bool]:
    cancel_token = CancellationToken()
    restore = install_interrupt_listener(
        cancel_token,
        on_interrupt=lambda reason: renderer.warning(
            f"{reason}; finishing in-flight steps and removing sandboxes"
        ),
    )
    try:
        report = await build(
            sources,
            destination,
            options,
            settings=settings,
            cancel_token=cancel_token,
        )
    finally:
        restore()
    return report, cancel_token.is_cancelled


def _cmd_prune(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    renderer = _get_renderer(args)
    handle = setup_structured_logging(_logging_config(args, settings))
    try:
        removed, failed, leftovers = asyncio.run(_run_prune(settings, dry_run=args.dry_run))
    finally:
        shutdown_logging(handle)

    if args.json:
        _emit_json(
            {
                "dry_run": bool(args.dry_run),
                "sandboxes": leftovers,
                "removed": removed,
                "failed": [{"sandbox": name, "detail": detail} for name, detail in failed],
            }
        )
    else:
        if not leftovers:
            renderer.text("No leftover sandboxes.")
        elif args.dry_run:
            renderer.heading("Leftover sandboxes (dry run):")
            renderer.items(leftovers)
        else:
            renderer.heading("Pruned sandboxes:")
            for name in removed:
                renderer.ok(name)
            for name, detail in failed:
                renderer.fail(name)
                renderer.detail(detail)
    return ExitCode.BUILD_FAILED if failed else ExitCode.SUCCESS


async def _run_prune(
    settings: ForgeSettings, *, dry_run: bool
) -> tuple[list[str], list[tuple[str, str]], list[str]]:
    try:
        api = await asyncio.to_thread(connect, settings.sandbox)
        lifecycle = SandboxLifecycle(api, label=settings.sandbox.label)
        leftovers = await lifecycle.list_labelled()
    except ForgeError as exc:
        raise CLIError(f"{exc}\n{exc.detail}", exit_code=ExitCode.DAEMON_ERROR) from exc

    removed: list[str] = []
    failed: list[tuple[str, str]] = []
    if dry_run:
        return removed, failed, leftovers
    for name in leftovers:
        failure = await lifecycle.remove(name)
        if failure is None:
            removed.append(name)
        else:
            failed.append((name, failure.reason or failure.detail))
    return removed, failed, leftovers


def _cmd_tags(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    default_tag = settings.sandbox.default_tag
    if args.json:
        _emit_json(
            {
                "repository": settings.sandbox.image_repository,
                "default": default_tag,
                "tags": list(SANDBOX_IMAGE_TAGS),
            }
        )
        return ExitCode.SUCCESS

    renderer = _get_renderer(args)
    renderer.heading(f"Sandbox image tags ({settings.sandbox.image_repository}):")
    renderer.items(
        [f"{tag} (default)" if tag == default_tag else tag for tag in SANDBOX_IMAGE_TAGS]
    )
    return ExitCode.SUCCESS


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def render_report(renderer: CLIRenderer, report: BuildReport) -> None:
    """Print the consolidated summary: successes, then failures with remediation hints."""

    if report.succeeded:
        renderer.heading("Built:")
        for outcome in report.succeeded:
            renderer.ok(f"{outcome.artifact}  ->  {outcome.destination}")
    if report.failed:
        if report.succeeded:
            renderer.blank()
        renderer.heading("Failed:")
        for outcome in report.failed:
            error = outcome.error
            if error is None:
                continue
            renderer.fail(f"{outcome.source_path}  ({error.kind.value}) {error}")
            renderer.detail(error.detail)
    if report.warnings:
        renderer.section("Warnings:")
        for warning in report.warnings:
            renderer.warning(warning.detail)


def report_exit_code(report: BuildReport, *, interrupted: bool = False) -> int:
    if interrupted:
        return ExitCode.INTERRUPTED
    if report.all_succeeded:
        return ExitCode.SUCCESS
    kinds = {outcome.error.kind for outcome in report.failed if outcome.error is not None}
    if kinds == {ErrorKind.SANDBOX_DAEMON_FAILURE}:
        return ExitCode.DAEMON_ERROR
    return ExitCode.BUILD_FAILED


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=bool(getattr(args, "no_color", False)))


def _load_settings(args: argparse.Namespace) -> ForgeSettings:
    overrides: dict[str, object] = {}
    if getattr(args, "verbose", False):
        overrides["observability.log_level"] = "INFO"
    return load_settings(getattr(args, "config_path", None), cli_overrides=overrides)


def _logging_config(args: argparse.Namespace, settings: ForgeSettings) -> LoggingConfig:
    observability = settings.observability
    return LoggingConfig(
        run_id=f"{args.command}-{uuid.uuid4().hex[:12]}",
        level=observability.log_level,
        log_dir=observability.log_dir,
        json_lines=observability.json_logs,
    )


__all__ = [
    "CLIError",
    "build_parser",
    "render_report",
    "report_exit_code",
    "run_cli",
]
