"""
contract-forge config schema.

Defaults, strict validation, and the frozen :class:`ForgeSettings` view that every build
component reads. Validation collects every issue before failing so one run reports all of
them.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from contract_forge.constants import (
    DEFAULT_ARTIFACT_EXTENSION,
    DEFAULT_BUILD_TARGET,
    DEFAULT_CANCEL_GRACE_SECONDS,
    DEFAULT_DOCKER_TIMEOUT_SECONDS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_STEP_TIMEOUT_SECONDS,
    SANDBOX_IMAGE_REPOSITORY,
    SANDBOX_IMAGE_TAGS,
    SANDBOX_LABEL,
)

LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DEFAULT_CONFIG: Final[dict[str, dict[str, Any]]] = {
    "sandbox": {
        "image_repository": SANDBOX_IMAGE_REPOSITORY,
        "default_tag": SANDBOX_IMAGE_TAGS[0],
        "docker_base_url": "",
        "docker_timeout_seconds": DEFAULT_DOCKER_TIMEOUT_SECONDS,
        "step_timeout_seconds": DEFAULT_STEP_TIMEOUT_SECONDS,
        "poll_interval_seconds": DEFAULT_POLL_INTERVAL_SECONDS,
        "cancel_grace_seconds": DEFAULT_CANCEL_GRACE_SECONDS,
        "label": SANDBOX_LABEL,
    },
    "build": {
        "target": DEFAULT_BUILD_TARGET,
        "artifact_extension": DEFAULT_ARTIFACT_EXTENSION,
        "max_concurrency": 0,
    },
    "host": {
        "cargo": "cargo",
        "wasm_opt": "wasm-opt",
        "wasm_snip": "wasm-snip",
    },
    "observability": {
        "log_level": "WARNING",
        "log_dir": "",
        "json_logs": False,
    },
}

PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (("observability", "log_dir"),)


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


@dataclass(frozen=True, slots=True)
class SandboxSettings:
    image_repository: str
    default_tag: str
    docker_base_url: str | None
    docker_timeout_seconds: int
    step_timeout_seconds: float
    poll_interval_seconds: float
    cancel_grace_seconds: float
    label: str


@dataclass(frozen=True, slots=True)
class HostToolSettings:
    cargo: str
    wasm_opt: str
    wasm_snip: str


@dataclass(frozen=True, slots=True)
class ObservabilitySettings:
    log_level: str
    log_dir: Path | None
    json_logs: bool


@dataclass(frozen=True, slots=True)
class ForgeSettings:
    """Validated, read-only settings shared by every orchestration of a run."""

    sandbox: SandboxSettings
    build_target: str
    artifact_extension: str
    max_concurrency: int
    host: HostToolSettings
    observability: ObservabilitySettings

    @classmethod
    def defaults(cls) -> ForgeSettings:
        return settings_from_config(default_config())


def default_config() -> dict[str, Any]:
    """Return a deep copy of built-in defaults."""

    return merge_config({}, DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``."""

    merged: dict[str, Any] = {}
    _merge_into(merged, base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object]) -> tuple[ConfigValidationIssue, ...]:
    """Return every validation issue found in ``config`` (empty when valid)."""

    issues: list[ConfigValidationIssue] = []
    _reject_unknown_keys(config, set(DEFAULT_CONFIG), "", issues)

    for section, defaults in DEFAULT_CONFIG.items():
        payload = config.get(section, {})
        if not isinstance(payload, Mapping):
            issues.append(ConfigValidationIssue(section, "expected table"))
            continue
        _reject_unknown_keys(payload, set(defaults), section, issues)
        for key, default in defaults.items():
            if key not in payload:
                issues.append(ConfigValidationIssue(f"{section}.{key}", "missing required field"))
                continue
            _check_type(payload[key], default, f"{section}.{key}", issues)

    sandbox = config.get("sandbox")
    if isinstance(sandbox, Mapping):
        tag = sandbox.get("default_tag")
        if isinstance(tag, str) and tag not in SANDBOX_IMAGE_TAGS:
            expected = ", ".join(SANDBOX_IMAGE_TAGS)
            issues.append(
                ConfigValidationIssue(
                    "sandbox.default_tag", f"unknown tag {tag!r}; expected one of: {expected}"
                )
            )
        for key in ("step_timeout_seconds", "poll_interval_seconds", "docker_timeout_seconds"):
            value = sandbox.get(key)
            if _is_number(value) and float(value) <= 0:  # type: ignore[arg-type]
                issues.append(ConfigValidationIssue(f"sandbox.{key}", "must be > 0"))
        grace = sandbox.get("cancel_grace_seconds")
        if _is_number(grace) and float(grace) < 0:  # type: ignore[arg-type]
            issues.append(ConfigValidationIssue("sandbox.cancel_grace_seconds", "must be >= 0"))

    build = config.get("build")
    if isinstance(build, Mapping):
        concurrency = build.get("max_concurrency")
        if isinstance(concurrency, int) and not isinstance(concurrency, bool) and concurrency < 0:
            issues.append(ConfigValidationIssue("build.max_concurrency", "must be >= 0"))

    observability = config.get("observability")
    if isinstance(observability, Mapping):
        level = observability.get("log_level")
        if isinstance(level, str) and level.upper() not in LOG_LEVELS:
            issues.append(
                ConfigValidationIssue(
                    "observability.log_level",
                    f"invalid value {level!r}; expected one of: {', '.join(LOG_LEVELS)}",
                )
            )

    return tuple(issues)


def assert_valid_config(config: Mapping[str, object]) -> dict[str, Any]:
    """Validate ``config`` and return a normalized copy, or raise ConfigValidationError."""

    issues = validate_config(config)
    if issues:
        raise ConfigValidationError(issues)
    normalized = merge_config({}, config)
    normalized["observability"]["log_level"] = str(
        normalized["observability"]["log_level"]
    ).upper()
    return normalized


def settings_from_config(config: Mapping[str, object]) -> ForgeSettings:
    """Materialize validated ``config`` into :class:`ForgeSettings`."""

    valid = assert_valid_config(config)
    sandbox = valid["sandbox"]
    build = valid["build"]
    host = valid["host"]
    observability = valid["observability"]
    return ForgeSettings(
        sandbox=SandboxSettings(
            image_repository=sandbox["image_repository"],
            default_tag=sandbox["default_tag"],
            docker_base_url=sandbox["docker_base_url"] or None,
            docker_timeout_seconds=int(sandbox["docker_timeout_seconds"]),
            step_timeout_seconds=float(sandbox["step_timeout_seconds"]),
            poll_interval_seconds=float(sandbox["poll_interval_seconds"]),
            cancel_grace_seconds=float(sandbox["cancel_grace_seconds"]),
            label=sandbox["label"],
        ),
        build_target=build["target"],
        artifact_extension=build["artifact_extension"],
        max_concurrency=int(build["max_concurrency"]),
        host=HostToolSettings(
            cargo=host["cargo"],
            wasm_opt=host["wasm_opt"],
            wasm_snip=host["wasm_snip"],
        ),
        observability=ObservabilitySettings(
            log_level=observability["log_level"],
            log_dir=Path(observability["log_dir"]) if observability["log_dir"] else None,
            json_logs=bool(observability["json_logs"]),
        ),
    )


def _check_type(
    value: object,
    default: object,
    path: str,
    issues: list[ConfigValidationIssue],
) -> None:
    if isinstance(default, bool):
        if not isinstance(value, bool):
            issues.append(ConfigValidationIssue(path, f"expected boolean, got {_type(value)}"))
    elif isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            issues.append(ConfigValidationIssue(path, f"expected integer, got {_type(value)}"))
    elif isinstance(default, float):
        if not _is_number(value):
            issues.append(ConfigValidationIssue(path, f"expected number, got {_type(value)}"))
        elif not math.isfinite(float(value)):  # type: ignore[arg-type]
            issues.append(ConfigValidationIssue(path, "must be finite"))
    elif isinstance(default, str):
        if not isinstance(value, str):
            issues.append(ConfigValidationIssue(path, f"expected string, got {_type(value)}"))
        elif default and not value.strip():
            issues.append(ConfigValidationIssue(path, "must not be empty"))


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _type(value: object) -> str:
    return type(value).__name__


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: list[ConfigValidationIssue],
) -> None:
    for key in sorted(payload):
        if key not in allowed:
            key_path = f"{path}.{key}" if path else key
            issues.append(ConfigValidationIssue(key_path, "unknown field"))


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if not isinstance(existing, dict):
                existing = {}
                target[key] = existing
            _merge_into(existing, value)
        else:
            target[key] = value


__all__ = [
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ForgeSettings",
    "HostToolSettings",
    "ObservabilitySettings",
    "SandboxSettings",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "settings_from_config",
    "validate_config",
]
