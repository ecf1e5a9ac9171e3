"""Package manifest reading and path validation."""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from contract_forge.constants import MANIFEST_FILENAME
from contract_forge.errors import InvalidDependencyPathError, ManifestNotFoundError


class InvalidPathError(ValueError):
    """Raised when a path does not resolve to an existing, writable directory."""


@dataclass(frozen=True, slots=True)
class ManifestDependency:
    name: str
    local_path: str | None = None


@dataclass(frozen=True, slots=True)
class Manifest:
    package_name: str
    dependencies: tuple[ManifestDependency, ...] = ()


def read_manifest(directory: Path | str) -> Manifest:
    """Parse the manifest in ``directory``.

    Raises :class:`ManifestNotFoundError` when the file is missing, unreadable, not valid
    TOML, or has no ``[package].name``.
    """

    manifest_path = Path(directory) / MANIFEST_FILENAME
    try:
        with manifest_path.open("rb") as handle:
            payload = tomllib.load(handle)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ManifestNotFoundError(f"cannot read {manifest_path}: {exc}") from exc

    package = payload.get("package")
    if not isinstance(package, Mapping):
        raise ManifestNotFoundError(f"{manifest_path} has no [package] table")
    name = package.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ManifestNotFoundError(f"{manifest_path} has no package name")

    return Manifest(
        package_name=name.strip(),
        dependencies=_parse_dependencies(payload.get("dependencies")),
    )


def absolute_writable_path(path: Path | str) -> Path:
    """Return the canonical absolute form of ``path`` if it is a writable directory."""

    try:
        resolved = Path(path).expanduser().resolve(strict=True)
    except (OSError, RuntimeError) as exc:
        raise InvalidPathError(f"{path!s} does not exist") from exc
    if not resolved.is_dir():
        raise InvalidPathError(f"{resolved!s} is not a directory")
    if not os.access(resolved, os.W_OK):
        raise InvalidPathError(f"{resolved!s} is not writable")
    return resolved


def resolve_dependency_path(
    declared: str,
    package_root: Path,
    *,
    dependency: str | None = None,
) -> Path:
    """Resolve a declared dependency path as given, then relative to ``package_root``."""

    for candidate in (Path(declared), package_root / declared):
        try:
            return absolute_writable_path(candidate)
        except InvalidPathError:
            continue
    raise InvalidDependencyPathError(dependency, declared)


def _parse_dependencies(raw: object) -> tuple[ManifestDependency, ...]:
    if not isinstance(raw, Mapping):
        return ()
    parsed: list[ManifestDependency] = []
    for name in sorted(raw):
        spec = raw[name]
        local_path: str | None = None
        if isinstance(spec, Mapping):
            candidate = spec.get("path")
            if isinstance(candidate, str) and candidate.strip():
                local_path = candidate.strip()
        parsed.append(ManifestDependency(name=str(name), local_path=local_path))
    return tuple(parsed)


__all__ = [
    "InvalidPathError",
    "Manifest",
    "ManifestDependency",
    "absolute_writable_path",
    "read_manifest",
    "resolve_dependency_path",
]
