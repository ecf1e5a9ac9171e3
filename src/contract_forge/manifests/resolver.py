"""Recursive discovery of local path-dependencies."""

from __future__ import annotations

import logging
from pathlib import Path

from contract_forge.domain.models import DependencyResolution, UnresolvedDependency
from contract_forge.errors import InvalidDependencyPathError, ManifestNotFoundError
from contract_forge.manifests.reader import read_manifest, resolve_dependency_path

logger = logging.getLogger(__name__)


def resolve_dependencies(package_root: Path | str) -> DependencyResolution:
    """Return every local dependency directory reachable from ``package_root``.

    The root manifest must exist and each of its local dependencies must resolve; those
    failures propagate as :class:`ManifestNotFoundError` / :class:`InvalidDependencyPathError`.
    Failures found while following a dependency's own manifest are collected in
    ``DependencyResolution.ignored`` and the dependency itself stays in the result. Every
    directory is visited at most once, so cyclic and diamond graphs terminate.
    """

    root = Path(package_root).resolve()
    manifest = read_manifest(root)

    resolved: set[Path] = set()
    ignored: list[UnresolvedDependency] = []
    pending: list[Path] = []

    for dependency in manifest.dependencies:
        if dependency.local_path is None:
            continue
        path = resolve_dependency_path(dependency.local_path, root, dependency=dependency.name)
        if path == root or path in resolved:
            continue
        resolved.add(path)
        pending.append(path)

    while pending:
        directory = pending.pop()
        try:
            nested = read_manifest(directory)
        except ManifestNotFoundError as exc:
            ignored.append(
                UnresolvedDependency(
                    manifest_dir=directory,
                    name=directory.name,
                    declared_path=str(directory),
                    reason=str(exc),
                )
            )
            continue

        for dependency in nested.dependencies:
            if dependency.local_path is None:
                continue
            try:
                path = resolve_dependency_path(
                    dependency.local_path, directory, dependency=dependency.name
                )
            except InvalidDependencyPathError as exc:
                ignored.append(
                    UnresolvedDependency(
                        manifest_dir=directory,
                        name=dependency.name,
                        declared_path=dependency.local_path,
                        reason=exc.summary,
                    )
                )
                continue
            if path == root or path in resolved:
                continue
            resolved.add(path)
            pending.append(path)

    for entry in ignored:
        logger.debug(
            "ignoring unresolved nested dependency %s (%s) declared in %s: %s",
            entry.name,
            entry.declared_path,
            entry.manifest_dir,
            entry.reason,
        )

    return DependencyResolution(resolved=frozenset(resolved), ignored=tuple(ignored))


__all__ = ["resolve_dependencies"]
