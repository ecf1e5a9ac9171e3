"""Manifest reading and local dependency discovery."""

from contract_forge.manifests.reader import (
    InvalidPathError,
    Manifest,
    ManifestDependency,
    absolute_writable_path,
    read_manifest,
    resolve_dependency_path,
)
from contract_forge.manifests.resolver import resolve_dependencies

__all__ = [
    "InvalidPathError",
    "Manifest",
    "ManifestDependency",
    "absolute_writable_path",
    "read_manifest",
    "resolve_dependencies",
    "resolve_dependency_path",
]
