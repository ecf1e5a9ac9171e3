"""
contract-forge builds smart-contract crates into optimized WASM artifacts.

Each requested package is built inside its own disposable Docker sandbox (or, with
``sandboxless``, with the host toolchain in a scratch directory). Builds fan out
concurrently and every package ends in exactly one outcome: an artifact written to the
destination directory or a typed :class:`~contract_forge.errors.ForgeError`.

The batch entry point is :func:`contract_forge.build.build`. Submodules are imported
lazily so ``import contract_forge`` stays cheap and free of side effects.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

__version__ = "0.5.0"

if TYPE_CHECKING:
    from contract_forge.build.fanout import build_target
    from contract_forge.domain.models import BuildOptions, BuildReport

_LAZY_EXPORTS = {
    "build_target": ("contract_forge.build.fanout", "build_target"),
    "BuildOptions": ("contract_forge.domain.models", "BuildOptions"),
    "BuildReport": ("contract_forge.domain.models", "BuildReport"),
}


def __getattr__(name: str) -> Any:
    try:
        module_name, attribute = _LAZY_EXPORTS[name]
    except KeyError:
        raise AttributeError(f"module 'contract_forge' has no attribute {name!r}") from None
    from importlib import import_module

    return getattr(import_module(module_name), attribute)


__all__ = ["BuildOptions", "BuildReport", "__version__", "build_target"]
