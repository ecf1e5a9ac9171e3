"""Stable constants shared across the build pipeline."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Sandbox images. The first tag is the default.
SANDBOX_IMAGE_REPOSITORY: Final[str] = "parallelchainlab/pchain_compile"
SANDBOX_IMAGE_TAGS: Final[tuple[str, ...]] = ("0.4.3", "0.4.2", "mainnet01")
SANDBOX_LABEL: Final[str] = "contract-forge"
SANDBOX_NAME_PREFIX: Final[str] = "forge-"
SANDBOX_NAME_SUFFIX_LENGTH: Final[int] = 8

# Layout inside the sandbox image.
SANDBOX_ROOT: Final[PurePosixPath] = PurePosixPath("/")
SANDBOX_OUTPUT_DIR: Final[PurePosixPath] = PurePosixPath("/result")
SANDBOX_WASM_OPT: Final[str] = "/root/bin/wasm-opt"

# Manifest conventions of the packages being built.
MANIFEST_FILENAME: Final[str] = "Cargo.toml"
LOCK_FILENAME: Final[str] = "Cargo.lock"
DEFAULT_BUILD_TARGET: Final[str] = "wasm32-unknown-unknown"
DEFAULT_ARTIFACT_EXTENSION: Final[str] = "wasm"

# Execution engine defaults.
DEFAULT_POLL_INTERVAL_SECONDS: Final[float] = 0.02
DEFAULT_EXIT_STATUS_WAIT_SECONDS: Final[float] = 5.0
DEFAULT_STEP_TIMEOUT_SECONDS: Final[float] = 600.0
DEFAULT_CANCEL_GRACE_SECONDS: Final[float] = 10.0
DEFAULT_DOCKER_TIMEOUT_SECONDS: Final[int] = 120

# Intermediate files produced by the post-processing steps.
SIZE_OPTIMIZED_FILENAME: Final[str] = "temp.wasm"
STRIPPED_FILENAME: Final[str] = "temp2.wasm"
OPTIMIZED_FILENAME: Final[str] = "optimized.wasm"

__all__ = [
    "DEFAULT_ARTIFACT_EXTENSION",
    "DEFAULT_BUILD_TARGET",
    "DEFAULT_CANCEL_GRACE_SECONDS",
    "DEFAULT_DOCKER_TIMEOUT_SECONDS",
    "DEFAULT_EXIT_STATUS_WAIT_SECONDS",
    "DEFAULT_POLL_INTERVAL_SECONDS",
    "DEFAULT_STEP_TIMEOUT_SECONDS",
    "LOCK_FILENAME",
    "MANIFEST_FILENAME",
    "OPTIMIZED_FILENAME",
    "SANDBOX_IMAGE_REPOSITORY",
    "SANDBOX_IMAGE_TAGS",
    "SANDBOX_LABEL",
    "SANDBOX_NAME_PREFIX",
    "SANDBOX_NAME_SUFFIX_LENGTH",
    "SANDBOX_OUTPUT_DIR",
    "SANDBOX_ROOT",
    "SANDBOX_WASM_OPT",
    "SIZE_OPTIMIZED_FILENAME",
    "STRIPPED_FILENAME",
]
