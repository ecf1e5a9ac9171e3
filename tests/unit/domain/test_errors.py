"""Unit tests for the typed build failures."""

from __future__ import annotations

import pytest

from contract_forge.errors import (
    ArtifactCleanupError,
    BuildFailedError,
    BuildFailedWithLogsError,
    BuildInterruptedError,
    BuildTimeoutError,
    ErrorKind,
    ForgeError,
    InvalidDependencyPathError,
    InvalidDestinationPathError,
    InvalidSourcePathError,
    ManifestNotFoundError,
    SandboxDaemonError,
    ScratchDirectoryError,
    UnknownImageTagError,
)


@pytest.mark.parametrize(
    ("error", "kind"),
    [
        (ManifestNotFoundError(), ErrorKind.MANIFEST_NOT_FOUND),
        (InvalidSourcePathError(), ErrorKind.INVALID_SOURCE_PATH),
        (InvalidDestinationPathError(), ErrorKind.INVALID_DESTINATION_PATH),
        (InvalidDependencyPathError("dep", "../dep"), ErrorKind.INVALID_DEPENDENCY_PATH),
        (SandboxDaemonError(), ErrorKind.SANDBOX_DAEMON_FAILURE),
        (BuildFailedError("disk full"), ErrorKind.BUILD_FAILURE),
        (BuildFailedWithLogsError("error[E0425]"), ErrorKind.BUILD_FAILURE_WITH_LOGS),
        (BuildTimeoutError("wasm-snip", 5.0), ErrorKind.BUILD_TIMEOUT),
        (ArtifactCleanupError("forge-x"), ErrorKind.ARTIFACT_CLEANUP_FAILURE),
        (UnknownImageTagError("9.9.9"), ErrorKind.UNKNOWN_IMAGE_TAG),
        (ScratchDirectoryError(), ErrorKind.SCRATCH_DIRECTORY_FAILURE),
        (BuildInterruptedError(), ErrorKind.BUILD_INTERRUPTED),
    ],
)
def test_every_error_has_kind_summary_and_detail(error: ForgeError, kind: ErrorKind) -> None:
    assert isinstance(error, ForgeError)
    assert error.kind is kind
    assert str(error)
    assert error.detail
    assert error.detail != str(error)


def test_payloads_are_kept() -> None:
    assert "error[E0425]" in BuildFailedWithLogsError("error[E0425]").detail
    assert "disk full" in BuildFailedError("disk full").detail
    assert "dep -> ../dep" in InvalidDependencyPathError("dep", "../dep").detail
    assert "9.9.9" in str(UnknownImageTagError("9.9.9"))
    assert "forge-x" in ArtifactCleanupError("forge-x").detail

    timeout = BuildTimeoutError("wasm-snip", 2.5, log="partial")
    assert timeout.step == "wasm-snip"
    assert timeout.log == "partial"
    assert "2.5" in str(timeout)
