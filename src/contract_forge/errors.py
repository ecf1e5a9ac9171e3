"""Typed failures for package builds.

Every failure a single package build can end in is a :class:`ForgeError` subclass. The
``kind`` attribute is the stable category used in reports; ``str(error)`` is the short
category sentence and :attr:`ForgeError.detail` the longer remediation hint shown to users.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Stable failure categories reported per package."""

    MANIFEST_NOT_FOUND = "ManifestNotFound"
    INVALID_SOURCE_PATH = "InvalidSourcePath"
    INVALID_DESTINATION_PATH = "InvalidDestinationPath"
    INVALID_DEPENDENCY_PATH = "InvalidDependencyPath"
    SANDBOX_DAEMON_FAILURE = "SandboxDaemonFailure"
    BUILD_FAILURE = "BuildFailure"
    BUILD_FAILURE_WITH_LOGS = "BuildFailureWithLogs"
    BUILD_TIMEOUT = "BuildTimeout"
    ARTIFACT_CLEANUP_FAILURE = "ArtifactCleanupFailure"
    UNKNOWN_IMAGE_TAG = "UnknownImageTag"
    SCRATCH_DIRECTORY_FAILURE = "ScratchDirectoryFailure"
    BUILD_INTERRUPTED = "BuildInterrupted"


class ForgeUsageError(ValueError):
    """Raised for invalid invocations that never reach a package build."""


class ForgeError(RuntimeError):
    """Base error for per-package build failures."""

    kind: ErrorKind = ErrorKind.BUILD_FAILURE
    summary: str = "Failure during building process."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.summary)

    @property
    def detail(self) -> str:
        return str(self)


class ManifestNotFoundError(ForgeError):
    kind = ErrorKind.MANIFEST_NOT_FOUND
    summary = "Manifest file not found."

    @property
    def detail(self) -> str:
        return (
            "Failed to compile.\nDetails: Manifest File Not Found. Check if the manifest file "
            "exists on the source code path and that it is valid TOML."
        )


class InvalidSourcePathError(ForgeError):
    kind = ErrorKind.INVALID_SOURCE_PATH
    summary = "Source code path not valid."

    @property
    def detail(self) -> str:
        return (
            "Failed to compile.\nDetails: Source Code Path Not Valid. Check if you have provided "
            "the correct path to your source code directory and confirm write access privileges."
        )


class InvalidDestinationPathError(ForgeError):
    kind = ErrorKind.INVALID_DESTINATION_PATH
    summary = "Destination path not valid."

    @property
    def detail(self) -> str:
        return (
            "Details: Destination Path Not Valid. Check if you have provided the correct path "
            "to save your optimized binary and confirm write access privileges."
        )


class InvalidDependencyPathError(ForgeError):
    kind = ErrorKind.INVALID_DEPENDENCY_PATH
    summary = "Dependency path not valid."

    def __init__(self, dependency: str | None = None, declared_path: str | None = None) -> None:
        self.dependency = dependency
        self.declared_path = declared_path
        super().__init__()

    @property
    def detail(self) -> str:
        target = ""
        if self.dependency is not None:
            target = f" ({self.dependency} -> {self.declared_path})"
        return (
            f"Details: Dependency Paths Specified Within The Crate Not Valid{target}. Check if "
            "you have provided the correct path to the dependencies in your manifest and "
            "confirm write access privileges."
        )


class SandboxDaemonError(ForgeError):
    kind = ErrorKind.SANDBOX_DAEMON_FAILURE
    summary = "Docker daemon service did not respond."

    @property
    def detail(self) -> str:
        return (
            "Failed to compile.\nDetails: Docker Daemon Failure. Check if Docker is running on "
            "your machine and confirm read/write access privileges."
        )


class BuildFailedError(ForgeError):
    kind = ErrorKind.BUILD_FAILURE

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.summary)

    @property
    def detail(self) -> str:
        return (
            f"Details: {self.message}\n"
            "Please rectify the errors and build your source code again."
        )


class BuildFailedWithLogsError(ForgeError):
    kind = ErrorKind.BUILD_FAILURE_WITH_LOGS

    def __init__(self, log: str) -> None:
        self.log = log
        super().__init__(self.summary)

    @property
    def detail(self) -> str:
        return (
            "There may be some problems in the source code.\n"
            f"Building log is as follows:\n\n{self.log}\n"
        )


class BuildTimeoutError(ForgeError):
    kind = ErrorKind.BUILD_TIMEOUT
    summary = "Build step exceeded its time limit."

    def __init__(self, step: str, timeout_seconds: float, log: str = "") -> None:
        self.step = step
        self.timeout_seconds = timeout_seconds
        self.log = log
        super().__init__(f"step {step!r} did not finish within {timeout_seconds:g}s")

    @property
    def detail(self) -> str:
        return (
            f"Details: The {self.step} step did not finish within {self.timeout_seconds:g} "
            "seconds. Check that Docker is responsive and retry, or raise "
            "sandbox.step_timeout_seconds."
        )


class ArtifactCleanupError(ForgeError):
    kind = ErrorKind.ARTIFACT_CLEANUP_FAILURE
    summary = "Some artifacts created by the build were not successfully removed."

    def __init__(self, sandbox_name: str, reason: str = "") -> None:
        self.sandbox_name = sandbox_name
        self.reason = reason
        super().__init__()

    @property
    def detail(self) -> str:
        return (
            f"The compilation finished, but the sandbox {self.sandbox_name!r} could not be "
            "removed. Please remove it manually (`docker rm -f "
            f"{self.sandbox_name}`) or run `contract-forge prune`."
        )


class UnknownImageTagError(ForgeError):
    kind = ErrorKind.UNKNOWN_IMAGE_TAG
    summary = "Unknown docker image tag."

    def __init__(self, tag: str) -> None:
        self.tag = tag
        super().__init__(f"Unknown docker image tag: {tag}")

    @property
    def detail(self) -> str:
        return (
            f"Details: The docker image tag ({self.tag}) is not recognised. Run "
            "`contract-forge tags` to list the supported tags."
        )


class ScratchDirectoryError(ForgeError):
    kind = ErrorKind.SCRATCH_DIRECTORY_FAILURE
    summary = "Fails to create temporary directory."

    @property
    def detail(self) -> str:
        return (
            "Details: The compilation process requires creating a temporary folder on your "
            "machine. Please check if the program has write permission to create folders."
        )


class BuildInterruptedError(ForgeError):
    kind = ErrorKind.BUILD_INTERRUPTED
    summary = "Build interrupted."

    @property
    def detail(self) -> str:
        return (
            "Details: The build was interrupted before it finished. Its sandbox was removed; "
            "run `contract-forge prune` if any container is still listed by `docker ps`."
        )


__all__ = [
    "ArtifactCleanupError",
    "BuildFailedError",
    "BuildFailedWithLogsError",
    "BuildInterruptedError",
    "BuildTimeoutError",
    "ErrorKind",
    "ForgeError",
    "ForgeUsageError",
    "InvalidDependencyPathError",
    "InvalidDestinationPathError",
    "InvalidSourcePathError",
    "ManifestNotFoundError",
    "SandboxDaemonError",
    "ScratchDirectoryError",
    "UnknownImageTagError",
]
