"""Sandbox lifecycle, archive transport, and command execution."""

from contract_forge.sandbox.executor import CommandExecutor
from contract_forge.sandbox.host_runner import HostCommandResult, HostCommandRunner, HostPolicyError
from contract_forge.sandbox.lifecycle import (
    DAEMON_ERRORS,
    ImageRef,
    SandboxHandle,
    SandboxLifecycle,
    connect,
    random_sandbox_name,
    select_image_tag,
)
from contract_forge.sandbox.transport import (
    RetrievedFile,
    pack_directory,
    pull,
    push,
    sandbox_path,
    sandbox_workdir,
    unpack_files,
    write_files,
)

__all__ = [
    "DAEMON_ERRORS",
    "CommandExecutor",
    "HostCommandResult",
    "HostCommandRunner",
    "HostPolicyError",
    "ImageRef",
    "RetrievedFile",
    "SandboxHandle",
    "SandboxLifecycle",
    "connect",
    "pack_directory",
    "pull",
    "push",
    "random_sandbox_name",
    "sandbox_path",
    "sandbox_workdir",
    "select_image_tag",
    "unpack_files",
    "write_files",
]
