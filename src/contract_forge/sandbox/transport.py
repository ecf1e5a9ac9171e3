"""Move source trees into a sandbox and built artifacts back out, as tar archives."""

from __future__ import annotations

import asyncio
import contextlib
import io
import logging
import os
import tarfile
import tempfile
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from docker.errors import NotFound

from contract_forge.constants import SANDBOX_ROOT
from contract_forge.errors import BuildFailedError, SandboxDaemonError
from contract_forge.sandbox.lifecycle import DAEMON_ERRORS
from contract_forge.utils.fs import atomic_write

if TYPE_CHECKING:
    from collections.abc import Iterable

    from docker import APIClient

logger = logging.getLogger(__name__)

RetrievedFile = tuple[str, bytes]


def sandbox_path(local_dir: Path | str) -> str:
    """Map a host directory to its relative location under the sandbox root.

    Drive colons are dropped, backslashes become ``/``, and spaces become ``_``, so
    ``C:\\Users\\me\\my crate`` lands at ``C/Users/me/my_crate``.
    """

    text = str(local_dir).replace(":", "").replace("\\", "/").replace(" ", "_")
    return text.lstrip("/")


def sandbox_workdir(local_dir: Path | str, *parts: str) -> str:
    return str(SANDBOX_ROOT.joinpath(sandbox_path(local_dir), *parts))


def pack_directory(local_dir: Path, archive_path: Path) -> None:
    """Write ``local_dir`` recursively into a gzip tar rooted at its sandbox path."""

    with tarfile.open(archive_path, "w:gz") as archive:
        archive.add(str(local_dir), arcname=sandbox_path(local_dir), recursive=True)


def unpack_files(archive_bytes: bytes) -> list[RetrievedFile]:
    """Return ``(basename, content)`` for every non-empty regular file in a tar stream."""

    files: list[RetrievedFile] = []
    with tarfile.open(fileobj=io.BytesIO(archive_bytes), mode="r:*") as archive:
        for member in archive:
            if not member.isfile() or member.size == 0:
                continue
            handle = archive.extractfile(member)
            if handle is None:
                continue
            with handle:
                files.append((PurePosixPath(member.name).name, handle.read()))
    return files


async def push(api: APIClient, sandbox_name: str, local_dir: Path) -> None:
    """Upload ``local_dir`` into ``sandbox_name`` at its sanitized path."""

    try:
        await asyncio.to_thread(_push_blocking, api, sandbox_name, local_dir)
    except SandboxDaemonError:
        raise
    except (*DAEMON_ERRORS, tarfile.TarError) as exc:
        raise SandboxDaemonError(f"cannot transfer {local_dir} into {sandbox_name}: {exc}") from exc
    logger.debug("transferred %s into %s", local_dir, sandbox_name)


async def pull(api: APIClient, sandbox_name: str, remote_path: str) -> list[RetrievedFile]:
    """Download ``remote_path`` from the sandbox; a missing path yields no files."""

    try:
        archive_bytes = await asyncio.to_thread(_pull_blocking, api, sandbox_name, remote_path)
    except NotFound:
        logger.debug("%s has no %s", sandbox_name, remote_path)
        return []
    except DAEMON_ERRORS as exc:
        raise SandboxDaemonError(f"cannot download {remote_path} from {sandbox_name}: {exc}") from exc

    try:
        return unpack_files(archive_bytes)
    except tarfile.TarError as exc:
        raise BuildFailedError(f"unreadable artifact archive from {sandbox_name}: {exc}") from exc


def write_files(files: Iterable[RetrievedFile], destination: Path) -> list[Path]:
    """Write retrieved files into ``destination``, replacing same-named files."""

    written: list[Path] = []
    for name, content in files:
        target = destination / name
        try:
            atomic_write(target, content)
        except OSError as exc:
            raise BuildFailedError(f"cannot write {target}: {exc}") from exc
        written.append(target)
    return written


def _push_blocking(api: APIClient, sandbox_name: str, local_dir: Path) -> None:
    fd, temp_name = tempfile.mkstemp(prefix="contract-forge-", suffix=".tar.gz")
    os.close(fd)
    archive_path = Path(temp_name)
    try:
        pack_directory(local_dir, archive_path)
        data = archive_path.read_bytes()
        if not api.put_archive(sandbox_name, str(SANDBOX_ROOT), data):
            raise SandboxDaemonError(f"docker rejected the archive for {local_dir}")
    finally:
        with contextlib.suppress(OSError):
            archive_path.unlink()


def _pull_blocking(api: APIClient, sandbox_name: str, remote_path: str) -> bytes:
    stream, _stat = api.get_archive(sandbox_name, remote_path)
    return b"".join(_chunks(stream))


def _chunks(stream: Iterable[bytes] | bytes) -> Iterable[bytes]:
    if isinstance(stream, bytes):
        return (stream,)
    return stream


__all__ = [
    "RetrievedFile",
    "pack_directory",
    "pull",
    "push",
    "sandbox_path",
    "sandbox_workdir",
    "unpack_files",
    "write_files",
]
