"""Filesystem helpers for artifact writes and host scratch directories."""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

PathLike = str | os.PathLike[str]

logger = logging.getLogger(__name__)

__all__ = [
    "atomic_write",
    "is_within",
    "safe_delete",
    "scratch_directory",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """Write ``data`` to ``path`` so readers see either the old file or the complete new one.

    The content goes to a hidden sibling file first, is fsynced, then renamed over ``path``.
    An artifact left by a previous build is replaced.
    """

    target = Path(path)
    directory = target.parent.resolve(strict=True)
    if not directory.is_dir():
        raise NotADirectoryError(f"{directory!s} is not a directory")

    payload = data if isinstance(data, bytes) else data.encode(encoding)
    fd, staging_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".part", dir=directory)
    staging = Path(staging_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(staging, target)
    except BaseException:
        with contextlib.suppress(OSError):
            staging.unlink(missing_ok=True)
        raise


def is_within(child: PathLike, parent: PathLike) -> bool:
    """``True`` when both paths exist and ``child`` resolves to ``parent`` or below it."""

    try:
        root = Path(parent).resolve(strict=True)
        candidate = Path(child).resolve(strict=True)
    except FileNotFoundError:
        return False
    return root.is_dir() and (candidate == root or root in candidate.parents)


def safe_delete(path: PathLike, root: PathLike) -> None:
    """Remove ``path`` (file, symlink or tree) only when it sits strictly inside ``root``."""

    boundary = Path(root).resolve(strict=True)
    target = Path(path)
    located = target.parent.resolve(strict=True) / target.name
    if boundary not in located.parents:
        raise ValueError(f"refusing to delete path outside {boundary!s}: {target!s}")

    if target.is_dir() and not target.is_symlink():
        shutil.rmtree(target)
    else:
        target.unlink()


@contextmanager
def scratch_directory(prefix: str = "contract-forge-") -> Iterator[Path]:
    """Yield a fresh directory under the system temp dir and remove it on exit.

    Creation failures propagate as ``OSError``. Removal failures are logged, never raised.
    """

    temp_root = Path(tempfile.gettempdir())
    scratch = Path(tempfile.mkdtemp(prefix=prefix, dir=temp_root))
    try:
        yield scratch
    finally:
        try:
            safe_delete(scratch, temp_root)
        except (OSError, ValueError) as exc:
            logger.warning("failed to remove scratch directory %s: %s", scratch, exc)
