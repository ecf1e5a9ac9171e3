"""Utility exports for filesystem and concurrency helpers."""

from contract_forge.utils.concurrency import (
    CancellationToken,
    OperationCancelled,
    WorkerPool,
    run_cancellable,
)
from contract_forge.utils.fs import atomic_write, is_within, safe_delete, scratch_directory

__all__ = [
    "CancellationToken",
    "OperationCancelled",
    "WorkerPool",
    "atomic_write",
    "is_within",
    "run_cancellable",
    "safe_delete",
    "scratch_directory",
]
