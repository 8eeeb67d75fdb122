"""Build engine primitives: manifest, atomic writes, lock, trailer and healing.

The orchestrator lives in :mod:`ctx_build.build.orchestrator`.
"""

from __future__ import annotations

from .atomic import PendingWrite, TransactionResult, atomic_write, atomic_write_async, run_transaction, sweep_temp_files
from .errors import (
    BuildAborted,
    BuildError,
    ConfigError,
    FailureKind,
    LockContentionError,
    TransactionError,
    exit_code_for,
)
from .healing import prune_stale_generated, reconcile_on_skip, verify_output
from .lock import LockRecord, LockResult, acquire, hold_lock, release, with_lock
from .manifest import BuildManifest, OutputRecord, SourceDiff, SourceFingerprint
from .trailer import BuildTrailer, append_trailer, split_trailer, strip_trailer

__all__ = [
    "BuildAborted",
    "BuildError",
    "BuildManifest",
    "BuildTrailer",
    "ConfigError",
    "FailureKind",
    "LockContentionError",
    "LockRecord",
    "LockResult",
    "OutputRecord",
    "PendingWrite",
    "SourceDiff",
    "SourceFingerprint",
    "TransactionError",
    "TransactionResult",
    "acquire",
    "append_trailer",
    "atomic_write",
    "atomic_write_async",
    "exit_code_for",
    "hold_lock",
    "prune_stale_generated",
    "reconcile_on_skip",
    "release",
    "run_transaction",
    "split_trailer",
    "strip_trailer",
    "sweep_temp_files",
    "verify_output",
    "with_lock",
]
