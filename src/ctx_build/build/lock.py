"""Cross-process build lock.

The lock is a JSON file at ``.context/.build.lock`` created with an exclusive
create-only open. A record older than the staleness threshold, or one whose
owner is a dead process on this host, is reclaimed by the next caller. This is
an advisory lock for a single host and is not safe across machines.
"""

from __future__ import annotations

import errno
import json
import logging
import os
import socket
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, TypeVar

from pydantic import BaseModel, ValidationError

from ..settings import DEFAULT_LOCK_STALE_SECONDS
from .errors import LockContentionError
from .manifest import CONTEXT_DIRNAME, now_ms

logger = logging.getLogger(__name__)

LOCK_FILENAME = ".build.lock"
STALE_THRESHOLD_MS = int(DEFAULT_LOCK_STALE_SECONDS * 1000)
CONTENDED_READ_ATTEMPTS = 50
CONTENDED_READ_INTERVAL = 0.01

T = TypeVar("T")


class LockRecord(BaseModel):
    """Ownership claim written into the lock file."""

    pid: int
    timestamp: int
    hostname: str
    target: str

    def age_ms(self, now: int | None = None) -> int:
        return max(0, (now if now is not None else now_ms()) - self.timestamp)

    def describe(self, now: int | None = None) -> str:
        return (
            f"Build in progress by PID {self.pid} on {self.hostname} "
            f"({format_duration(self.age_ms(now))} ago) for target: {self.target}"
        )


@dataclass(slots=True)
class LockResult:
    acquired: bool
    lock_path: Path
    existing_lock: LockRecord | None = None
    stale_removed: bool = False


def lock_path(project_root: Path) -> Path:
    return Path(project_root) / CONTEXT_DIRNAME / LOCK_FILENAME


def format_duration(ms: int) -> str:
    seconds = ms // 1000
    minutes = seconds // 60
    hours = minutes // 60
    if hours:
        return f"{hours}h {minutes % 60}m"
    if minutes:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def current_hostname() -> str:
    return socket.gethostname()


def process_exists(pid: int) -> bool:
    """Probe ``pid`` with signal 0; permission denied still means it exists."""

    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError as exc:
        return exc.errno == errno.EPERM
    return True


def read_lock(path: Path) -> LockRecord | None:
    """Return the record in ``path``; None when missing or unreadable."""

    try:
        document = json.loads(Path(path).read_text(encoding="utf-8"))
        return LockRecord.model_validate(document)
    except FileNotFoundError:
        return None
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError):
        return None


def _remove(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def _try_create(path: Path, target_label: str, clock: Callable[[], int]) -> bool:
    record = LockRecord(
        pid=os.getpid(),
        timestamp=clock(),
        hostname=current_hostname(),
        target=target_label,
    )
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
    except FileExistsError:
        return False
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(json.dumps(record.model_dump(), indent=2))
            handle.flush()
            os.fsync(handle.fileno())
    except OSError:
        # never leave an empty claim behind
        _remove(path)
        raise
    return True


def _read_contended(path: Path) -> LockRecord | None:
    """Read a lock that another caller may have created but not yet written."""

    for _ in range(CONTENDED_READ_ATTEMPTS):
        record = read_lock(path)
        if record is not None or not path.exists():
            return record
        time.sleep(CONTENDED_READ_INTERVAL)
    return read_lock(path)


def _is_reclaimable(path: Path, existing: LockRecord | None, threshold_ms: int, now: int) -> bool:
    if existing is None:
        # Unparseable even after waiting: reclaim only once the file itself is old.
        try:
            modified_ms = Path(path).stat().st_mtime_ns // 1_000_000
        except FileNotFoundError:
            return True
        return now - modified_ms > threshold_ms
    if now - existing.timestamp > threshold_ms:
        return True
    return existing.hostname == current_hostname() and not process_exists(existing.pid)


def acquire(
    project_root: Path,
    target_label: str,
    stale_threshold_ms: int = STALE_THRESHOLD_MS,
    *,
    clock: Callable[[], int] = now_ms,
) -> LockResult:
    """Try to take the build lock for ``project_root``."""

    path = lock_path(project_root)
    path.parent.mkdir(parents=True, exist_ok=True)

    if _try_create(path, target_label, clock):
        return LockResult(acquired=True, lock_path=path)

    existing = _read_contended(path)
    if not _is_reclaimable(path, existing, stale_threshold_ms, clock()):
        return LockResult(acquired=False, lock_path=path, existing_lock=existing)

    logger.warning(
        "Removing stale build lock",
        extra={
            "lock_path": str(path),
            "holder_pid": existing.pid if existing else None,
            "holder_host": existing.hostname if existing else None,
        },
    )
    _remove(path)

    if _try_create(path, target_label, clock):
        return LockResult(acquired=True, lock_path=path, stale_removed=True)

    # Another process won the retry.
    return LockResult(acquired=False, lock_path=path, existing_lock=_read_contended(path))


def release(project_root: Path) -> bool:
    """Delete the lock if, and only if, this process on this host owns it."""

    path = lock_path(project_root)
    existing = read_lock(path)
    if existing is None:
        return False
    if existing.pid != os.getpid() or existing.hostname != current_hostname():
        return False
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


@contextmanager
def hold_lock(
    project_root: Path,
    target_label: str,
    stale_threshold_ms: int = STALE_THRESHOLD_MS,
) -> Iterator[LockResult]:
    """Hold the build lock for the duration of the ``with`` block."""

    result = acquire(project_root, target_label, stale_threshold_ms)
    if not result.acquired:
        if result.existing_lock is not None:
            raise LockContentionError(
                f"Build already in progress: {result.existing_lock.describe()}"
            )
        raise LockContentionError("Build already in progress: failed to acquire build lock")
    try:
        yield result
    finally:
        release(project_root)


def with_lock(
    project_root: Path,
    target_label: str,
    work: Callable[[], T],
    stale_threshold_ms: int = STALE_THRESHOLD_MS,
) -> T:
    """Run ``work`` while holding the lock; never runs it on contention."""

    with hold_lock(project_root, target_label, stale_threshold_ms):
        return work()


__all__ = [
    "LOCK_FILENAME",
    "LockRecord",
    "LockResult",
    "STALE_THRESHOLD_MS",
    "acquire",
    "format_duration",
    "hold_lock",
    "lock_path",
    "process_exists",
    "read_lock",
    "release",
    "with_lock",
]
