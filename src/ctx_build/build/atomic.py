"""Atomic file writes: temp file then rename, batched into transactions.

A transaction has two phases. Prepare writes every pending file to a sibling
temp file named ``<name>.tmp.<pid>``; if any prepare step fails all temp files
are removed and no target has been touched. Commit renames each temp file
onto its target. Renames are individually atomic but the batch is not: a
failure (or crash) part way through commit leaves the already renamed files
in place, and the result reports which paths were written and which failed.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Pattern

logger = logging.getLogger(__name__)

TEMP_FILE_PATTERN: Pattern[str] = re.compile(r"\.tmp\.\d+$")


def temp_pattern_for(names: Iterable[str]) -> Pattern[str]:
    """Match only the temp siblings of the given file names."""

    alternatives = "|".join(re.escape(name) for name in names)
    return re.compile(rf"^(?:{alternatives})\.tmp\.\d+$")


@dataclass(slots=True)
class PendingWrite:
    """One queued output write."""

    target_path: Path
    content: str


@dataclass(slots=True)
class WriteFailure:
    path: Path
    error: OSError

    def describe(self) -> str:
        return f"Failed to write {self.path}: {self.error.strerror or self.error}"


@dataclass(slots=True)
class TransactionResult:
    """Outcome of :func:`run_transaction`."""

    success: bool = False
    written_files: list[Path] = field(default_factory=list)
    errors: list[WriteFailure] = field(default_factory=list)


def temp_path_for(target_path: Path) -> Path:
    target_path = Path(target_path)
    return target_path.with_name(f"{target_path.name}.tmp.{os.getpid()}")


def _write_temp(temp_path: Path, content: str) -> None:
    with open(temp_path, "w", encoding="utf-8", newline="") as handle:
        handle.write(content)
        handle.flush()
        os.fsync(handle.fileno())


def _discard(paths: Iterable[Path]) -> None:
    for path in paths:
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.warning("Could not remove temp file %s: %s", path, exc)


def atomic_write(target_path: Path, content: str) -> None:
    """Write ``content`` to ``target_path`` via temp file and rename.

    Raises ``OSError`` on failure; the temp file is removed first.
    """

    target_path = Path(target_path)
    temp_path = temp_path_for(target_path)
    target_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        _write_temp(temp_path, content)
        os.replace(temp_path, target_path)
    except OSError:
        _discard([temp_path])
        raise


async def atomic_write_async(target_path: Path, content: str) -> None:
    """Run :func:`atomic_write` in a worker thread."""

    await asyncio.to_thread(atomic_write, target_path, content)


def run_transaction(writes: Iterable[PendingWrite]) -> TransactionResult:
    """Commit a batch of writes with all-or-nothing prepare semantics."""

    result = TransactionResult()
    prepared: list[tuple[PendingWrite, Path]] = []

    for write in writes:
        temp_path = temp_path_for(write.target_path)
        try:
            write.target_path.parent.mkdir(parents=True, exist_ok=True)
            _write_temp(temp_path, write.content)
        except OSError as exc:
            result.errors.append(WriteFailure(path=write.target_path, error=exc))
            _discard([temp_path, *(temp for _, temp in prepared)])
            logger.error(
                "Transaction prepare failed; no targets modified",
                extra={"path": str(write.target_path), "prepared": len(prepared)},
            )
            return result
        prepared.append((write, temp_path))

    for index, (write, temp_path) in enumerate(prepared):
        try:
            os.replace(temp_path, write.target_path)
        except OSError as exc:
            result.errors.append(WriteFailure(path=write.target_path, error=exc))
            _discard(temp for _, temp in prepared[index:])
            logger.error(
                "Transaction commit failed part way; earlier renames remain committed",
                extra={
                    "path": str(write.target_path),
                    "committed": [str(path) for path in result.written_files],
                },
            )
            return result
        result.written_files.append(write.target_path)

    result.success = True
    return result


def sweep_temp_files(directory: Path, pattern: Pattern[str] = TEMP_FILE_PATTERN) -> list[Path]:
    """Delete leftover temp files in ``directory`` (not recursive)."""

    directory = Path(directory)
    removed: list[Path] = []
    try:
        entries = list(directory.iterdir())
    except (FileNotFoundError, NotADirectoryError):
        return removed

    for entry in entries:
        if not pattern.search(entry.name) or not entry.is_file():
            continue
        try:
            entry.unlink()
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.warning("Could not sweep temp file %s: %s", entry, exc)
            continue
        removed.append(entry)

    if removed:
        logger.info("Removed %d orphaned temp file(s) from %s", len(removed), directory)
    return removed


__all__ = [
    "PendingWrite",
    "TEMP_FILE_PATTERN",
    "TransactionResult",
    "WriteFailure",
    "atomic_write",
    "atomic_write_async",
    "run_transaction",
    "sweep_temp_files",
    "temp_path_for",
    "temp_pattern_for",
]
