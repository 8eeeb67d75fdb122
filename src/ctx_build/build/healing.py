"""Drift detection and self-healing of generated artifacts."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Protocol

from .manifest import BuildManifest
from .trailer import has_trailer, verify_content

logger = logging.getLogger(__name__)


class OutputTarget(Protocol):
    """What the drift detector needs to know about a compile target."""

    name: str
    output_directory: str | None
    output_suffix: str

    def owns(self, output_path: str) -> bool:
        ...


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None


def verify_output(path: Path) -> bool:
    """True when ``path`` exists and its embedded checksum matches its content."""

    content = _read_text(Path(path))
    if content is None:
        return False
    return verify_content(content)


def find_stale_generated(
    project_root: Path,
    directory: str,
    expected: Iterable[str],
    suffix: str = "",
) -> list[str]:
    """Project-relative paths of generated files in ``directory`` not in ``expected``.

    Files without a metadata trailer were not produced by this tool and are
    never reported.
    """

    expected_set = set(expected)
    base = Path(project_root) / directory
    try:
        entries = sorted(base.iterdir())
    except (FileNotFoundError, NotADirectoryError):
        return []

    stale: list[str] = []
    for entry in entries:
        if not entry.is_file() or (suffix and not entry.name.endswith(suffix)):
            continue
        rel = f"{directory.rstrip('/')}/{entry.name}"
        if rel in expected_set:
            continue
        content = _read_text(entry)
        if content is not None and has_trailer(content):
            stale.append(rel)
    return stale


def prune_stale_generated(
    project_root: Path,
    directory: str,
    expected: Iterable[str],
    suffix: str = "",
) -> list[str]:
    """Delete stale generated files; returns the removed project-relative paths."""

    removed: list[str] = []
    for rel in find_stale_generated(project_root, directory, expected, suffix):
        try:
            (Path(project_root) / rel).unlink()
        except FileNotFoundError:
            continue
        removed.append(rel)
        logger.info("Removed stale generated output %s", rel)
    return removed


def expected_outputs(targets: Iterable[OutputTarget], manifest: BuildManifest) -> dict[str, set[str]]:
    """Recorded output paths per requested target."""

    recorded = [record.output_path for record in manifest.outputs]
    return {target.name: {path for path in recorded if target.owns(path)} for target in targets}


def reconcile_on_skip(
    project_root: Path,
    targets: Iterable[OutputTarget],
    manifest: BuildManifest,
    rule_count: int,
) -> bool:
    """Decide whether skipping compilation is safe, pruning stale outputs if so.

    Vetoes the skip when a requested target was never built or any recorded
    output fails checksum verification.
    """

    targets = list(targets)
    expected = expected_outputs(targets, manifest)

    for target in targets:
        paths = expected[target.name]
        if target.output_directory is None and not paths:
            logger.info("Target %s has no recorded output; rebuild required", target.name)
            return False
        if target.output_directory is not None and rule_count > 0 and not paths:
            logger.info("Target %s has no recorded outputs; rebuild required", target.name)
            return False

    for target in targets:
        for rel in sorted(expected[target.name]):
            if not verify_output(Path(project_root) / rel):
                logger.info("Output %s drifted from its checksum; rebuild required", rel)
                return False

    for target in targets:
        if target.output_directory is None:
            continue
        try:
            prune_stale_generated(
                project_root,
                target.output_directory,
                expected[target.name],
                target.output_suffix,
            )
        except OSError as exc:
            logger.warning("Could not prune stale outputs for %s: %s", target.name, exc)
            return False

    return True


__all__ = [
    "OutputTarget",
    "expected_outputs",
    "find_stale_generated",
    "prune_stale_generated",
    "reconcile_on_skip",
    "verify_output",
]
