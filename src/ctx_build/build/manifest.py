"""Build manifest: source fingerprints and output dependency edges.

Stored at ``.context/.build-manifest.json``. A manifest is always rebuilt
from the current file set and replaced as a whole; it is never patched.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .atomic import atomic_write
from .hashing import canonical_dumps, hash_content, hash_file

logger = logging.getLogger(__name__)

CONTEXT_DIRNAME = ".context"
MANIFEST_FILENAME = ".build-manifest.json"
MANIFEST_VERSION = "1.0"
CONFIG_FILENAME = "config.yaml"


def now_ms() -> int:
    return time.time_ns() // 1_000_000


class SourceFingerprint(BaseModel):
    """Last-known state of one tracked input file."""

    hash: str
    mtime: float
    size: int


class OutputRecord(BaseModel):
    """Dependency edge from source files to one produced artifact."""

    model_config = ConfigDict(populate_by_name=True)

    output_path: str = Field(..., alias="outputPath")
    source_rules: list[str] = Field(default_factory=list, alias="sourceRules")
    generated_at: int = Field(..., alias="generatedAt")


class BuildManifest(BaseModel):
    """Persisted state of the last successful build."""

    model_config = ConfigDict(populate_by_name=True)

    version: str = MANIFEST_VERSION
    last_build_time: int = Field(default=0, alias="lastBuildTime")
    target: str = ""
    sources: dict[str, SourceFingerprint] = Field(default_factory=dict)
    config_hash: str = Field(default="", alias="configHash")
    outputs: list[OutputRecord] = Field(default_factory=list)

    def to_json(self) -> str:
        return json.dumps(self.model_dump(by_alias=True), indent=2)


@dataclass(slots=True)
class SourceDiff:
    """Partition of the current file set against a manifest."""

    added: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)

    @property
    def changed(self) -> set[str]:
        return set(self.added) | set(self.modified)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.removed)


def manifest_path(project_root: Path) -> Path:
    return Path(project_root) / CONTEXT_DIRNAME / MANIFEST_FILENAME


def relative_path(project_root: Path, path: Path) -> str:
    """Project-root-relative POSIX path used for every manifest key."""

    path = Path(path)
    if not path.is_absolute():
        path = Path(project_root) / path
    return Path(os.path.relpath(path, project_root)).as_posix()


def _mtime_ms(stat_result: os.stat_result) -> float:
    return stat_result.st_mtime_ns / 1_000_000


def fingerprint(path: Path) -> SourceFingerprint:
    """Read ``path`` once and record its hash, size and modification time."""

    with open(path, "rb") as handle:
        data = handle.read()
        stat_result = os.fstat(handle.fileno())
    return SourceFingerprint(
        hash=hash_content(data),
        mtime=_mtime_ms(stat_result),
        size=stat_result.st_size,
    )


def has_changed(path: Path, previous: SourceFingerprint | None) -> bool:
    """Return whether ``path`` differs from ``previous``.

    ``(mtime, size)`` equality is trusted without reading the file; otherwise
    the content hash decides.
    """

    if previous is None:
        return True
    try:
        stat_result = os.stat(path)
    except OSError:
        return True

    if _mtime_ms(stat_result) == previous.mtime and stat_result.st_size == previous.size:
        return False

    try:
        return hash_file(path) != previous.hash
    except OSError:
        return True


def diff(project_root: Path, current_files: Iterable[Path], manifest: BuildManifest) -> SourceDiff:
    result = SourceDiff()
    seen: set[str] = set()

    for path in current_files:
        rel = relative_path(project_root, path)
        seen.add(rel)
        previous = manifest.sources.get(rel)
        if previous is None:
            result.added.append(rel)
        elif has_changed(Path(project_root) / rel, previous):
            result.modified.append(rel)
        else:
            result.unchanged.append(rel)

    result.removed = [rel for rel in manifest.sources if rel not in seen]
    return result


def affected_outputs(manifest: BuildManifest, changed_paths: Iterable[str]) -> set[str]:
    changed = set(changed_paths)
    return {
        record.output_path
        for record in manifest.outputs
        if changed.intersection(record.source_rules)
    }


def load(project_root: Path) -> BuildManifest | None:
    """Return the stored manifest, or None when there is no usable one."""

    path = manifest_path(project_root)
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("Ignoring unreadable build manifest %s: %s", path, exc)
        return None

    if not isinstance(document, dict) or document.get("version") != MANIFEST_VERSION:
        logger.info("Build manifest version mismatch; forcing full rebuild")
        return None

    try:
        return BuildManifest.model_validate(document)
    except ValidationError as exc:
        logger.warning("Ignoring malformed build manifest %s: %s", path, exc)
        return None


def persist(project_root: Path, manifest: BuildManifest) -> Path:
    path = manifest_path(project_root)
    atomic_write(path, manifest.to_json())
    return path


def rebuild(
    project_root: Path,
    files: Iterable[Path],
    target_label: str,
    outputs: Iterable[OutputRecord],
    config_hash: str,
    *,
    clock: Callable[[], int] = now_ms,
) -> BuildManifest:
    """Fingerprint every file afresh and return a brand-new manifest."""

    sources = {relative_path(project_root, path): fingerprint(path) for path in files}
    return BuildManifest(
        version=MANIFEST_VERSION,
        last_build_time=clock(),
        target=target_label,
        sources=sources,
        config_hash=config_hash,
        outputs=list(outputs),
    )


def config_fingerprint(project_root: Path, config: BaseModel | Mapping[str, Any]) -> str:
    """Hash of the raw config.yaml, or of the effective config when absent."""

    config_path = Path(project_root) / CONTEXT_DIRNAME / CONFIG_FILENAME
    try:
        return hash_content(config_path.read_bytes())
    except FileNotFoundError:
        pass
    payload = config.model_dump(mode="json") if isinstance(config, BaseModel) else dict(config)
    return hash_content(canonical_dumps(payload))


__all__ = [
    "BuildManifest",
    "CONTEXT_DIRNAME",
    "MANIFEST_VERSION",
    "OutputRecord",
    "SourceDiff",
    "SourceFingerprint",
    "affected_outputs",
    "config_fingerprint",
    "diff",
    "fingerprint",
    "has_changed",
    "load",
    "manifest_path",
    "now_ms",
    "persist",
    "rebuild",
    "relative_path",
]
