from __future__ import annotations

import asyncio
import os
from pathlib import Path

from ctx_build.build import atomic
from ctx_build.build.atomic import (
    PendingWrite,
    atomic_write,
    atomic_write_async,
    run_transaction,
    sweep_temp_files,
    temp_path_for,
    temp_pattern_for,
)


def _temp_files(root: Path) -> list[Path]:
    return [path for path in root.rglob("*") if atomic.TEMP_FILE_PATTERN.search(path.name)]


def test_atomic_write_creates_parents_and_leaves_no_temp(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "dir" / "CLAUDE.md"

    atomic_write(target, "line one\nline two\n")

    assert target.read_text(encoding="utf-8") == "line one\nline two\n"
    assert _temp_files(tmp_path) == []


def test_atomic_write_async_runs_in_worker_thread(tmp_path: Path) -> None:
    target = tmp_path / "AGENTS.md"

    asyncio.run(atomic_write_async(target, "async content"))

    assert target.read_text(encoding="utf-8") == "async content"


def test_temp_path_is_sibling_with_pid_suffix(tmp_path: Path) -> None:
    target = tmp_path / "out.md"
    assert temp_path_for(target) == tmp_path / f"out.md.tmp.{os.getpid()}"


def test_transaction_commits_every_write(tmp_path: Path) -> None:
    writes = [
        PendingWrite(target_path=tmp_path / "CLAUDE.md", content="claude"),
        PendingWrite(target_path=tmp_path / ".cursor" / "rules" / "a.mdc", content="cursor"),
    ]

    result = run_transaction(writes)

    assert result.success
    assert result.errors == []
    assert result.written_files == [write.target_path for write in writes]
    assert (tmp_path / ".cursor" / "rules" / "a.mdc").read_text(encoding="utf-8") == "cursor"
    assert _temp_files(tmp_path) == []


def test_prepare_failure_leaves_targets_untouched(tmp_path: Path) -> None:
    existing = tmp_path / "CLAUDE.md"
    existing.write_text("old content", encoding="utf-8")
    (tmp_path / "blocker").write_text("a file, not a directory", encoding="utf-8")

    result = run_transaction(
        [
            PendingWrite(target_path=existing, content="new content"),
            PendingWrite(target_path=tmp_path / "blocker" / "out.md", content="never written"),
        ]
    )

    assert not result.success
    assert result.written_files == []
    assert [failure.path for failure in result.errors] == [tmp_path / "blocker" / "out.md"]
    assert existing.read_text(encoding="utf-8") == "old content"
    assert _temp_files(tmp_path) == []


def test_commit_failure_reports_partial_progress(tmp_path: Path, monkeypatch) -> None:
    first = tmp_path / "first.md"
    second = tmp_path / "second.md"
    third = tmp_path / "third.md"
    real_replace = os.replace

    def flaky_replace(src, dst):
        if Path(dst) == second:
            raise PermissionError(13, "Permission denied")
        return real_replace(src, dst)

    monkeypatch.setattr(atomic.os, "replace", flaky_replace)

    result = run_transaction(
        [
            PendingWrite(target_path=first, content="1"),
            PendingWrite(target_path=second, content="2"),
            PendingWrite(target_path=third, content="3"),
        ]
    )

    assert not result.success
    assert result.written_files == [first]
    assert [failure.path for failure in result.errors] == [second]
    assert "Permission denied" in result.errors[0].describe()
    assert first.read_text(encoding="utf-8") == "1"
    assert not second.exists()
    assert not third.exists()
    assert _temp_files(tmp_path) == []


def test_sweep_removes_only_numbered_temp_files(tmp_path: Path) -> None:
    orphan = tmp_path / "CLAUDE.md.tmp.4242"
    orphan.write_text("partial", encoding="utf-8")
    keep = [tmp_path / "notes.tmp", tmp_path / "CLAUDE.md.tmp.abc", tmp_path / "CLAUDE.md"]
    for path in keep:
        path.write_text("keep", encoding="utf-8")
    nested = tmp_path / "sub"
    nested.mkdir()
    (nested / "x.md.tmp.1").write_text("nested", encoding="utf-8")

    removed = sweep_temp_files(tmp_path)

    assert removed == [orphan]
    assert all(path.exists() for path in keep)
    assert (nested / "x.md.tmp.1").exists()


def test_sweep_tolerates_missing_directory(tmp_path: Path) -> None:
    assert sweep_temp_files(tmp_path / "missing") == []


def test_sweep_with_name_pattern_only_touches_listed_outputs(tmp_path: Path) -> None:
    ours = [tmp_path / "CLAUDE.md.tmp.12", tmp_path / "AGENTS.md.tmp.3"]
    theirs = [tmp_path / "dump.tmp.2024", tmp_path / "XCLAUDE.md.tmp.1", tmp_path / "CLAUDE.mdx.tmp.1"]
    for path in [*ours, *theirs]:
        path.write_text("data", encoding="utf-8")

    removed = sweep_temp_files(tmp_path, temp_pattern_for(["CLAUDE.md", "AGENTS.md"]))

    assert sorted(removed) == sorted(ours)
    assert all(path.exists() for path in theirs)
