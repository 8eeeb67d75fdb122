from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from ctx_build.build import lock as build_lock
from ctx_build.build import manifest as manifest_store
from ctx_build.build import orchestrator as orchestrator_module
from ctx_build.build.atomic import TransactionResult, WriteFailure
from ctx_build.build.errors import FailureKind
from ctx_build.build.healing import verify_output
from ctx_build.build.orchestrator import (
    BuildOptions,
    BuildOrchestrator,
    BuildResult,
    BuildStats,
    execute_build,
    format_build_result,
)
from ctx_build.build.trailer import append_trailer
from ctx_build.rules.config import load_config

from conftest import write, write_rule

MOMENT = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

OUTPUTS = [
    "CLAUDE.md",
    "AGENTS.md",
    ".cursor/rules/general.mdc",
    ".cursor/rules/backend-api.mdc",
    ".cursor/rules/security-auth.mdc",
]


def run_build(root: Path, **options) -> BuildResult:
    orchestrator = BuildOrchestrator(root, load_config(root).config, clock=lambda: MOMENT)
    return orchestrator.build(BuildOptions(project_root=root, **options))


def snapshot(root: Path) -> dict[str, bytes]:
    return {path: (root / path).read_bytes() for path in OUTPUTS if (root / path).exists()}


def test_full_build_writes_every_target_and_manifest(project: Path) -> None:
    result = run_build(project, force=True)

    assert result.success, result.errors
    assert result.failure is None
    assert result.exit_code == 0
    assert result.stats.targets == ["claude", "cursor", "agents"]
    assert result.stats.rules_processed == 3
    assert result.stats.files_generated == 5
    assert result.stats.total_tokens > 0
    assert not result.stats.incremental
    assert set(result.compilations) == {"claude", "cursor", "agents"}
    for rel in OUTPUTS:
        assert verify_output(project / rel), rel
    assert not build_lock.lock_path(project).exists()

    manifest = manifest_store.load(project)
    assert manifest is not None
    assert manifest.target == "claude,cursor,agents"
    assert set(manifest.sources) == {
        ".context/rules/general.md",
        ".context/rules/backend/api.md",
        ".context/rules/security/auth.md",
        ".context/project.md",
        ".context/architecture.md",
        ".context/config.yaml",
    }
    assert sorted(record.output_path for record in manifest.outputs) == sorted(OUTPUTS)
    cursor_record = next(r for r in manifest.outputs if r.output_path == ".cursor/rules/backend-api.mdc")
    assert cursor_record.source_rules == [".context/rules/backend/api.md"]
    assert manifest.config_hash == manifest_store.config_fingerprint(project, load_config(project).config)


def test_incremental_build_without_changes_is_skipped(project: Path) -> None:
    run_build(project)
    before = snapshot(project)
    manifest_before = manifest_store.manifest_path(project).read_bytes()

    result = run_build(project)

    assert result.success
    assert result.stats.incremental
    assert result.stats.skipped
    assert result.stats.files_generated == 0
    assert snapshot(project) == before
    assert manifest_store.manifest_path(project).read_bytes() == manifest_before


def test_repeated_full_builds_are_idempotent(project: Path) -> None:
    run_build(project, force=True)
    first = snapshot(project)

    result = run_build(project, force=True)

    assert result.success
    assert result.stats.files_generated == 0
    assert snapshot(project) == first


def test_changed_rule_triggers_rebuild(project: Path) -> None:
    run_build(project)
    write_rule(project, "security/auth.md", "auth", "Never log credentials or session tokens.")

    result = run_build(project)

    assert result.success
    assert result.stats.incremental
    assert not result.stats.skipped
    assert result.stats.rules_changed == 1
    assert "session tokens" in (project / ".cursor/rules/security-auth.mdc").read_text(encoding="utf-8")
    assert "session tokens" in (project / "CLAUDE.md").read_text(encoding="utf-8")
    # CLAUDE.md, AGENTS.md and the one cursor file that changed
    assert result.stats.files_generated == 3


def test_config_change_forces_rebuild(project: Path) -> None:
    run_build(project)
    config = project / ".context" / "config.yaml"
    config.write_text(config.read_text(encoding="utf-8") + "\n# tweaked\n", encoding="utf-8")

    result = run_build(project)

    assert result.success
    assert not result.stats.skipped


def test_drifted_output_is_restored_on_incremental_build(project: Path) -> None:
    run_build(project)
    claude = project / "CLAUDE.md"
    original = claude.read_text(encoding="utf-8")
    claude.write_text("# hand edited\n", encoding="utf-8")

    result = run_build(project)

    assert result.success
    assert not result.stats.skipped
    assert claude.read_text(encoding="utf-8") == original
    assert result.stats.files_generated == 1


def test_garbage_after_trailer_is_healed_on_incremental_build(project: Path) -> None:
    run_build(project)
    claude = project / "CLAUDE.md"
    original = claude.read_text(encoding="utf-8")
    claude.write_text(original + "\nappended by hand\n", encoding="utf-8")
    assert not verify_output(claude)

    result = run_build(project)

    assert result.success
    assert not result.stats.skipped
    assert result.stats.files_generated == 1
    assert claude.read_text(encoding="utf-8") == original
    assert verify_output(claude)


def test_deleted_output_is_restored_on_incremental_build(project: Path) -> None:
    run_build(project)
    (project / ".cursor/rules/general.mdc").unlink()

    result = run_build(project)

    assert result.success
    assert not result.stats.skipped
    assert verify_output(project / ".cursor/rules/general.mdc")


def test_removed_rule_prunes_its_generated_output(project: Path) -> None:
    run_build(project)
    manual = project / ".cursor" / "rules" / "handwritten.mdc"
    manual.write_text("kept by the user\n", encoding="utf-8")
    (project / ".context" / "rules" / "security" / "auth.md").unlink()

    result = run_build(project)

    assert result.success
    assert result.stats.rules_removed == 1
    assert result.stats.files_pruned == 1
    assert not (project / ".cursor/rules/security-auth.mdc").exists()
    assert manual.exists()
    assert "### auth" not in (project / "CLAUDE.md").read_text(encoding="utf-8")
    manifest = manifest_store.load(project)
    assert ".context/rules/security/auth.md" not in manifest.sources


def test_stale_generated_file_is_pruned_on_skip(project: Path) -> None:
    run_build(project)
    leftover = project / ".cursor" / "rules" / "old-rule.mdc"
    leftover.write_text(append_trailer("old\n", MOMENT), encoding="utf-8")

    result = run_build(project)

    assert result.success
    assert result.stats.skipped
    assert not leftover.exists()


def test_orphaned_temp_files_are_swept(project: Path) -> None:
    orphans = [
        project / "CLAUDE.md.tmp.99999",
        project / ".context" / ".build-manifest.json.tmp.12345",
        project / ".cursor" / "rules" / "general.mdc.tmp.4242",
    ]
    for orphan in orphans:
        orphan.parent.mkdir(parents=True, exist_ok=True)
        orphan.write_text("partial", encoding="utf-8")

    result = run_build(project)

    assert result.success
    assert not any(orphan.exists() for orphan in orphans)


def test_sweep_leaves_unrelated_temp_named_files_alone(project: Path) -> None:
    foreign = [
        project / "dump.tmp.2024",
        project / "README.md.tmp.7",
        project / "docs" / "notes.tmp.1",
    ]
    for path in foreign:
        write(path, "user data")

    result = run_build(project)

    assert result.success
    assert all(path.read_text(encoding="utf-8") == "user data" for path in foreign)


def test_parse_error_aborts_without_writes(project: Path) -> None:
    (project / ".context" / "rules" / "broken.md").write_text("no frontmatter here\n", encoding="utf-8")

    result = run_build(project)

    assert not result.success
    assert result.failure is FailureKind.PARSE
    assert result.exit_code == 1
    assert result.errors[0].startswith("Parse error: ")
    assert snapshot(project) == {}
    assert manifest_store.load(project) is None
    assert not build_lock.lock_path(project).exists()


def test_validation_error_aborts_unless_skipped(project: Path) -> None:
    write_rule(project, "copy.md", "auth")

    result = run_build(project)

    assert result.failure is FailureKind.VALIDATION
    assert result.exit_code == 1
    assert any("Duplicate rule ID 'auth'" in error for error in result.errors)
    assert result.validation is not None and not result.validation.valid
    assert snapshot(project) == {}

    skipped = run_build(project, skip_validation=True)
    assert skipped.success
    assert skipped.validation is None


def test_compilation_error_aborts_before_any_write(project: Path) -> None:
    (project / ".context" / "project.md").unlink()

    result = run_build(project)

    assert result.failure is FailureKind.COMPILATION
    assert result.exit_code == 1
    assert "[claude] project.md is required for Claude compilation but was not found" in result.errors[0]
    assert snapshot(project) == {}


def test_lock_contention_fails_without_touching_outputs(project: Path) -> None:
    path = build_lock.lock_path(project)
    holder = {"pid": 4242, "timestamp": manifest_store.now_ms(), "hostname": "ci-runner-7", "target": "cursor"}
    path.write_text(json.dumps(holder), encoding="utf-8")

    result = run_build(project)

    assert result.failure is FailureKind.LOCK
    assert result.exit_code == 2
    assert "PID 4242 on ci-runner-7" in result.errors[0]
    assert snapshot(project) == {}
    assert json.loads(path.read_text(encoding="utf-8")) == holder


def test_transaction_failure_keeps_previous_manifest(project: Path, monkeypatch) -> None:
    run_build(project)
    manifest_before = manifest_store.manifest_path(project).read_bytes()
    write_rule(project, "general.md", "general", "Completely different guidance text.", priority=90)

    def failing_transaction(writes):
        writes = list(writes)
        return TransactionResult(
            success=False,
            written_files=[],
            errors=[WriteFailure(path=writes[0].target_path, error=OSError(28, "No space left on device"))],
        )

    monkeypatch.setattr(orchestrator_module, "run_transaction", failing_transaction)

    result = run_build(project)

    assert result.failure is FailureKind.TRANSACTION
    assert result.exit_code == 2
    assert "No space left on device" in result.errors[0]
    assert manifest_store.manifest_path(project).read_bytes() == manifest_before
    assert not build_lock.lock_path(project).exists()


def test_unexpected_exception_is_reported_and_lock_released(project: Path) -> None:
    def exploding_parser(root):
        raise RuntimeError("parser blew up")

    orchestrator = BuildOrchestrator(project, load_config(project).config, parser=exploding_parser)
    result = orchestrator.build(BuildOptions(project_root=project))

    assert result.failure is FailureKind.UNEXPECTED
    assert result.exit_code == 2
    assert result.errors == ["Unexpected error: parser blew up"]
    assert not build_lock.lock_path(project).exists()


def test_unknown_target_is_a_configuration_failure(project: Path) -> None:
    result = run_build(project, targets=["vim"])

    assert result.failure is FailureKind.CONFIGURATION
    assert "Unknown build target 'vim'" in result.errors[0]
    assert not build_lock.lock_path(project).exists()


def test_requesting_a_target_never_built_vetoes_skip(project: Path) -> None:
    run_build(project, targets=["claude"])
    assert not (project / "AGENTS.md").exists()

    result = run_build(project, targets=["claude", "agents"])

    assert result.success
    assert not result.stats.skipped
    assert verify_output(project / "AGENTS.md")


class TestCheckMode:
    def test_reports_missing_outputs_without_writing(self, project: Path) -> None:
        result = run_build(project, check_only=True)

        assert result.failure is FailureKind.CHECK
        assert result.exit_code == 1
        assert "missing output: CLAUDE.md" in result.errors
        assert snapshot(project) == {}
        assert manifest_store.load(project) is None

    def test_passes_when_outputs_are_current(self, project: Path) -> None:
        run_build(project)

        result = run_build(project, check_only=True)

        assert result.success
        assert result.exit_code == 0

    def test_reports_out_of_date_and_stale_outputs(self, project: Path) -> None:
        run_build(project)
        before = snapshot(project)
        write_rule(project, "general.md", "general", "Rewritten guidance.", priority=90, always_apply=True)
        stale = project / ".cursor" / "rules" / "retired.mdc"
        stale.write_text(append_trailer("retired\n", MOMENT), encoding="utf-8")
        orphan = project / "CLAUDE.md.tmp.777"
        orphan.write_text("partial", encoding="utf-8")

        result = run_build(project, check_only=True)

        assert result.failure is FailureKind.CHECK
        assert "output out of date: CLAUDE.md" in result.errors
        assert "output out of date: .cursor/rules/general.mdc" in result.errors
        assert "stale generated output: .cursor/rules/retired.mdc" in result.errors
        assert snapshot(project) == before
        assert stale.exists()
        assert orphan.exists()


def test_execute_build_reports_config_errors_without_lock(project: Path) -> None:
    write(project / ".context" / "config.yaml", "compile: [broken\n")

    result = execute_build(BuildOptions(project_root=project))

    assert result.failure is FailureKind.CONFIGURATION
    assert result.exit_code == 2
    assert "Invalid YAML syntax" in result.errors[0]
    assert not build_lock.lock_path(project).exists()


def test_execute_build_surfaces_config_warnings(project: Path) -> None:
    (project / ".context" / "config.yaml").unlink()

    result = execute_build(BuildOptions(project_root=project, targets=["claude"]))

    assert result.success, result.errors
    assert result.warnings[0] == "No config.yaml found, using defaults"


@pytest.mark.parametrize("success", [True, False])
def test_format_build_result(success: bool) -> None:
    result = BuildResult(
        success=success,
        stats=BuildStats(
            duration_ms=12,
            rules_processed=3,
            rules_changed=1,
            files_generated=2,
            total_tokens=345,
            incremental=True,
            targets=["claude", "cursor"],
        ),
        errors=[] if success else ["Parse error: bad (a.md:0)"],
        warnings=["[claude] architecture.md not found"],
    )

    text = format_build_result(result)

    assert text.splitlines()[0] == ("Build succeeded" if success else "Build failed")
    assert "Rules processed: 3" in text
    assert "Rules changed: 1" in text
    assert "Files generated: 2" in text
    assert "Total tokens: 345" in text
    assert "Targets: claude, cursor" in text
    assert "  - [claude] architecture.md not found" in text
    assert ("Errors:" in text) is not success
