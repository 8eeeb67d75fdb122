"""Build pipeline: lock, parse, validate, compile, commit, record.

Everything that mutates the project happens while the build lock is held.
Failures anywhere in the pipeline are folded into a :class:`BuildResult`
instead of propagating to the caller.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Mapping, Sequence

from ..compilers import BaseCompiler, CompilationResult, CompiledOutput, CompilerContext, get_compiler
from ..compilers.base import ARCHITECTURE_FILENAME, PROJECT_FILENAME, RULES_PREFIX, utc_now
from ..rules.config import load_config
from ..rules.models import ParsedRule, ProjectConfig
from ..rules.parser import ParseResult, parse_all
from ..rules.validation import ValidationReport, validate
from ..settings import get_settings
from . import manifest as manifest_store
from .atomic import PendingWrite, run_transaction, sweep_temp_files, temp_pattern_for
from .errors import BuildAborted, BuildError, ConfigError, FailureKind, TransactionError, exit_code_for
from .healing import find_stale_generated, prune_stale_generated, reconcile_on_skip
from .lock import STALE_THRESHOLD_MS, hold_lock
from .manifest import CONFIG_FILENAME, CONTEXT_DIRNAME, OutputRecord
from .trailer import equivalent, verify_content

logger = logging.getLogger(__name__)

Parser = Callable[[Path], ParseResult]
Validator = Callable[..., ValidationReport]


@dataclass(slots=True)
class BuildOptions:
    project_root: Path
    targets: list[str] | None = None
    force: bool = False
    check_only: bool = False
    skip_validation: bool = False
    quiet: bool = False


@dataclass(slots=True)
class BuildStats:
    duration_ms: int = 0
    rules_processed: int = 0
    rules_changed: int = 0
    rules_removed: int = 0
    files_generated: int = 0
    files_pruned: int = 0
    total_tokens: int = 0
    incremental: bool = False
    skipped: bool = False
    targets: list[str] = field(default_factory=list)


@dataclass(slots=True)
class BuildResult:
    success: bool
    stats: BuildStats = field(default_factory=BuildStats)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    failure: FailureKind | None = None
    compilations: dict[str, CompilationResult] = field(default_factory=dict)
    validation: ValidationReport | None = None

    @property
    def exit_code(self) -> int:
        return exit_code_for(self.failure)


def _read_existing(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except UnicodeDecodeError:
        return ""


class BuildOrchestrator:
    """Run builds for one project with a fixed project configuration."""

    def __init__(
        self,
        project_root: Path,
        config: ProjectConfig,
        *,
        parser: Parser = parse_all,
        validator: Validator = validate,
        compilers: Mapping[str, BaseCompiler] | None = None,
        stale_threshold_ms: int = STALE_THRESHOLD_MS,
        clock: Callable[[], datetime] = utc_now,
        quiet: bool = False,
    ) -> None:
        self.project_root = Path(project_root)
        self.config = config
        self._parser = parser
        self._validator = validator
        self._compilers = dict(compilers) if compilers is not None else None
        self._stale_threshold_ms = stale_threshold_ms
        self._clock = clock
        self._quiet = quiet

    # Public API --------------------------------------------------------

    def build(self, options: BuildOptions) -> BuildResult:
        started = time.monotonic()
        result = BuildResult(success=False)
        quiet = self._quiet or options.quiet

        try:
            targets = self._resolve_targets(options.targets)
            result.stats.targets = list(targets)
            compilers = [self._compiler_for(name) for name in targets]
            with hold_lock(self.project_root, ",".join(targets), self._stale_threshold_ms):
                self._run(options, compilers, result, quiet)
        except BuildAborted as exc:
            result.failure = exc.kind
            result.errors.extend(exc.messages)
        except BuildError as exc:
            result.failure = exc.kind
            result.errors.append(str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected build failure", extra={"project_root": str(self.project_root)})
            result.failure = FailureKind.UNEXPECTED
            result.errors.append(f"Unexpected error: {exc}")

        result.success = result.failure is None
        result.stats.duration_ms = int((time.monotonic() - started) * 1000)
        if result.failure is not None:
            logger.error(
                "Build failed",
                extra={"failure": result.failure.value, "errors": len(result.errors)},
            )
        return result

    # Pipeline ----------------------------------------------------------

    def _run(
        self,
        options: BuildOptions,
        compilers: Sequence[BaseCompiler],
        result: BuildResult,
        quiet: bool,
    ) -> None:
        progress = logger.debug if quiet else logger.info
        root = self.project_root

        if not options.check_only:
            self._sweep(compilers)

        progress("Parsing rules...")
        parsed = self._parser(root)
        if parsed.errors:
            raise BuildAborted(FailureKind.PARSE, [error.describe() for error in parsed.errors])
        rules = parsed.rules
        result.stats.rules_processed = len(rules)

        if not options.skip_validation:
            progress("Validating rules...")
            report = self._validator(rules, self.config, root)
            result.validation = report
            if report.errors:
                raise BuildAborted(FailureKind.VALIDATION, [issue.describe() for issue in report.errors])
            result.warnings.extend(issue.describe() for issue in report.warnings)

        sources = self._source_files(rules)
        config_hash = manifest_store.config_fingerprint(root, self.config)
        target_label = ",".join(compiler.name for compiler in compilers)

        previous = None if options.force else manifest_store.load(root)
        result.stats.incremental = previous is not None
        if previous is not None:
            changes = manifest_store.diff(root, sources, previous)
            result.stats.rules_changed = sum(1 for path in changes.changed if path.startswith(RULES_PREFIX))
            result.stats.rules_removed = sum(1 for path in changes.removed if path.startswith(RULES_PREFIX))
            affected = manifest_store.affected_outputs(previous, [*changes.changed, *changes.removed])
            if affected:
                logger.debug("Changed sources affect outputs: %s", ", ".join(sorted(affected)))

            if (
                not options.check_only
                and changes.is_empty
                and previous.config_hash == config_hash
                and reconcile_on_skip(root, compilers, previous, len(rules))
            ):
                result.stats.skipped = True
                progress("No changes detected, outputs are up to date")
                return

        moment = self._clock()
        context = CompilerContext(project_root=root, config=self.config, rules=rules, clock=lambda: moment)
        outputs: list[CompiledOutput] = []
        failures: list[str] = []
        for compiler in compilers:
            progress("Compiling for %s...", compiler.name)
            compiled = compiler.compile(context)
            result.compilations[compiler.name] = compiled
            failures.extend(f"[{compiler.name}] {issue.describe()}" for issue in compiled.errors)
            result.warnings.extend(f"[{compiler.name}] {issue.message}" for issue in compiled.warnings)
            result.stats.total_tokens += compiled.total_tokens
            outputs.extend(compiled.outputs)
        if failures:
            raise BuildAborted(FailureKind.COMPILATION, failures)

        pending, missing, outdated = self._pending_writes(outputs)
        stale = self._stale_outputs(compilers, outputs)

        if options.check_only:
            problems = [
                *(f"missing output: {path}" for path in missing),
                *(f"output out of date: {path}" for path in outdated),
                *(f"stale generated output: {path}" for path in stale),
            ]
            if problems:
                raise BuildAborted(FailureKind.CHECK, problems)
            progress("All outputs are up to date")
            return

        if pending:
            transaction = run_transaction(pending)
            result.stats.files_generated = len(transaction.written_files)
            if not transaction.success:
                messages = [failure.describe() for failure in transaction.errors]
                messages.extend(
                    f"Committed before failure: {manifest_store.relative_path(root, path)}"
                    for path in transaction.written_files
                )
                raise BuildAborted(FailureKind.TRANSACTION, messages)
        progress("Wrote %d file(s)", result.stats.files_generated)

        for compiler in compilers:
            if compiler.output_directory is None:
                continue
            expected = {output.path for output in outputs if compiler.owns(output.path)}
            removed = prune_stale_generated(root, compiler.output_directory, expected, compiler.output_suffix)
            result.stats.files_pruned += len(removed)

        generated_at = manifest_store.now_ms()
        records = [
            OutputRecord(output_path=output.path, source_rules=output.sources, generated_at=generated_at)
            for output in outputs
        ]
        try:
            manifest = manifest_store.rebuild(root, sources, target_label, records, config_hash)
            manifest_store.persist(root, manifest)
        except OSError as exc:
            raise TransactionError(f"Failed to persist build manifest: {exc}") from exc

    # Helpers -----------------------------------------------------------

    def _resolve_targets(self, requested: Iterable[str] | None) -> list[str]:
        targets = list(dict.fromkeys(requested)) if requested else self.config.configured_targets()
        return targets

    def _compiler_for(self, name: str) -> BaseCompiler:
        if self._compilers is not None and name in self._compilers:
            return self._compilers[name]
        try:
            return get_compiler(name)
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc

    def _sweep(self, compilers: Sequence[BaseCompiler]) -> None:
        sweep_temp_files(self.project_root / CONTEXT_DIRNAME)
        single_files: dict[Path, list[str]] = {}
        for compiler in compilers:
            if compiler.output_directory is not None:
                sweep_temp_files(self.project_root / compiler.output_directory)
            elif compiler.output_path is not None:
                target = self.project_root / compiler.output_path
                single_files.setdefault(target.parent, []).append(target.name)
        # Outside tool-owned directories only our own output temps are touched.
        for directory, names in single_files.items():
            sweep_temp_files(directory, temp_pattern_for(names))

    def _source_files(self, rules: Sequence[ParsedRule]) -> list[Path]:
        context_dir = self.project_root / CONTEXT_DIRNAME
        files = [rule.absolute_path for rule in rules]
        for name in (PROJECT_FILENAME, ARCHITECTURE_FILENAME, CONFIG_FILENAME):
            candidate = context_dir / name
            if candidate.is_file():
                files.append(candidate)
        return files

    def _pending_writes(
        self, outputs: Iterable[CompiledOutput]
    ) -> tuple[list[PendingWrite], list[str], list[str]]:
        pending: list[PendingWrite] = []
        missing: list[str] = []
        outdated: list[str] = []
        for output in outputs:
            target_path = self.project_root / output.path
            existing = _read_existing(target_path)
            if existing is None:
                missing.append(output.path)
            elif not equivalent(existing, output.content) or not verify_content(existing):
                outdated.append(output.path)
            else:
                continue
            pending.append(PendingWrite(target_path=target_path, content=output.content))
        return pending, missing, outdated

    def _stale_outputs(
        self, compilers: Sequence[BaseCompiler], outputs: Sequence[CompiledOutput]
    ) -> list[str]:
        stale: list[str] = []
        for compiler in compilers:
            if compiler.output_directory is None:
                continue
            expected = {output.path for output in outputs if compiler.owns(output.path)}
            stale.extend(
                find_stale_generated(
                    self.project_root, compiler.output_directory, expected, compiler.output_suffix
                )
            )
        return stale


def execute_build(options: BuildOptions, *, stale_threshold_ms: int | None = None) -> BuildResult:
    """Load the project config and run one build.

    A configuration error is reported without touching the build lock.
    """

    started = time.monotonic()
    root = Path(options.project_root)
    try:
        loaded = load_config(root)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return BuildResult(
            success=False,
            stats=BuildStats(
                duration_ms=int((time.monotonic() - started) * 1000),
                targets=list(options.targets or []),
            ),
            errors=[str(exc)],
            failure=FailureKind.CONFIGURATION,
        )

    if stale_threshold_ms is None:
        stale_threshold_ms = get_settings().lock_stale_ms
    orchestrator = BuildOrchestrator(
        root,
        loaded.config,
        stale_threshold_ms=stale_threshold_ms,
        quiet=options.quiet,
    )
    result = orchestrator.build(options)
    result.warnings[:0] = loaded.warnings
    return result


def format_build_result(result: BuildResult) -> str:
    """Human-readable build summary."""

    stats = result.stats
    lines = ["Build succeeded" if result.success else "Build failed"]
    if stats.skipped:
        lines.append("No changes detected; outputs are up to date")
    lines.append(f"Duration: {stats.duration_ms}ms")
    lines.append(f"Rules processed: {stats.rules_processed}")
    if stats.incremental:
        lines.append(f"Rules changed: {stats.rules_changed}")
        if stats.rules_removed:
            lines.append(f"Rules removed: {stats.rules_removed}")
    lines.append(f"Files generated: {stats.files_generated}")
    if stats.files_pruned:
        lines.append(f"Files pruned: {stats.files_pruned}")
    lines.append(f"Total tokens: {stats.total_tokens}")
    lines.append(f"Targets: {', '.join(stats.targets)}")

    if result.errors:
        lines.append("")
        lines.append("Errors:")
        lines.extend(f"  - {error}" for error in result.errors)
    if result.warnings:
        lines.append("")
        lines.append("Warnings:")
        lines.extend(f"  - {warning}" for warning in result.warnings)
    return "\n".join(lines)


__all__ = [
    "BuildOptions",
    "BuildOrchestrator",
    "BuildResult",
    "BuildStats",
    "execute_build",
    "format_build_result",
]
