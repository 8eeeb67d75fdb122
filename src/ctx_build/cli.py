"""Command line entry point for ctx-build."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from . import __version__
from .build import lock as build_lock
from .build import manifest as manifest_store
from .build.errors import EXIT_CONTENT_FAILURE, EXIT_OK, EXIT_TOOL_FAILURE, ConfigError
from .build.healing import verify_output
from .build.orchestrator import BuildOptions, execute_build, format_build_result
from .build.trailer import split_trailer
from .rules.config import load_config
from .rules.models import BUILD_TARGETS
from .rules.parser import parse_all
from .rules.validation import validate
from .settings import get_settings

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the ctx-build CLI."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _context_dir(project_root: Path) -> Path:
    return project_root / manifest_store.CONTEXT_DIRNAME


def cmd_build(args: argparse.Namespace) -> int:
    project_root = Path(args.project_root).resolve()
    if not _context_dir(project_root).is_dir():
        print(
            f"No .context directory found in {project_root}. "
            "Create it with a project.md and a rules/ directory first."
        )
        return EXIT_TOOL_FAILURE

    options = BuildOptions(
        project_root=project_root,
        targets=args.target or None,
        force=args.force or not args.incremental,
        check_only=args.check,
        skip_validation=args.skip_validation,
        quiet=args.quiet,
    )
    logger.debug("Starting build", extra={"project_root": str(project_root), "targets": args.target})
    result = execute_build(options)

    if not args.quiet or not result.success:
        print(format_build_result(result))
    return result.exit_code


def cmd_status(args: argparse.Namespace) -> int:
    project_root = Path(args.project_root).resolve()
    if not _context_dir(project_root).is_dir():
        print(f"No .context directory found in {project_root}.")
        return EXIT_TOOL_FAILURE

    manifest = manifest_store.load(project_root)
    record = build_lock.read_lock(build_lock.lock_path(project_root))
    payload = {
        "project_root": str(project_root),
        "manifest": manifest.model_dump(by_alias=True) if manifest is not None else None,
        "lock": record.model_dump() if record is not None else None,
        "lock_holder": record.describe() if record is not None else None,
    }
    print(json.dumps(payload, indent=2))
    return EXIT_OK


def cmd_verify(args: argparse.Namespace) -> int:
    project_root = Path(args.project_root).resolve()
    manifest = manifest_store.load(project_root)
    if manifest is None:
        if args.json:
            print(json.dumps({"success": True, "filesVerified": 0, "failures": []}, indent=2))
        else:
            print("No build manifest found; nothing to verify.")
        return EXIT_OK

    failures: list[dict[str, str]] = []
    for record in manifest.outputs:
        path = project_root / record.output_path
        if not path.is_file():
            failures.append({"path": record.output_path, "reason": "missing"})
        elif not verify_output(path):
            failures.append({"path": record.output_path, "reason": "checksum mismatch"})
        elif args.verbose and not args.json:
            trailer = split_trailer(path.read_text(encoding="utf-8"))[1]
            print(f"ok {record.output_path} ({trailer.checksum})")

    verified = len(manifest.outputs) - len(failures)
    if args.json:
        payload = {"success": not failures, "filesVerified": verified, "failures": failures}
        print(json.dumps(payload, indent=2))
    else:
        for failure in failures:
            print(f"{failure['reason']}: {failure['path']}")
        if failures:
            print(f"Verification failed: {len(failures)} of {len(manifest.outputs)} output(s) drifted")
        else:
            print(f"Verified {verified} output(s)")
    return EXIT_CONTENT_FAILURE if failures else EXIT_OK


def cmd_lint(args: argparse.Namespace) -> int:
    project_root = Path(args.project_root).resolve()
    if not _context_dir(project_root).is_dir():
        print(f"No .context directory found in {project_root}.")
        return EXIT_TOOL_FAILURE

    try:
        loaded = load_config(project_root)
    except ConfigError as exc:
        print(f"Configuration error: {exc}")
        return EXIT_TOOL_FAILURE

    parsed = parse_all(project_root)
    report = validate(parsed.rules, loaded.config, project_root)
    errors = [error.describe() for error in parsed.errors]
    errors.extend(f"[{issue.type}] {issue.describe()}" for issue in report.errors)
    warnings = list(loaded.warnings)
    warnings.extend(f"[{issue.type}] {issue.describe()}" for issue in report.warnings)

    if args.json:
        payload = {
            "success": not errors,
            "rulesLinted": len(parsed.rules),
            "errors": errors,
            "warnings": warnings,
        }
        print(json.dumps(payload, indent=2))
    else:
        print(f"Linted {len(parsed.rules)} rule(s)")
        for title, items in (("Errors:", errors), ("Warnings:", warnings)):
            if items:
                print(title)
                for item in items:
                    print(f"  - {item}")
        if errors:
            print(f"Lint failed: {len(errors)} error(s) found")
        else:
            print(f"Lint passed with {len(warnings)} warning(s)")
    return EXIT_CONTENT_FAILURE if errors else EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ctx-build",
        description="Compile .context rules into CLAUDE.md, AGENTS.md and Cursor rules",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="cmd")

    p_build = sub.add_parser("build", help="Compile rules into target outputs")
    p_build.add_argument(
        "--target",
        action="append",
        choices=BUILD_TARGETS,
        help="Target to build; repeat for several (default: targets configured in config.yaml)",
    )
    p_build.add_argument(
        "--incremental",
        action="store_true",
        help="Skip compilation when no source changed since the last build",
    )
    p_build.add_argument("--force", action="store_true", help="Ignore the build manifest")
    p_build.add_argument(
        "--check",
        action="store_true",
        help="Report outputs that are missing, out of date or stale without writing",
    )
    p_build.add_argument("--skip-validation", action="store_true", help="Skip static analysis")
    p_build.add_argument("--quiet", action="store_true", help="Only print on failure")
    p_build.add_argument("--verbose", action="store_true", help="Enable debug logging")
    p_build.add_argument("--project-root", default=".", help="Project directory (default: cwd)")
    p_build.set_defaults(func=cmd_build)

    p_status = sub.add_parser("status", help="Show the build manifest and lock state as JSON")
    p_status.add_argument("--project-root", default=".", help="Project directory (default: cwd)")
    p_status.set_defaults(func=cmd_status)

    p_lint = sub.add_parser("lint", help="Parse and validate rules without compiling")
    p_lint.add_argument("--json", action="store_true", help="Print the report as JSON")
    p_lint.add_argument("--project-root", default=".", help="Project directory (default: cwd)")
    p_lint.set_defaults(func=cmd_lint)

    p_verify = sub.add_parser("verify", help="Verify checksums of the outputs recorded in the manifest")
    p_verify.add_argument("--json", action="store_true", help="Print the report as JSON")
    p_verify.add_argument("--verbose", action="store_true", help="Print the checksum of every verified output")
    p_verify.add_argument("--project-root", default=".", help="Project directory (default: cwd)")
    p_verify.set_defaults(func=cmd_verify)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        raise SystemExit(EXIT_TOOL_FAILURE)

    level = get_settings().log_level
    if getattr(args, "verbose", False):
        level = "DEBUG"
    elif getattr(args, "quiet", False):
        level = "WARNING"
    configure_logging(level)

    raise SystemExit(args.func(args))


if __name__ == "__main__":
    main()
