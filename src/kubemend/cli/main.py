#!/usr/bin/env python3
"""
KUBEMEND CLI - Lint, Analyze & Remediate
----------------------------------------
Translates user commands into Engine calls and renders the results,
either as rich terminal reports or as JSON (--json).

Exit codes: 0 clean, 1 findings (ERROR issues, validation errors or
unparseable files), 2 configuration errors.

Author: KubeMend Team
Date: 2026-10-17
"""

import argparse
import logging
import sys
from typing import Any, Dict, List, Optional, Sequence

from kubemend.cli.formatter import KubeFormatter
from kubemend.core.config import Settings, load_settings
from kubemend.core.engine import FILE_ERRORS, Engine, WriteMode
from kubemend.core.exceptions import ConfigurationError
from kubemend.core.models import Aggressiveness, Mode

__version__ = "1.0.0"

logger = logging.getLogger("kubemend.cli")

EXIT_OK = 0
EXIT_FINDINGS = 1
EXIT_CONFIG = 2


def _csv(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def _failed_files(reports: List[Dict[str, Any]]) -> bool:
    return any(r.get("parse_errors") or r.get("status") in FILE_ERRORS for r in reports)


def configure_logging(verbosity: int):
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


class KubeMendCLI:
    """
    CLI wrapper that translates user commands into Engine actions.
    """

    def __init__(self, formatter: Optional[KubeFormatter] = None):
        self.formatter = formatter or KubeFormatter()
        self.parser = argparse.ArgumentParser(
            prog="kubemend",
            description="KubeMend - Kubernetes Manifest Linter, Analyzer & Remediator",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self._setup_args()

    def _setup_args(self):
        """Configures the command-line flags and subcommands."""
        self.parser.add_argument("--version", action="version", version=f"kubemend v{__version__}")
        subparsers = self.parser.add_subparsers(dest="command", metavar="Command")

        common = argparse.ArgumentParser(add_help=False)
        common.add_argument("path", nargs="+", help="YAML file(s) or directories")
        common.add_argument("--json", action="store_true", help="Emit machine-readable JSON")
        common.add_argument("--rules", type=_csv, help="Comma-separated rule ids to run")
        common.add_argument("--config", help="Settings file (default: ./.kubemend.yaml when present)")
        common.add_argument("--jobs", type=int, help="Worker threads for batch processing")
        common.add_argument("--ext", type=_csv, help="File extensions to scan (default: .yaml,.yml)")
        common.add_argument("-v", "--verbose", action="count", default=0, help="-v for INFO, -vv for DEBUG")

        subparsers.add_parser("lint", parents=[common], help="🔍 Check manifests against the rule set")
        analyze = subparsers.add_parser("analyze", parents=[common], help="📊 Score manifest quality")
        analyze.add_argument("--detailed", action="store_true", help="Show per-document scores")
        subparsers.add_parser("validate", parents=[common], help="✅ Check required structure")

        for name, help_text in (("fix", "❤️ Repair common manifest problems"),
                                ("optimize", "⚡ Apply best-practice improvements")):
            sub = subparsers.add_parser(name, parents=[common], help=help_text)
            target = sub.add_mutually_exclusive_group()
            target.add_argument("--dry-run", action="store_true", help="Preview results without writing (default)")
            target.add_argument("--in-place", action="store_true", help="Rewrite files, keeping a .kubemend.backup")
            target.add_argument("--output", metavar="DIR", help="Write remediated files under DIR")
            sub.add_argument("--aggressive", action="store_true", help="Also apply behavior-changing actions")
            sub.add_argument("--diff", action="store_true", help="Show a unified diff of proposed changes")

    def _settings(self, args: argparse.Namespace) -> Settings:
        settings = load_settings(args.config)
        extensions = None
        if args.ext:
            extensions = tuple(e if e.startswith(".") else f".{e}" for e in args.ext)
        if args.jobs is not None and args.jobs < 1:
            raise ConfigurationError("--jobs must be a positive integer")
        return settings.overridden(jobs=args.jobs, extensions=extensions, rules=args.rules)

    # --- COMMANDS ---

    def _cmd_lint(self, args, engine: Engine) -> int:
        reports = engine.lint_paths(args.path)
        if args.json:
            self.formatter.emit_json({
                "files": [{
                    "file": r["file_path"],
                    "status": r["status"],
                    "error": r.get("error"),
                    "parse_errors": [e.to_dict() for e in r["parse_errors"]],
                    "documents": [
                        {"index": doc.index, "kind": doc.kind, "name": doc.name,
                         "issues": [i.to_dict() for i in issues]}
                        for doc, issues in r["results"]
                    ],
                } for r in reports],
                "summary": engine.generate_summary(reports),
            })
        else:
            self.formatter.print_lint_report(reports)
        has_errors = any(r["error_count"] for r in reports)
        return EXIT_FINDINGS if has_errors or _failed_files(reports) else EXIT_OK

    def _cmd_analyze(self, args, engine: Engine) -> int:
        result, reports = engine.analyze_paths(args.path)
        if args.json:
            payload = result.to_dict()
            payload["files"] = [{
                "file": r["file_path"],
                "status": r["status"],
                "error": r.get("error"),
                "parse_errors": [e.to_dict() for e in r["parse_errors"]],
                "recommendations": r["recommendations"],
            } for r in reports]
            self.formatter.emit_json(payload)
        else:
            self.formatter.print_analysis(result, reports, detailed=args.detailed)
        return EXIT_FINDINGS if _failed_files(reports) else EXIT_OK

    def _cmd_validate(self, args, engine: Engine) -> int:
        reports = engine.validate_paths(args.path)
        if args.json:
            self.formatter.emit_json({"files": [{
                "file": r["file_path"],
                "status": r["status"],
                "error": r.get("error"),
                "parse_errors": [e.to_dict() for e in r["parse_errors"]],
                "documents": [
                    {"index": doc.index, "kind": doc.kind, "name": doc.name, "errors": errors}
                    for doc, errors in r["results"]
                ],
            } for r in reports]})
        else:
            self.formatter.print_validation(reports)
        has_errors = any(r["error_count"] for r in reports)
        return EXIT_FINDINGS if has_errors or _failed_files(reports) else EXIT_OK

    def _cmd_remediate(self, args, engine: Engine, mode: Mode) -> int:
        aggressiveness = Aggressiveness.AGGRESSIVE if args.aggressive else Aggressiveness.CONSERVATIVE
        reports = engine.remediate_paths(args.path, mode, aggressiveness)

        if args.in_place:
            write_mode = WriteMode.IN_PLACE
        elif args.output:
            write_mode = WriteMode.OUTPUT_DIR
        else:
            write_mode = WriteMode.DRY_RUN
        engine.write(reports, write_mode, output_dir=args.output)
        summary = engine.generate_summary(reports)

        if args.json:
            self.formatter.emit_json({
                "mode": mode.value,
                "aggressiveness": aggressiveness.value,
                "write_mode": write_mode.value,
                "files": [{
                    "file": r["file_path"],
                    "status": r["status"],
                    "error": r.get("error"),
                    "written": r.get("written", False),
                    "backup": r.get("backup_created"),
                    "validation_error": r.get("validation_error") or None,
                    "parse_errors": [e.to_dict() for e in r["parse_errors"]],
                    "documents": [p.to_dict() for p in r["plans"]],
                } for r in reports],
                "summary": summary,
            })
        else:
            for r in reports:
                if not r.get("changed"):
                    continue
                self.formatter.console.print(f"\n[bold cyan]Changes for: {r['file_path']}[/bold cyan]")
                self.formatter.show_changes(r)
                if args.diff:
                    self.formatter.display_diff(r["original_text"], r["rendered"], r["file_path"])
            self.formatter.print_final_table(reports, summary)

        write_failed = any(r.get("status") in ("WRITE_ERROR", "BLOCKED") for r in reports)
        return EXIT_FINDINGS if write_failed or _failed_files(reports) else EXIT_OK

    def run(self, argv: Optional[Sequence[str]] = None) -> int:
        """Primary routing entry point."""
        args = self.parser.parse_args(argv)
        if not args.command:
            self.formatter.print_header("Kubernetes Manifest Toolkit", __version__)
            self.parser.print_help()
            return EXIT_OK

        configure_logging(args.verbose)
        logger.debug(f"{args.command}: {len(args.path)} path(s)")
        try:
            engine = Engine(self._settings(args))
            if args.command == "lint":
                return self._cmd_lint(args, engine)
            if args.command == "analyze":
                return self._cmd_analyze(args, engine)
            if args.command == "validate":
                return self._cmd_validate(args, engine)
            return self._cmd_remediate(args, engine, Mode(args.command))
        except ConfigurationError as e:
            self.formatter.print_error(str(e))
            return EXIT_CONFIG


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Application entry point with interrupt handling."""
    cli = KubeMendCLI()
    try:
        return cli.run(argv)
    except KeyboardInterrupt:
        cli.formatter.console.print("\n[bold red]Terminated by user.[/bold red]")
        return EXIT_FINDINGS


if __name__ == "__main__":
    sys.exit(main())
