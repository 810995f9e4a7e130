#!/usr/bin/env python3
"""
KUBEMEND ENGINE - The High Orchestrator
---------------------------------------
Drives files through the KubeMend components: discovery, loading,
linting, analysis, remediation and persistence. One report dict per file
comes back, in discovery order, whatever the number of worker threads.

Writes are atomic (temp file + os.replace) and in-place writes always
leave a `*.kubemend.backup` next to the original first.

Author: KubeMend Team
Date: 2026-10-17
"""

import logging
import os
import shutil
import time
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar, Union

from kubemend.analysis.analyzer import Analyzer
from kubemend.core.config import Settings
from kubemend.core.evaluator import LintEvaluator
from kubemend.core.exporter import KubeExporter
from kubemend.core.loader import load
from kubemend.core.models import AnalysisResult, Aggressiveness, Mode, Severity
from kubemend.remediation.remediator import Remediator, coerce
from kubemend.rules.registry import RuleRegistry, default_registry
from kubemend.validator.validator import KubeValidator

logger = logging.getLogger("kubemend.engine")

T = TypeVar("T")
PathLike = Union[str, Path]

BACKUP_SUFFIX = ".kubemend.backup"
TEMP_SUFFIX = ".kubemend.tmp"

# Statuses of files that never got as far as being parsed
FILE_ERRORS = ("FILE_NOT_FOUND", "READ_ERROR")


class WriteMode(str, Enum):
    DRY_RUN = "dry-run"
    IN_PLACE = "in-place"
    OUTPUT_DIR = "output-dir"


class Engine:
    """
    Principal orchestrator. Holds the immutable registry and policies of
    one invocation; safe to share across worker threads.
    """

    def __init__(self, settings: Optional[Settings] = None, registry: Optional[RuleRegistry] = None):
        self.settings = settings or Settings()
        self.registry = registry or default_registry(self.settings.custom_rules)
        self.evaluator = LintEvaluator(self.registry)
        self.analyzer = Analyzer(self.registry, self.settings.scoring)
        self.remediator = Remediator(self.settings.remediation)
        self.validator = KubeValidator()
        self.exporter = KubeExporter()

    # --- PHASE 1: DISCOVERY ---

    def discover(self, paths: Iterable[PathLike]) -> List[Tuple[Path, Path]]:
        """
        Expands files and directories into (file, root) pairs. Directories
        are walked recursively, skipping symlinks (loop safety) and
        anything deeper than max_depth. Missing paths are kept so they can
        be reported.
        """
        found: List[Tuple[Path, Path]] = []
        seen = set()
        extensions = {e.lower() for e in self.settings.extensions}

        for raw in paths:
            path = Path(raw)
            if not path.is_dir():
                candidates = [(path, path.parent)]
            else:
                candidates = []
                for f in sorted(path.rglob("*")):
                    if f.suffix.lower() not in extensions or f.is_symlink() or not f.is_file():
                        continue
                    if len(f.relative_to(path).parts) > self.settings.max_depth:
                        continue
                    candidates.append((f, path))
            for file_path, root in candidates:
                key = file_path.resolve()
                if key not in seen:
                    seen.add(key)
                    found.append((file_path, root))
        return found

    def _map(self, func: Callable[..., T], items: Sequence[Any]) -> List[T]:
        """Runs func over items; results keep input order."""
        jobs = self.settings.jobs
        if jobs <= 1 or len(items) <= 1:
            return [func(*item) for item in items]
        with ThreadPoolExecutor(max_workers=min(jobs, len(items))) as executor:
            futures = [executor.submit(func, *item) for item in items]
            return [f.result() for f in futures]

    # --- PHASE 2: LOADING ---

    def _read(self, file_path: Path, root: Path) -> Dict[str, Any]:
        report: Dict[str, Any] = {
            "file_path": str(file_path),
            "relative_path": self._relative(file_path, root),
            "status": "OK",
            "documents": [],
            "parse_errors": [],
            "original_text": None,
        }
        if not file_path.is_file():
            return self._file_error(report, "FILE_NOT_FOUND", f"Path missing: {file_path}")
        try:
            # BOM-aware read
            text = file_path.read_text(encoding='utf-8-sig')
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Error reading {file_path}: {e}")
            return self._file_error(report, "READ_ERROR", str(e))

        documents, errors = load(text, source=str(file_path))
        report.update(documents=documents, parse_errors=errors, original_text=text)
        if errors:
            report["status"] = "PARSE_ERROR"
        return report

    @staticmethod
    def _relative(file_path: Path, root: Path) -> str:
        try:
            return str(file_path.relative_to(root))
        except ValueError:
            return file_path.name

    @staticmethod
    def _file_error(report: Dict[str, Any], status: str, error: str) -> Dict[str, Any]:
        report.update(status=status, error=error)
        return report

    # --- PHASE 3: LINT / ANALYZE / VALIDATE ---

    def lint_paths(self, paths: Iterable[PathLike], rule_names: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
        # Unknown rule names abort here, before any file is touched
        rules = self.registry.select(rule_names if rule_names is not None else self.settings.rules)

        def lint_file(file_path: Path, root: Path) -> Dict[str, Any]:
            report = self._read(file_path, root)
            report["results"] = [
                (doc, self.evaluator.evaluate_rules(doc, rules)) for doc in report["documents"]
            ]
            issues = [i for _, found in report["results"] for i in found]
            report["issue_count"] = len(issues)
            report["error_count"] = sum(1 for i in issues if i.severity == Severity.ERROR)
            if report["status"] == "OK" and issues:
                report["status"] = "ISSUES"
            return report

        return self._map(lint_file, self.discover(paths))

    def analyze_paths(self, paths: Iterable[PathLike],
                      rule_names: Optional[Sequence[str]] = None) -> Tuple[AnalysisResult, List[Dict[str, Any]]]:
        """Batch analysis across every document of every file, plus per-file summaries."""
        rules = self.registry.select(rule_names if rule_names is not None else self.settings.rules)

        def analyze_file(file_path: Path, root: Path) -> Dict[str, Any]:
            report = self._read(file_path, root)
            report["analyses"] = [self.analyzer.analyze_document(doc, rules) for doc in report["documents"]]
            report["recommendations"] = self.analyzer.file_recommendations(report["analyses"])
            return report

        reports = self._map(analyze_file, self.discover(paths))
        result = self.analyzer.summarize([a for r in reports for a in r["analyses"]])
        return result, reports

    def validate_paths(self, paths: Iterable[PathLike]) -> List[Dict[str, Any]]:
        def validate_file(file_path: Path, root: Path) -> Dict[str, Any]:
            report = self._read(file_path, root)
            report["results"] = [(doc, self.validator.validate(doc)) for doc in report["documents"]]
            report["error_count"] = sum(len(errors) for _, errors in report["results"])
            if report["status"] == "OK" and report["error_count"]:
                report["status"] = "INVALID"
            return report

        return self._map(validate_file, self.discover(paths))

    # --- PHASE 4: REMEDIATION ---

    def remediate_paths(self, paths: Iterable[PathLike], mode: Any = Mode.FIX,
                        aggressiveness: Any = Aggressiveness.CONSERVATIVE) -> List[Dict[str, Any]]:
        mode = coerce(Mode, mode)
        aggressiveness = coerce(Aggressiveness, aggressiveness)

        def remediate_file(file_path: Path, root: Path) -> Dict[str, Any]:
            report = self._read(file_path, root)
            plans = [self.remediator.remediate(doc, mode, aggressiveness) for doc in report["documents"]]
            report.update(plans=plans, rendered=None, changed=False, validation_error="")
            if report["status"] in FILE_ERRORS:
                return report

            changed = any(p.changed for p in plans)
            blocked = False
            # Verify remediation didn't break a document that was structurally valid
            for plan in plans:
                if not plan.changed or self.validator.validate(plan.original):
                    continue
                valid, message = self.validator.validate_reconstruction(plan.remediated)
                if not valid:
                    logger.warning(f"{plan.document_ref}: remediation blocked. {message}")
                    report["validation_error"] = f"{plan.document_ref}: {message}"
                    blocked = True

            if blocked:
                if report["status"] == "OK":
                    report["status"] = "BLOCKED"
            elif changed and report["status"] != "PARSE_ERROR":
                report["rendered"] = self.exporter.export(p.remediated for p in plans)
                report["changed"] = True
                report["status"] = "CHANGED"
            elif report["status"] == "OK":
                report["status"] = "UNCHANGED"
            return report

        return self._map(remediate_file, self.discover(paths))

    # --- PHASE 5: PERSISTENCE ---

    def write(self, reports: List[Dict[str, Any]], mode: Any = WriteMode.DRY_RUN,
              output_dir: Optional[PathLike] = None) -> List[Dict[str, Any]]:
        """
        Persists rendered output. Unchanged files and files with parse
        errors are never written.
        """
        mode = WriteMode(mode)
        if mode is WriteMode.OUTPUT_DIR and output_dir is None:
            raise ValueError("output-dir mode requires an output directory")

        for report in reports:
            report.setdefault("written", False)
            report.setdefault("backup_created", None)
            if not report.get("changed") or report.get("rendered") is None:
                continue
            if mode is WriteMode.DRY_RUN:
                report["status"] = "PREVIEW"
                continue

            source = Path(report["file_path"])
            if mode is WriteMode.IN_PLACE:
                target = source
                backup_path = self._create_unique_backup(source)
                try:
                    shutil.copy2(source, backup_path)
                    report["backup_created"] = str(backup_path)
                except OSError as e:
                    # Never overwrite without a backup
                    report["status"] = "WRITE_ERROR"
                    report["error"] = f"Backup failed: {e}"
                    continue
            else:
                target = Path(output_dir) / report["relative_path"]

            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                self._atomic_write(target, report["rendered"])
            except OSError as e:
                logger.error(f"Write failed for {target}: {e}")
                report["status"] = "WRITE_ERROR"
                report["error"] = str(e)
                continue
            report["written"] = True
            report["written_to"] = str(target)
            report["status"] = "WRITTEN"

        return reports

    def _atomic_write(self, target_path: Path, content: str):
        if not os.access(target_path.parent, os.W_OK):
            raise PermissionError(f"No write access to {target_path.parent}")
        temp_file = target_path.with_name(target_path.name + TEMP_SUFFIX)
        try:
            temp_file.write_text(content, encoding='utf-8')
            os.replace(temp_file, target_path)
        except OSError:
            if temp_file.exists():
                temp_file.unlink()
            raise

    def _create_unique_backup(self, target_path: Path) -> Path:
        backup_path = target_path.with_name(target_path.name + BACKUP_SUFFIX)
        counter = 1
        while backup_path.exists():
            backup_path = target_path.with_name(f"{target_path.name}.{counter}{BACKUP_SUFFIX}")
            counter += 1
        return backup_path

    # --- SUMMARY ---

    def generate_summary(self, reports: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Totals across a run, for the closing panel and --json output."""
        statuses: Dict[str, int] = {}
        for r in reports:
            statuses[r.get("status", "UNKNOWN")] = statuses.get(r.get("status", "UNKNOWN"), 0) + 1
        return {
            "total_files": len(reports),
            "documents": sum(len(r.get("documents", ())) for r in reports),
            "parse_errors": sum(len(r.get("parse_errors", ())) for r in reports),
            "file_errors": sum(1 for r in reports if r.get("status") in FILE_ERRORS),
            "changed": sum(1 for r in reports if r.get("changed")),
            "blocked": sum(1 for r in reports if r.get("status") == "BLOCKED"),
            "written_to_disk": sum(1 for r in reports if r.get("written")),
            "backups_created": sum(1 for r in reports if r.get("backup_created")),
            "statuses": statuses,
            "summary_timestamp": time.strftime("%Y-%m-%d %H:%M:%S"),
        }
