# src/kubemend/cli/formatter.py
import difflib
import json
import sys
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from kubemend.core.models import AnalysisResult, Scores, Severity

SEVERITY_STYLE = {Severity.ERROR: "bold red", Severity.WARNING: "yellow"}

STATUS_STYLE = {
    "OK": "green", "UNCHANGED": "green", "WRITTEN": "green",
    "ISSUES": "yellow", "CHANGED": "cyan", "PREVIEW": "cyan", "INVALID": "yellow", "BLOCKED": "bold red",
}


def _score_style(value: int) -> str:
    if value >= 80:
        return "green"
    return "yellow" if value >= 60 else "red"


class KubeFormatter:
    """
    KubeFormatter: The visual heart of the CLI.
    Responsible for rendering Diffs, Lint Findings, Scores and Execution Reports.
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def print_header(self, subtitle: str, version: str):
        self.console.print(Panel.fit(
            f"[bold cyan]KubeMend v{version}[/bold cyan]",
            title=f"[bold white]{subtitle}[/bold white]",
            border_style="cyan"
        ))

    def print_error(self, message: str):
        self.console.print(f"[bold red]Error:[/bold red] {escape(message)}")

    def emit_json(self, payload: Any):
        # Plain stdout so the output stays machine-readable
        sys.stdout.write(json.dumps(payload, indent=2, default=str) + "\n")

    def _file_problems(self, report: Dict[str, Any]):
        if report.get("error"):
            self.console.print(f"[bold red]{escape(report['file_path'])}:[/bold red] {escape(report['error'])}")
        if report.get("validation_error"):
            self.console.print(f"[bold red]Blocked:[/bold red] {escape(report['validation_error'])}")
        for error in report.get("parse_errors", ()):
            self.console.print(f"[bold red]Parse error:[/bold red] {escape(str(error))}")

    # --- LINT ---

    def print_lint_report(self, reports: List[Dict[str, Any]]):
        for report in reports:
            self._file_problems(report)
            for doc, issues in report.get("results", ()):
                if not issues:
                    continue
                table = Table(title=f"{escape(report['file_path'])} :: {escape(doc.display_name)}",
                              header_style="bold magenta", show_lines=False)
                table.add_column("Severity")
                table.add_column("Rule", style="cyan")
                table.add_column("Path", style="dim")
                table.add_column("Message")
                for issue in issues:
                    style = SEVERITY_STYLE[issue.severity]
                    table.add_row(f"[{style}]{issue.severity.value}[/{style}]", issue.rule_id,
                                  escape(issue.path or ""), escape(issue.message))
                self.console.print(table)

        issues = sum(r.get("issue_count", 0) for r in reports)
        errors = sum(r.get("error_count", 0) for r in reports)
        if not issues:
            self.console.print("[bold green]No issues found.[/bold green]")
        else:
            self.console.print(f"[bold]{issues} issue(s)[/bold], [red]{errors} error(s)[/red] "
                               f"in {len(reports)} file(s).")

    # --- ANALYZE ---

    def _scores_table(self, title: str, scores: Scores) -> Table:
        table = Table(title=title, header_style="bold magenta")
        for axis in ("security", "performance", "reliability", "complexity"):
            table.add_column(axis.capitalize(), justify="center")
        values = [getattr(scores, axis) for axis in ("security", "performance", "reliability", "complexity")]
        table.add_row(*[f"[{_score_style(v)}]{v}[/{_score_style(v)}]" for v in values])
        return table

    def print_analysis(self, result: AnalysisResult, reports: List[Dict[str, Any]], detailed: bool = False):
        for report in reports:
            self._file_problems(report)
            for tip in report.get("recommendations", ()):
                self.console.print(f"[cyan]{escape(report['file_path'])}:[/cyan] {escape(tip)}")

        if detailed:
            table = Table(title="Per-Document Scores", header_style="bold magenta")
            for column in ("Document", "Security", "Performance", "Reliability", "Complexity", "Issues"):
                table.add_column(column)
            for analysis in result.per_document:
                s = analysis.scores
                table.add_row(f"{escape(str(analysis.document_ref))} {analysis.kind or 'Unknown'}/{analysis.name or '-'}",
                              str(s.security), str(s.performance), str(s.reliability),
                              str(s.complexity), str(len(analysis.issues)))
            self.console.print(table)

        self.console.print(self._scores_table("Quality Scores (0-100)", result.aggregate_scores))
        kinds = ", ".join(f"{k}: {v}" for k, v in result.resource_types.items()) or "none"
        namespaces = ", ".join(f"{k}: {v}" for k, v in result.namespaces.items()) or "none"
        body = (f"Documents:       {result.document_count}\n"
                f"Resource Types:  {escape(kinds)}\n"
                f"Namespaces:      {escape(namespaces)}\n"
                f"Issues:          {result.total_issues} ({result.error_issues} error)")
        if result.recommendations:
            body += "\n\n[bold]Recommendations[/bold]\n" + "\n".join(f"• {escape(r)}" for r in result.recommendations)
        self.console.print(Panel(body, title="Analysis Summary", border_style="dim"))

    # --- REMEDIATION ---

    def display_diff(self, original_text: str, healed_text: str, file_name: str):
        """
        Calculates and renders a colorized diff between the original
        and the remediated YAML.
        """
        if healed_text is None or original_text is None:
            return

        diff_list = list(difflib.unified_diff(
            original_text.splitlines(),
            healed_text.splitlines(),
            fromfile=f"Original: {file_name}",
            tofile="Remediated",
            lineterm=""
        ))

        if not diff_list:
            self.console.print(f"[dim]No changes needed for {escape(file_name)}.[/dim]")
            return

        syntax = Syntax("\n".join(diff_list), "diff", theme="monokai", line_numbers=True)
        self.console.print(Panel(syntax, title=f"Proposed Changes: {escape(file_name)}", border_style="green"))

    def show_changes(self, report: Dict[str, Any]):
        """
        Explains what each action did (or why it was skipped) per document.
        """
        for plan in report.get("plans", ()):
            label = plan.original.display_name
            for change in plan.changes:
                self.console.print(f"[bold cyan]🛡  {escape(label)}[/bold cyan] {change.action}: "
                                   f"{escape(change.description)}")
            for skip in plan.skipped:
                self.console.print(f"[dim]   {escape(label)} skipped {skip.action} at "
                                   f"{escape(skip.path or '/')}: {escape(skip.reason)}[/dim]")

    def print_final_table(self, reports: List[Dict[str, Any]], summary: Dict[str, Any]):
        """
        Builds the summary table shown at the very end of a fix/optimize run.
        """
        table = Table(title="KubeMend Execution Report", show_header=True, header_style="bold magenta")
        table.add_column("File Path", style="dim")
        table.add_column("Documents", justify="right")
        table.add_column("Changes", justify="right")
        table.add_column("Status")

        for r in reports:
            self._file_problems(r)
            changes = sum(len(p.changes) for p in r.get("plans", ()))
            status = r.get("status", "UNKNOWN")
            style = STATUS_STYLE.get(status, "red")
            table.add_row(escape(r["file_path"]), str(len(r.get("documents", ()))), str(changes),
                          f"[{style}]{status}[/{style}]")

        self.console.print(table)
        self.console.print(Panel(
            f"[bold white]Summary Report[/bold white]\n"
            f"Total Files:     {summary['total_files']}\n"
            f"Changed:         [cyan]{summary['changed']}[/cyan]\n"
            f"Blocked:         [red]{summary['blocked']}[/red]\n"
            f"Written:         [green]{summary['written_to_disk']}[/green]\n"
            f"Parse Errors:    [red]{summary['parse_errors']}[/red]\n"
            f"Backups Created: {summary['backups_created']}",
            border_style="dim"
        ))

    # --- VALIDATE ---

    def print_validation(self, reports: List[Dict[str, Any]]):
        total = 0
        for report in reports:
            self._file_problems(report)
            for doc, errors in report.get("results", ()):
                total += len(errors)
                if not errors:
                    self.console.print(f"[green]✔[/green] {escape(str(doc.ref))} {escape(doc.display_name)}")
                for error in errors:
                    self.console.print(f"[bold red]✘[/bold red] {escape(str(doc.ref))} "
                                       f"{escape(doc.display_name)}: {escape(error)}")
        if total:
            self.console.print(f"[bold red]{total} validation error(s).[/bold red]")
        else:
            self.console.print("[bold green]All documents are structurally valid.[/bold green]")
