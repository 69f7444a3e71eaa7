"""
Run report aggregation and output.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from kpreflight.common import console as default_console
from kpreflight.common import format_duration, logger
from kpreflight.models import AbiVerdict, RunReport, RunStatus


VERDICT_STYLES = {
    AbiVerdict.PASS: "[green]✓ PASS[/green]",
    AbiVerdict.FAIL: "[red]✗ FAIL[/red]",
    AbiVerdict.FIX: "[yellow]⚠ KABI Fix Patch[/yellow]",
    AbiVerdict.WARN_DEFERRED: "[yellow]⚠ WARN (next patch is KABI fix)[/yellow]",
    AbiVerdict.SKIPPED: "[grey50]⊘ SKIP[/grey50]",
}

FATAL_STATUSES = {
    RunStatus.PRECONDITION_ERROR,
    RunStatus.APPLY_ERROR,
    RunStatus.BUILD_ERROR,
    RunStatus.INTERNAL_ERROR,
}


def classify_run(report: RunReport) -> RunStatus:
    """
    Overall status of a run.

    A fatal error keeps its own status. Otherwise the run is all-pass only if
    every patch applied, the final build succeeded and no patch failed KABI.
    """
    if report.error and report.status in FATAL_STATUSES:
        return report.status
    if report.final_build_ok is False:
        return RunStatus.BUILD_ERROR
    if any(not r.applied for r in report.results):
        return RunStatus.APPLY_ERROR
    if report.kabi_failed or any(r.abi_verdict == AbiVerdict.FAIL for r in report.results):
        return RunStatus.KABI_FAILURES
    return RunStatus.ALL_PASS


def render_text(report: RunReport) -> str:
    """Plain text report persisted next to the build logs."""
    lines = [
        "Kernel Preflight Report",
        "=======================",
        f"Date: {report.finished or datetime.now()}",
        f"Kernel Source: {report.tree}",
        f"Saved HEAD: {report.saved_head or 'unknown'}",
        f"KABI checking: {'enabled' if report.kabi_enabled else 'disabled'}",
        "",
        "Patch Results:",
        "--------------",
    ]
    for result in report.results:
        applied = "PASS" if result.applied else "FAIL"
        classification = result.classification.value if result.classification else "-"
        line = f"{result.patch}: apply={applied} kabi={result.abi_verdict.value} type={classification}"
        if result.detail:
            line += f" ({result.detail})"
        lines.append(line)

    counts = report.verdict_counts()
    lines.extend([
        "",
        "Summary:",
        "--------",
        f"Patches: {len(report.results)}",
        f"Applied: {report.applied_count}",
    ])
    lines.extend(f"{verdict}: {count}" for verdict, count in counts.items())
    final_build = {None: "not run", True: "PASS", False: "FAIL"}[report.final_build_ok]
    lines.append(f"Final build: {final_build}")
    if report.error:
        lines.append(f"Error: {report.error}")
    lines.append(f"Status: {report.status.value} (exit {report.exit_code})")
    return "\n".join(lines) + "\n"


class RunReporter:
    """Aggregates per-patch results into the final run report."""

    def __init__(self, log_file: Optional[Path] = None, console: Optional[Console] = None):
        self.log_file = log_file
        self.console = console or default_console

    def finalize(self, report: RunReport) -> RunReport:
        """Set the overall status and exit code, then persist the report."""
        report.finished = datetime.now()
        report.status = classify_run(report)
        if report.status not in FATAL_STATUSES or report.exit_code == 0:
            report.exit_code = report.status.exit_code

        if self.log_file:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            self.log_file.write_text(render_text(report))
            logger.debug(f"Report written to {self.log_file}")
        return report

    def print_report(self, report: RunReport) -> None:
        """Print the results table and summary to the console."""
        table = Table(title="\nPatch Results", show_header=True, header_style="bold")
        table.add_column("#", justify="right", style="dim")
        table.add_column("Patch", style="cyan")
        table.add_column("Type")
        table.add_column("Applying")
        table.add_column("KABI Check")
        table.add_column("Detail", style="dim")

        for idx, result in enumerate(report.results, 1):
            table.add_row(
                str(idx),
                result.patch,
                result.classification.value if result.classification else "-",
                "[green]✓ PASS[/green]" if result.applied else "[red]✗ FAIL[/red]",
                VERDICT_STYLES[result.abi_verdict] if result.applied else "-",
                result.detail,
            )
        self.console.print(table)

        if report.finished:
            elapsed = int((report.finished - report.started).total_seconds())
            self.console.print(f"Duration: {format_duration(elapsed)}")

        if report.status == RunStatus.ALL_PASS:
            self.console.print("[green]✓ Build process completed successfully[/green]")
        elif report.status == RunStatus.KABI_FAILURES:
            self.console.print("[red]⚠ Build completed but with KABI failures[/red]")
            if self.log_file:
                self.console.print(
                    f"[yellow]Review KABI log: {self.log_file.parent / 'kabi_check.log'}[/yellow]"
                )
        else:
            self.console.print(f"[red]✗ {report.status.value}: {report.error or ''}[/red]")
        if self.log_file:
            self.console.print(f"[blue]Full report: {self.log_file}[/blue]")
