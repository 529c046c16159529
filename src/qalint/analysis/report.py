"""Aggregation, classification and rendering of diagnostics.

Rendering is deterministic: records are sorted by file, line, rule id and
message before output, so two runs over an unchanged tree produce
byte-identical text and JSON.
"""

from __future__ import annotations

from dataclasses import dataclass
from itertools import groupby
from typing import Iterable, Mapping

from qalint.analysis.model import Diagnostic, DiagnosticKind, Severity
from qalint.order_contract import enforce_ordered, sort_once
from qalint.runtime.json_io import dump_json_pretty
from qalint.schema import DiagnosticRecord

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVOCATION = 2


@dataclass(frozen=True)
class ValidationReport:
    diagnostics: tuple[Diagnostic, ...]
    counts: Mapping[Severity, int]
    threshold: Severity
    failed: bool
    exit_code: int


def failing_threshold(*, fail_on: Severity = Severity.ERROR, strict: bool = False) -> Severity:
    if strict and fail_on.rank > Severity.WARNING.rank:
        return Severity.WARNING
    return fail_on


def build_report(
    diagnostics: Iterable[Diagnostic],
    *,
    fail_on: Severity = Severity.ERROR,
    strict: bool = False,
) -> ValidationReport:
    ordered = tuple(
        sort_once(
            diagnostics,
            source="report.build_report.diagnostics",
            key=lambda item: item.sort_key,
        )
    )
    counts = {severity: 0 for severity in Severity}
    for item in ordered:
        counts[item.severity] += 1
    threshold = failing_threshold(fail_on=fail_on, strict=strict)
    failed = any(item.severity.at_least(threshold) for item in ordered)
    if any(item.kind is DiagnosticKind.IO for item in ordered):
        exit_code = EXIT_INVOCATION
    elif failed:
        exit_code = EXIT_FAILED
    else:
        exit_code = EXIT_OK
    return ValidationReport(
        diagnostics=ordered,
        counts=counts,
        threshold=threshold,
        failed=failed,
        exit_code=exit_code,
    )


def diagnostic_record(item: Diagnostic) -> DiagnosticRecord:
    return DiagnosticRecord(
        file=item.file,
        line=item.line,
        rule_id=item.rule_id,
        severity=item.severity.value,
        message=item.message,
    )


def _ordered(report: ValidationReport, *, source: str) -> list[Diagnostic]:
    return enforce_ordered(report.diagnostics, source=source, key=lambda item: item.sort_key)


def render_json(report: ValidationReport) -> str:
    records = [
        diagnostic_record(item).model_dump(by_alias=True)
        for item in _ordered(report, source="report.render_json.diagnostics")
    ]
    return dump_json_pretty(records)


def summary_line(report: ValidationReport) -> str:
    counts = ", ".join(
        f"{report.counts.get(severity, 0)} {severity.value}(s)" for severity in Severity
    )
    verdict = "failed" if report.failed else "passed"
    return f"{counts}; {verdict} (fail on {report.threshold.value})"


def render_text(report: ValidationReport) -> str:
    lines: list[str] = []
    for file, items in groupby(
        _ordered(report, source="report.render_text.diagnostics"),
        key=lambda item: item.file,
    ):
        lines.append(file)
        for item in items:
            location = str(item.line) if item.line is not None else "-"
            lines.append(
                f"  {location}: {item.severity.value} [{item.rule_id}] {item.message}"
            )
        lines.append("")
    lines.append(summary_line(report))
    return "\n".join(lines) + "\n"
