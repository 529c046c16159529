from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer

from qalint.analysis.consistency import CONSISTENCY_RULES
from qalint.analysis.model import Severity
from qalint.analysis.pipeline import validate_paths
from qalint.analysis.report import EXIT_INVOCATION, render_json, render_text
from qalint.config import ValidatorConfig, normalize_output_format, resolve_config
from qalint.exceptions import InvocationError
from qalint.order_contract import sort_once
from qalint.runtime.json_io import dump_json_pretty
from qalint.schema import RuleRecord

app = typer.Typer(add_completion=False, help="Validate QA test-script documents.")

_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def _configure_logging(verbose: int) -> None:
    if verbose <= 0:
        return
    logging.basicConfig(
        level=logging.DEBUG if verbose > 1 else logging.INFO,
        stream=sys.stderr,
        format=_LOG_FORMAT,
    )


def _fail_invocation(message: str) -> typer.Exit:
    typer.echo(f"qalint: {message}", err=True)
    return typer.Exit(code=EXIT_INVOCATION)


def _write_output(text: str, output: Path | None) -> None:
    if output is None:
        typer.echo(text, nl=False)
        return
    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise _fail_invocation(f"cannot write {output}: {exc.strerror or exc}") from exc


def _rule_records(config: ValidatorConfig) -> list[RuleRecord]:
    records = [
        RuleRecord(id=rule.rule_id, severity=rule.severity.value, summary=rule.summary)
        for rule in config.rules
    ]
    for rule_id, severity, summary in CONSISTENCY_RULES:
        if rule_id in config.consistency_disabled:
            continue
        effective = config.consistency_severity.get(rule_id, severity)
        records.append(
            RuleRecord(
                id=rule_id,
                severity=effective.value,
                summary=summary,
                scope="feature",
            )
        )
    return sort_once(records, source="cli._rule_records", key=lambda record: record.id)


@app.command()
def check(
    paths: List[Path] = typer.Argument(None, help="Files or directories to validate."),
    output_format: Optional[str] = typer.Option(
        None, "--format", help="Report format: text or json."
    ),
    strict: Optional[bool] = typer.Option(
        None, "--strict/--no-strict", help="Fail on warnings as well as errors."
    ),
    fail_on: Optional[str] = typer.Option(
        None, "--fail-on", help="Lowest severity that fails the run (error, warning, info)."
    ),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to qalint.toml."),
    workers: Optional[int] = typer.Option(
        None, "--workers", min=1, help="Number of documents validated in parallel."
    ),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Write the report to a file instead of stdout."
    ),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True),
) -> None:
    """Validate test-script documents and report every diagnostic."""
    _configure_logging(verbose)
    try:
        resolved = resolve_config(
            config_path=config,
            overrides={
                "format": output_format,
                "strict": strict,
                "fail_on": fail_on,
                "workers": workers,
            },
        )
    except InvocationError as exc:
        raise _fail_invocation(str(exc)) from exc
    roots = list(paths) if paths else [Path(".")]
    report = validate_paths(roots, resolved)
    rendered = render_json(report) if resolved.output_format == "json" else render_text(report)
    _write_output(rendered, output)
    raise typer.Exit(code=report.exit_code)


@app.command()
def rules(
    output_format: str = typer.Option("text", "--format", help="Output format: text or json."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to qalint.toml."),
) -> None:
    """List the effective rule registry."""
    try:
        output_format = normalize_output_format(output_format)
        resolved = resolve_config(config_path=config)
    except InvocationError as exc:
        raise _fail_invocation(str(exc)) from exc
    records = _rule_records(resolved)
    if output_format == "json":
        typer.echo(dump_json_pretty([record.model_dump() for record in records], canonical=True), nl=False)
        return
    width = max((len(record.id) for record in records), default=0)
    severity_width = max(len(severity.value) for severity in Severity)
    for record in records:
        typer.echo(
            f"{record.id.ljust(width)}  {record.severity.ljust(severity_width)}  {record.summary}"
        )


def main() -> None:
    app()


if __name__ == "__main__":
    main()
