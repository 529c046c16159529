"""Validation driver: discovery, parallel per-document work, then the
cross-document pass.

Per-document parsing and rule evaluation are independent and fan out over a
thread pool. Consistency checking needs every parsed document of a feature,
so it only starts once all futures have completed.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from qalint.analysis.consistency import check_consistency
from qalint.analysis.discovery import discover, io_error, merge_inventories
from qalint.analysis.engine import evaluate_document
from qalint.analysis.model import (
    Diagnostic,
    DocumentDescriptor,
    FeatureInventory,
    TestScriptDocument,
)
from qalint.analysis.parser import encoding_error, parse_document
from qalint.analysis.report import ValidationReport, build_report
from qalint.analysis.rules import RuleContext, RuleSpec, default_context
from qalint.config import ValidatorConfig
from qalint.order_contract import sort_once

logger = logging.getLogger(__name__)


class DiagnosticCollector:
    """Thread-safe append-only sink shared by the worker threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: list[Diagnostic] = []

    def extend(self, diagnostics: Iterable[Diagnostic]) -> None:
        batch = list(diagnostics)
        with self._lock:
            self._items.extend(batch)

    def snapshot(self) -> tuple[Diagnostic, ...]:
        with self._lock:
            return tuple(self._items)


@dataclass(frozen=True)
class DocumentResult:
    descriptor: DocumentDescriptor
    document: TestScriptDocument | None
    diagnostics: tuple[Diagnostic, ...]


def process_document(
    descriptor: DocumentDescriptor,
    *,
    rules: Sequence[RuleSpec],
    context: RuleContext,
) -> DocumentResult:
    try:
        text = descriptor.path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        return DocumentResult(
            descriptor=descriptor,
            document=None,
            diagnostics=(encoding_error(descriptor.display_path, exc),),
        )
    except OSError as exc:
        return DocumentResult(
            descriptor=descriptor,
            document=None,
            diagnostics=(
                io_error(
                    descriptor.display_path,
                    f"cannot read document: {exc.strerror or exc}",
                ),
            ),
        )
    outcome = parse_document(
        text,
        descriptor.display_path,
        feature=descriptor.feature,
        mode_directory=descriptor.mode_directory,
    )
    if outcome.document is None:
        logger.debug("%s: %d parse error(s)", descriptor.display_path, len(outcome.errors))
        return DocumentResult(descriptor=descriptor, document=None, diagnostics=outcome.errors)
    return DocumentResult(
        descriptor=descriptor,
        document=outcome.document,
        diagnostics=evaluate_document(outcome.document, rules, context=context),
    )


def _process_into(
    collector: DiagnosticCollector,
    descriptor: DocumentDescriptor,
    *,
    rules: Sequence[RuleSpec],
    context: RuleContext,
) -> DocumentResult:
    result = process_document(descriptor, rules=rules, context=context)
    collector.extend(result.diagnostics)
    return result


def _discover_all(
    roots: Sequence[Path],
    *,
    exclude: Sequence[str],
    collector: DiagnosticCollector,
) -> tuple[list[DocumentDescriptor], tuple[FeatureInventory, ...]]:
    seen: set[Path] = set()
    documents: list[DocumentDescriptor] = []
    inventories: list[FeatureInventory] = []
    for root in roots:
        result = discover(root, exclude=exclude)
        collector.extend(result.errors)
        inventories.extend(result.features)
        for descriptor in result.documents:
            key = descriptor.path.absolute()
            if key in seen:
                continue
            seen.add(key)
            documents.append(descriptor)
    return documents, merge_inventories(inventories)


def _apply_consistency_config(
    diagnostics: Iterable[Diagnostic],
    config: ValidatorConfig,
) -> list[Diagnostic]:
    adjusted: list[Diagnostic] = []
    for item in diagnostics:
        if item.rule_id in config.consistency_disabled:
            continue
        severity = config.consistency_severity.get(item.rule_id)
        adjusted.append(item if severity is None else item.with_severity(severity))
    return adjusted


def validate_paths(
    roots: Sequence[Path],
    config: ValidatorConfig | None = None,
) -> ValidationReport:
    """Validate every test-script document under `roots`.

    Unreadable paths and documents become `io` diagnostics and never stop the
    batch. A `KeyboardInterrupt` cancels the pending work and propagates.
    """
    resolved = config if config is not None else ValidatorConfig()
    context = resolved.context if resolved.context is not None else default_context()
    collector = DiagnosticCollector()
    documents, inventories = _discover_all(
        roots,
        exclude=resolved.exclude,
        collector=collector,
    )
    logger.info(
        "validating %d document(s) with %d worker(s)",
        len(documents),
        resolved.workers,
    )

    parsed: list[tuple[DocumentDescriptor, TestScriptDocument]] = []
    with concurrent.futures.ThreadPoolExecutor(max_workers=resolved.workers) as executor:
        try:
            futures = [
                executor.submit(
                    _process_into,
                    collector,
                    descriptor,
                    rules=resolved.rules,
                    context=context,
                )
                for descriptor in documents
            ]
            for future in concurrent.futures.as_completed(futures):
                result = future.result()
                if result.document is not None:
                    parsed.append((result.descriptor, result.document))
        except KeyboardInterrupt:
            logger.warning("interrupted; cancelling pending documents")
            executor.shutdown(wait=False, cancel_futures=True)
            raise

    ordered = sort_once(
        parsed,
        source="pipeline.validate_paths.parsed",
        key=lambda item: (item[0].base_dir.as_posix(), item[1].path),
    )
    consistency = check_consistency(ordered, inventories)
    collector.extend(_apply_consistency_config(consistency, resolved))
    report = build_report(
        collector.snapshot(),
        fail_on=resolved.fail_on,
        strict=resolved.strict,
    )
    logger.info(
        "%d diagnostic(s); exit code %d",
        len(report.diagnostics),
        report.exit_code,
    )
    return report
