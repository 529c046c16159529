"""Cross-document checks over one feature directory.

These checks need the complete set of parsed documents of a feature, so the
pipeline only runs them after every per-document evaluation has finished.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from qalint.analysis.model import (
    Diagnostic,
    DiagnosticKind,
    DocumentDescriptor,
    FeatureInventory,
    Severity,
    TestScriptDocument,
)
from qalint.analysis.rules import SCREENSHOT_PATH_PATTERN
from qalint.order_contract import sort_once

DUPLICATE_ID = "duplicate-id"
DUPLICATE_NAME = "duplicate-name"
MODE_PLACEMENT = "mode-placement"
SCREENSHOT_MISSING = "screenshot-missing"
SCREENSHOT_ORPHANED = "screenshot-orphaned"

CONSISTENCY_RULES: tuple[tuple[str, Severity, str], ...] = (
    (DUPLICATE_ID, Severity.ERROR, "test case ids are unique within a feature"),
    (DUPLICATE_NAME, Severity.WARNING, "test case names are unique within a feature"),
    (MODE_PLACEMENT, Severity.ERROR, "filename mode suffix agrees with a mock/ or full/ directory"),
    (SCREENSHOT_MISSING, Severity.WARNING, "placeholders reference screenshots that exist on disk"),
    (SCREENSHOT_ORPHANED, Severity.INFO, "every screenshot on disk is referenced by a placeholder"),
)


@dataclass(frozen=True)
class FeatureSet:
    feature: str
    base_dir: Path
    documents: tuple[TestScriptDocument, ...]
    inventory: FeatureInventory | None = None


def group_features(
    entries: Iterable[tuple[DocumentDescriptor, TestScriptDocument]],
    inventories: Sequence[FeatureInventory] = (),
) -> tuple[FeatureSet, ...]:
    grouped: dict[tuple[str, str], list[TestScriptDocument]] = defaultdict(list)
    bases: dict[tuple[str, str], Path] = {}
    for descriptor, document in entries:
        key = (descriptor.base_dir.as_posix(), descriptor.feature)
        grouped[key].append(document)
        bases[key] = descriptor.base_dir
    by_key = {
        (inventory.base_dir.as_posix(), inventory.feature): inventory
        for inventory in inventories
    }
    for key, inventory in by_key.items():
        bases.setdefault(key, inventory.base_dir)
    return tuple(
        FeatureSet(
            feature=key[1],
            base_dir=bases[key],
            documents=tuple(
                sort_once(
                    grouped.get(key, ()),
                    source="consistency.group_features.documents",
                    key=lambda document: document.path,
                )
            ),
            inventory=by_key.get(key),
        )
        for key in sort_once(
            set(grouped) | set(by_key),
            source="consistency.group_features.keys",
        )
    )


def check_consistency(
    documents: Iterable[tuple[DocumentDescriptor, TestScriptDocument]],
    inventories: Sequence[FeatureInventory] = (),
) -> tuple[Diagnostic, ...]:
    """Run every cross-document rule per `(base_dir, feature)` group.

    `documents` pairs each successfully parsed document with the descriptor
    discovery produced for it. Documents that failed to parse never reach
    this pass.
    """
    diagnostics: list[Diagnostic] = []
    for feature_set in group_features(documents, inventories):
        diagnostics.extend(check_feature(feature_set))
    return tuple(
        sort_once(
            diagnostics,
            source="consistency.check_consistency.diagnostics",
            key=lambda item: item.sort_key,
        )
    )


def check_feature(feature_set: FeatureSet) -> list[Diagnostic]:
    documents = feature_set.documents
    diagnostics = [
        *_duplicate_ids(documents),
        *_duplicate_names(documents),
        *_mode_placement(documents),
    ]
    if feature_set.inventory is not None and feature_set.inventory.readable:
        diagnostics.extend(_missing_screenshots(documents, feature_set.inventory))
        if feature_set.inventory.complete:
            diagnostics.extend(_orphaned_screenshots(documents, feature_set.inventory))
    return diagnostics


def _diagnostic(
    rule_id: str,
    severity: Severity,
    file: str,
    line: int | None,
    message: str,
) -> Diagnostic:
    return Diagnostic(
        severity=severity,
        rule_id=rule_id,
        file=file,
        line=line,
        message=message,
        kind=DiagnosticKind.CONSISTENCY,
    )


def _duplicate_ids(documents: Sequence[TestScriptDocument]) -> Iterable[Diagnostic]:
    by_id: dict[str, list[TestScriptDocument]] = defaultdict(list)
    for document in documents:
        if document.test_case.id:
            by_id[document.test_case.id].append(document)
    for test_id in sort_once(by_id, source="consistency._duplicate_ids.ids"):
        owners = by_id[test_id]
        if len(owners) < 2:
            continue
        first = owners[0]
        files = ", ".join(document.path for document in owners)
        yield _diagnostic(
            DUPLICATE_ID,
            Severity.ERROR,
            first.path,
            first.test_case.line,
            f"test case id '{test_id}' is declared by {len(owners)} documents: {files}",
        )


def _duplicate_names(documents: Sequence[TestScriptDocument]) -> Iterable[Diagnostic]:
    by_name: dict[str, list[TestScriptDocument]] = defaultdict(list)
    for document in documents:
        name = " ".join(document.test_case.name.split()).casefold()
        if name:
            by_name[name].append(document)
    for name in sort_once(by_name, source="consistency._duplicate_names.names"):
        owners = by_name[name]
        if len(owners) < 2:
            continue
        first = owners[0]
        files = ", ".join(document.path for document in owners)
        yield _diagnostic(
            DUPLICATE_NAME,
            Severity.WARNING,
            first.path,
            first.test_case.line,
            f"test case name '{first.test_case.name}' is used by {len(owners)} documents: {files}",
        )


def _mode_placement(documents: Sequence[TestScriptDocument]) -> Iterable[Diagnostic]:
    for document in documents:
        directory = document.mode_directory
        if directory is not None and directory is not document.mode:
            yield _diagnostic(
                MODE_PLACEMENT,
                Severity.ERROR,
                document.path,
                None,
                f"document has the .{document.mode.value}.md suffix but lives in the "
                f"'{directory.value}/' directory",
            )


def _missing_screenshots(
    documents: Sequence[TestScriptDocument],
    inventory: FeatureInventory,
) -> Iterable[Diagnostic]:
    on_disk = set(inventory.screenshots)
    for document in documents:
        for shot in document.test_case.screenshots:
            match = SCREENSHOT_PATH_PATTERN.match(shot.path)
            if match is None or match.group("feature") != document.feature:
                continue
            if shot.path not in on_disk:
                yield _diagnostic(
                    SCREENSHOT_MISSING,
                    Severity.WARNING,
                    document.path,
                    shot.line,
                    f"screenshot '{shot.path}' does not exist yet",
                )


def _orphaned_screenshots(
    documents: Sequence[TestScriptDocument],
    inventory: FeatureInventory,
) -> Iterable[Diagnostic]:
    referenced = {
        shot.path for document in documents for shot in document.test_case.screenshots
    }
    for screenshot in inventory.screenshots:
        if screenshot not in referenced:
            yield _diagnostic(
                SCREENSHOT_ORPHANED,
                Severity.INFO,
                screenshot,
                None,
                "screenshot is not referenced by any placeholder",
            )
