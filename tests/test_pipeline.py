from __future__ import annotations

from pathlib import Path

import pytest

from qalint.analysis import pipeline
from qalint.analysis.pipeline import DiagnosticCollector, validate_paths
from qalint.analysis.discovery import io_error
from qalint.analysis.model import DiagnosticKind, Severity
from qalint.analysis.report import render_json, render_text
from qalint.config import ValidatorConfig
from tests.document_helpers import document_text


def _populate(qa_tree) -> None:
    qa_tree.document("qa/acl/admin-access.mock.md")
    qa_tree.document(
        "qa/acl/full/admin-access.full.md",
        document_text(
            test_id="ACL-002",
            name="Admin grants project access against live services",
            screenshots=("<screenshot:qa/acl/screenshots/ACL-002_01-invite-dialog.png|Invite dialog>",),
        ),
    )
    qa_tree.screenshot("qa/acl/screenshots/ACL-001_03-member-list.png")
    qa_tree.screenshot("qa/acl/screenshots/ACL-002_01-invite-dialog.png")


def test_clean_tree_passes(qa_tree) -> None:
    _populate(qa_tree)
    report = validate_paths([qa_tree.root], ValidatorConfig(workers=2))
    assert report.diagnostics == ()
    assert report.exit_code == 0


def test_violations_from_every_pass_are_collected(qa_tree) -> None:
    _populate(qa_tree)
    qa_tree.document(
        "qa/acl/viewer.mock.md",
        document_text(name="Invitee appears in list", ui_state=("**Resend Button**: Visible",), screenshots=()),
    )
    qa_tree.document("qa/acl/broken.mock.md", document_text(omit=("Expected Result",), test_id="ACL-003"))
    qa_tree.screenshot("qa/acl/screenshots/ACL-009_01-unused.png")

    report = validate_paths([qa_tree.root], ValidatorConfig(workers=4))

    found = {(item.file, item.rule_id) for item in report.diagnostics}
    assert found == {
        ("qa/acl/viewer.mock.md", "ui-state-marker"),
        ("qa/acl/admin-access.mock.md", "duplicate-id"),
        ("qa/acl/broken.mock.md", "parse-missing-section"),
        ("qa/acl/screenshots/ACL-009_01-unused.png", "screenshot-orphaned"),
    }
    assert report.failed
    assert report.exit_code == 1


def test_output_is_deterministic_across_runs_and_worker_counts(qa_tree) -> None:
    _populate(qa_tree)
    qa_tree.document("qa/acl/other.mock.md", document_text(test_id="acl-7", ui_state=("Banner shown",)))
    first = validate_paths([qa_tree.root], ValidatorConfig(workers=1))
    second = validate_paths([qa_tree.root], ValidatorConfig(workers=8))
    assert render_json(first) == render_json(second)
    assert render_text(first) == render_text(second)


def test_overlapping_roots_do_not_duplicate_documents(qa_tree) -> None:
    _populate(qa_tree)
    report = validate_paths(
        [qa_tree.root, qa_tree.root / "qa" / "acl"],
        ValidatorConfig(workers=2),
    )
    assert report.diagnostics == ()


def test_missing_root_is_an_io_failure(tmp_path: Path) -> None:
    report = validate_paths([tmp_path / "nowhere"], ValidatorConfig(workers=1))
    assert [item.rule_id for item in report.diagnostics] == ["io-error"]
    assert report.exit_code == 2


def test_undecodable_document_is_a_content_failure(qa_tree) -> None:
    path = qa_tree.root / "qa" / "acl" / "binary.mock.md"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"\xff\xfe\xfa not utf-8")
    report = validate_paths([qa_tree.root], ValidatorConfig(workers=1))
    assert [(item.file, item.line, item.rule_id) for item in report.diagnostics] == [
        ("qa/acl/binary.mock.md", 1, "parse-encoding")
    ]
    assert report.diagnostics[0].kind is DiagnosticKind.PARSE
    assert report.exit_code == 1


def test_consistency_rules_can_be_disabled_and_reweighted(qa_tree) -> None:
    qa_tree.document("qa/acl/admin-access.mock.md")
    qa_tree.document("qa/acl/copy.mock.md")
    qa_tree.screenshot("qa/acl/screenshots/ACL-001_03-member-list.png")
    qa_tree.screenshot("qa/acl/screenshots/ACL-009_01-unused.png")
    config = ValidatorConfig(
        workers=1,
        consistency_disabled=frozenset({"screenshot-orphaned"}),
        consistency_severity={"duplicate-id": Severity.WARNING},
    )
    report = validate_paths([qa_tree.root], config)
    assert [item.rule_id for item in report.diagnostics] == ["duplicate-id", "duplicate-name"]
    assert {item.severity for item in report.diagnostics} == {Severity.WARNING}
    assert report.exit_code == 0


def test_keyboard_interrupt_cancels_and_propagates(qa_tree, monkeypatch) -> None:
    _populate(qa_tree)

    def _interrupt(*args, **kwargs):
        raise KeyboardInterrupt

    monkeypatch.setattr(pipeline, "_process_into", _interrupt)
    with pytest.raises(KeyboardInterrupt):
        validate_paths([qa_tree.root], ValidatorConfig(workers=2))


def test_diagnostic_collector_snapshot_is_a_copy() -> None:
    collector = DiagnosticCollector()
    snapshot = collector.snapshot()
    collector.extend([io_error("qa/acl/x.mock.md", "cannot read document")])
    assert snapshot == ()
    assert len(collector.snapshot()) == 1
