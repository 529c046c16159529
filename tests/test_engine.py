from __future__ import annotations

from qalint.analysis.engine import RULE_FAILURE, evaluate_document
from qalint.analysis.model import DiagnosticKind, Severity
from qalint.analysis.parser import parse_document
from qalint.analysis.rules import DEFAULT_RULES, Finding, RuleSpec
from tests.document_helpers import document_text


def _document(text: str | None = None):
    return parse_document(text or document_text(), "qa/acl/admin-access.mock.md").document


def _exploding_check(document, context):
    raise RuntimeError("boom")


def _always(document, context):
    yield Finding(document.test_case.line, {"name": document.test_case.name})


def test_rules_do_not_short_circuit_each_other() -> None:
    text = document_text(
        test_id="acl-1",
        ui_state=("**Resend Button**: Visible",),
        expected_result="",
        screenshots=(),
    )
    diagnostics = evaluate_document(_document(text))
    assert {item.rule_id for item in diagnostics} >= {
        "id-format",
        "ui-state-marker",
        "expected-result-nonempty",
    }


def test_raising_rule_becomes_rule_failure_and_others_still_run() -> None:
    rules = (
        RuleSpec("exploding", Severity.WARNING, "raises", "never rendered", _exploding_check),
        RuleSpec("always", Severity.INFO, "always fires", "case '{name}'", _always),
    )
    diagnostics = evaluate_document(_document(), rules)
    assert [item.rule_id for item in diagnostics] == [RULE_FAILURE, "always"]
    failure = diagnostics[0]
    assert failure.severity is Severity.ERROR
    assert failure.line is None
    assert "exploding" in failure.message
    assert diagnostics[1].message == "case 'Admin grants project access'"


def test_diagnostics_are_ordered_by_line_then_rule() -> None:
    text = document_text(
        test_id="acl-1",
        ui_state=("**Resend Button**: Visible",),
        screenshots=(),
    )
    diagnostics = evaluate_document(_document(text), DEFAULT_RULES)
    keys = [(item.line or 0, item.rule_id) for item in diagnostics]
    assert keys == sorted(keys)
    assert all(item.kind is DiagnosticKind.SCHEMA for item in diagnostics)
    assert all(item.file == "qa/acl/admin-access.mock.md" for item in diagnostics)
