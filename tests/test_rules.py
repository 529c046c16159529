from __future__ import annotations

import pytest

from qalint.analysis.engine import evaluate_document
from qalint.analysis.model import Severity
from qalint.analysis.parser import parse_document
from qalint.analysis.rules import (
    DEFAULT_RULES,
    RuleContext,
    configure_rules,
    default_context,
    rule_ids,
)
from tests.document_helpers import document_text, line_of


def _diagnostics(text: str, path: str = "qa/acl/admin-access.mock.md", **kwargs):
    outcome = parse_document(text, path)
    assert outcome.ok, outcome.errors
    return evaluate_document(outcome.document, **kwargs)


def _by_rule(diagnostics, rule_id: str):
    return [item for item in diagnostics if item.rule_id == rule_id]


def test_template_document_has_no_diagnostics() -> None:
    assert _diagnostics(document_text()) == ()


def test_registry_ids_are_unique() -> None:
    ids = rule_ids()
    assert len(ids) == len(set(ids)) == 14


@pytest.mark.parametrize("test_id", ["acl-001", "ACL-01", "ACL001", "ACL-001a"])
def test_id_format(test_id: str) -> None:
    found = _by_rule(_diagnostics(document_text(test_id=test_id, screenshots=())), "id-format")
    assert len(found) == 1
    assert found[0].severity is Severity.ERROR
    assert found[0].line == 1


def test_id_prefix_must_match_feature() -> None:
    text = document_text(test_id="AUTH-001", screenshots=())
    found = _by_rule(_diagnostics(text), "id-prefix-matches-feature")
    assert len(found) == 1
    assert "expected 'ACL'" in found[0].message


def test_feature_code_override_is_honoured() -> None:
    context = RuleContext(policy=default_context().policy, feature_codes={"acl": "AC"})
    text = document_text(test_id="AC-001", screenshots=())
    assert _by_rule(_diagnostics(text, context=context), "id-prefix-matches-feature") == []


def test_feature_code_strips_separators() -> None:
    context = default_context()
    assert context.feature_code("user-settings") == "USERSETTINGS"


def test_name_must_not_be_empty() -> None:
    found = _by_rule(_diagnostics(document_text(name="")), "name-nonempty")
    assert [item.line for item in found] == [1]


def test_steps_section_without_steps() -> None:
    text = document_text(steps=(), screenshots=())
    found = _by_rule(_diagnostics(text), "steps-present")
    assert [item.line for item in found] == [line_of(text, "## Test Steps")]


def test_steps_numbering_gap_is_a_warning() -> None:
    text = document_text().replace("3. Enter", "4. Enter")
    found = _by_rule(_diagnostics(text), "steps-numbering")
    assert len(found) == 1
    assert found[0].severity is Severity.WARNING
    assert found[0].line == line_of(text, "4. Enter")


def test_unmarked_ui_state_line_is_reported_once_at_its_line() -> None:
    text = document_text(ui_state=("✅ **Code Field**: shown", "**Resend Button**: Visible"))
    found = _by_rule(_diagnostics(text), "ui-state-marker")
    assert len(found) == 1
    assert found[0].line == line_of(text, "Resend Button")
    assert "'Resend Button'" in found[0].message


def test_empty_ui_state_is_a_warning() -> None:
    text = document_text(ui_state=())
    found = _by_rule(_diagnostics(text), "ui-state-present")
    assert [item.severity for item in found] == [Severity.WARNING]


def test_expected_result_empty() -> None:
    text = document_text(expected_result="")
    found = _by_rule(_diagnostics(text), "expected-result-nonempty")
    assert len(found) == 1
    assert "is empty" in found[0].message


def test_expected_result_repeating_a_step() -> None:
    text = document_text(expected_result="Click **Invite Member**.")
    found = _by_rule(_diagnostics(text), "expected-result-nonempty")
    assert len(found) == 1
    assert "repeats" in found[0].message


@pytest.mark.parametrize(
    "url, valid",
    [
        ("https://staging.example.com/login", True),
        ("/settings/profile", True),
        ("{{BASE_URL}}/settings", True),
        ("[Settings](https://example.com/settings)", True),
        ("settings page", False),
        ("ftp://example.com", False),
    ],
)
def test_starting_url_format(url: str, valid: bool) -> None:
    found = _by_rule(_diagnostics(document_text(starting_url=url)), "starting-url-format")
    assert (found == []) is valid


def test_screenshot_in_own_feature_passes_shape_and_feature() -> None:
    placeholder = "<screenshot:qa/acl/screenshots/ACL-001_03-card.png|Card after invite>"
    diagnostics = _diagnostics(document_text(screenshots=(placeholder,)))
    assert _by_rule(diagnostics, "screenshot-path-shape") == []
    assert _by_rule(diagnostics, "screenshot-feature-match") == []


def test_screenshot_from_other_feature_cites_both_features() -> None:
    placeholder = "<screenshot:qa/acl/screenshots/AUTH-001_03-card.png|Card>"
    text = document_text(test_id="AUTH-001", feature="auth", screenshots=(placeholder,))
    diagnostics = _diagnostics(text, path="qa/auth/login.mock.md")
    found = _by_rule(diagnostics, "screenshot-feature-match")
    assert len(found) == 1
    assert "'acl' ≠ 'auth'" in found[0].message
    assert found[0].line == line_of(text, "<screenshot:")


@pytest.mark.parametrize(
    "path",
    [
        "qa/acl/shots/ACL-001_03-card.png",
        "qa/acl/screenshots/ACL-001-03-card.png",
        "qa/acl/screenshots/ACL-001_03-card.jpg",
        "qa/acl/screenshots/ACL-002_03-card.png",
    ],
)
def test_screenshot_path_shape_violations(path: str) -> None:
    text = document_text(screenshots=(f"<screenshot:{path}|Card>",))
    assert len(_by_rule(_diagnostics(text), "screenshot-path-shape")) == 1


def test_screenshot_step_out_of_range() -> None:
    placeholder = "<screenshot:qa/acl/screenshots/ACL-001_07-card.png|Card>"
    found = _by_rule(
        _diagnostics(document_text(screenshots=(placeholder,))),
        "screenshot-step-range",
    )
    assert len(found) == 1
    assert "step 7" in found[0].message


def test_full_document_with_mocked_services_marker() -> None:
    text = document_text(
        prerequisites=("Signed in as an admin user", "Backend runs with mocked services"),
    )
    diagnostics = _diagnostics(text, path="qa/acl/admin-access.full.md")
    found = _by_rule(diagnostics, "mode-exclusivity")
    assert len(found) == 1
    assert found[0].severity is Severity.ERROR
    assert found[0].line == line_of(text, "mocked services")


def test_mode_exclusivity_reports_once_for_many_markers() -> None:
    text = document_text(
        prerequisites=("[mock] data seeded", "Uses mock services only"),
    )
    found = _by_rule(
        _diagnostics(text, path="qa/acl/admin-access.full.md"),
        "mode-exclusivity",
    )
    assert len(found) == 1
    assert "2 line(s)" in found[0].message


def test_mock_document_may_mention_mock_services() -> None:
    text = document_text(prerequisites=("Backend runs with mocked services",))
    assert _by_rule(_diagnostics(text), "mode-exclusivity") == []


def test_single_scenario_heuristic_warns_on_many_roles() -> None:
    text = document_text(
        prerequisites=("An admin, an editor and a guest account exist",),
        screenshots=(),
    )
    found = _by_rule(_diagnostics(text), "single-scenario-heuristic")
    assert [item.severity for item in found] == [Severity.WARNING]


def test_configure_rules_overrides_and_disables() -> None:
    rules = configure_rules(
        DEFAULT_RULES,
        severity_overrides={"steps-numbering": Severity.ERROR},
        disabled=["single-scenario-heuristic"],
    )
    by_id = {rule.rule_id: rule for rule in rules}
    assert by_id["steps-numbering"].severity is Severity.ERROR
    assert "single-scenario-heuristic" not in by_id
    assert len(rules) == len(DEFAULT_RULES) - 1


def test_configure_rules_rejects_unknown_ids() -> None:
    with pytest.raises(ValueError, match="no-such-rule"):
        configure_rules(DEFAULT_RULES, disabled=["no-such-rule"])
