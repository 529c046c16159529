"""Rule descriptors evaluated by the rule engine.

Every rule is an immutable `RuleSpec`: an id, a default severity, a message
template and a pure `check` function that yields `Finding`s for one parsed
document. `DEFAULT_RULES` is the explicit, ordered registry; the rule set in effect
is the tuple handed to the engine.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable, Iterator, Mapping, Sequence

from qalint.analysis.model import Severity, TestScriptDocument
from qalint.tooling.rule_policy import RulePolicy, load_rule_policy

ID_PATTERN = re.compile(r"^[A-Z]+-\d{3,}$")
SCREENSHOT_PATH_PATTERN = re.compile(
    r"^qa/(?P<feature>[^/\s]+)/screenshots/"
    r"(?P<test_id>[A-Z]+-\d{3,})_(?P<step>\d+)-(?P<element>[A-Za-z0-9][A-Za-z0-9_-]*)\.png$"
)
SCREENSHOT_SHAPE = "qa/<feature>/screenshots/<TestID>_<step>-<element>.png"
_FEATURE_SEGMENT_RE = re.compile(r"^qa/(?P<feature>[^/\s]+)/")
_STARTING_URL_RE = re.compile(
    r"^(?:https?://\S+|/\S*|\{\{\s*\w+\s*\}\}\S*|\$\{\w+\}\S*)$"
)
_LIST_PREFIX_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+")
_NON_CODE_CHARS_RE = re.compile(r"[^A-Za-z0-9]")


@dataclass(frozen=True)
class Finding:
    line: int | None
    params: Mapping[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class RuleContext:
    policy: RulePolicy
    feature_codes: Mapping[str, str] = field(default_factory=dict)

    def feature_code(self, feature: str) -> str:
        override = self.feature_codes.get(feature)
        if override:
            return override
        return _NON_CODE_CHARS_RE.sub("", feature).upper()


RuleCheck = Callable[[TestScriptDocument, RuleContext], Iterable[Finding]]


@dataclass(frozen=True)
class RuleSpec:
    rule_id: str
    severity: Severity
    summary: str
    message: str
    check: RuleCheck

    def render(self, finding: Finding) -> str:
        return self.message.format(**finding.params)


def default_context() -> RuleContext:
    return RuleContext(policy=load_rule_policy())


def _check_id_format(document: TestScriptDocument, _: RuleContext) -> Iterator[Finding]:
    case = document.test_case
    if not ID_PATTERN.match(case.id):
        yield Finding(case.line, {"id": case.id or "<empty>"})


def _check_id_prefix(document: TestScriptDocument, context: RuleContext) -> Iterator[Finding]:
    case = document.test_case
    prefix, separator, _ = case.id.partition("-")
    if not separator or not prefix:
        return
    expected = context.feature_code(document.feature)
    if expected and prefix != expected:
        yield Finding(
            case.line,
            {"prefix": prefix, "expected": expected, "feature": document.feature},
        )


def _check_name(document: TestScriptDocument, _: RuleContext) -> Iterator[Finding]:
    case = document.test_case
    if not case.name.strip():
        yield Finding(case.line)


def _check_steps_present(document: TestScriptDocument, _: RuleContext) -> Iterator[Finding]:
    case = document.test_case
    if not case.steps:
        yield Finding(case.steps_line or case.line)


def _check_steps_numbering(document: TestScriptDocument, _: RuleContext) -> Iterator[Finding]:
    for expected, step in enumerate(document.test_case.steps, start=1):
        if step.number != expected:
            yield Finding(step.line, {"found": step.number, "expected": expected})
            return


def _check_ui_state_present(document: TestScriptDocument, _: RuleContext) -> Iterator[Finding]:
    case = document.test_case
    if not case.expected_ui_state:
        yield Finding(case.expected_ui_state_line or case.line)


def _check_ui_state_marker(document: TestScriptDocument, _: RuleContext) -> Iterator[Finding]:
    for entry in document.test_case.expected_ui_state:
        if entry.marker is None:
            yield Finding(entry.line, {"element": entry.element or "<unnamed>"})


def _normalized(text: str) -> str:
    lines = [_LIST_PREFIX_RE.sub("", line).strip() for line in text.splitlines()]
    return " ".join(" ".join(lines).split()).rstrip(".").lower()


def _check_expected_result(document: TestScriptDocument, _: RuleContext) -> Iterator[Finding]:
    case = document.test_case
    line = case.expected_result_line or case.line
    result = _normalized(case.expected_result)
    if not result:
        yield Finding(line, {"reason": "is empty"})
        return
    step_texts = [_normalized(text) for text in case.step_texts]
    if result in step_texts or (step_texts and result == " ".join(step_texts)):
        yield Finding(line, {"reason": "only repeats the test steps verbatim"})


def _check_starting_url(document: TestScriptDocument, _: RuleContext) -> Iterator[Finding]:
    case = document.test_case
    if case.starting_url is not None and not _STARTING_URL_RE.match(case.starting_url):
        yield Finding(case.starting_url_line or case.line, {"url": case.starting_url})


def _check_screenshot_shape(document: TestScriptDocument, _: RuleContext) -> Iterator[Finding]:
    case = document.test_case
    for shot in case.screenshots:
        match = SCREENSHOT_PATH_PATTERN.match(shot.path)
        if match is None:
            yield Finding(
                shot.line,
                {"path": shot.path, "reason": f"does not match {SCREENSHOT_SHAPE}"},
            )
        elif match.group("test_id") != case.id:
            yield Finding(
                shot.line,
                {
                    "path": shot.path,
                    "reason": f"names test id '{match.group('test_id')}' instead of '{case.id}'",
                },
            )


def _check_screenshot_feature(document: TestScriptDocument, _: RuleContext) -> Iterator[Finding]:
    for shot in document.test_case.screenshots:
        match = _FEATURE_SEGMENT_RE.match(shot.path)
        if match is not None and match.group("feature") != document.feature:
            yield Finding(
                shot.line,
                {
                    "path": shot.path,
                    "found": match.group("feature"),
                    "expected": document.feature,
                },
            )


def _check_screenshot_step(document: TestScriptDocument, _: RuleContext) -> Iterator[Finding]:
    case = document.test_case
    if not case.steps:
        return
    for shot in case.screenshots:
        match = SCREENSHOT_PATH_PATTERN.match(shot.path)
        if match is None:
            continue
        step = int(match.group("step"))
        if not 1 <= step <= len(case.steps):
            yield Finding(
                shot.line,
                {"path": shot.path, "step": step, "count": len(case.steps)},
            )


def _check_mode_exclusivity(document: TestScriptDocument, context: RuleContext) -> Iterator[Finding]:
    opposite = document.mode.opposite
    patterns = context.policy.markers_for(opposite)
    hits: list[tuple[int, str]] = []
    for number, text in document.numbered_lines():
        for pattern in patterns:
            match = pattern.search(text)
            if match is not None:
                hits.append((number, match.group(0)))
                break
    if hits:
        line, marker = hits[0]
        yield Finding(
            line,
            {
                "mode": document.mode.value,
                "opposite": opposite.value,
                "marker": marker,
                "count": len(hits),
            },
        )


def _check_single_scenario(document: TestScriptDocument, context: RuleContext) -> Iterator[Finding]:
    case = document.test_case
    texts = [case.name, *case.prerequisites, *case.step_texts]
    roles = [
        keyword
        for keyword in context.policy.role_keywords
        if any(
            re.search(rf"\b{re.escape(keyword)}s?\b", text, re.IGNORECASE)
            for text in texts
        )
    ]
    if len(roles) >= context.policy.role_threshold:
        yield Finding(case.line, {"count": len(roles), "roles": ", ".join(roles)})


DEFAULT_RULES: tuple[RuleSpec, ...] = (
    RuleSpec(
        rule_id="id-format",
        severity=Severity.ERROR,
        summary="test case id matches ^[A-Z]+-\\d{3,}$",
        message="test case id '{id}' does not match the UPPER-### format",
        check=_check_id_format,
    ),
    RuleSpec(
        rule_id="id-prefix-matches-feature",
        severity=Severity.ERROR,
        summary="id prefix equals the feature code of the document's directory",
        message="id prefix '{prefix}' does not match feature '{feature}' (expected '{expected}')",
        check=_check_id_prefix,
    ),
    RuleSpec(
        rule_id="name-nonempty",
        severity=Severity.ERROR,
        summary="the Test Case heading carries a name after the id",
        message="test case heading has no name",
        check=_check_name,
    ),
    RuleSpec(
        rule_id="steps-present",
        severity=Severity.ERROR,
        summary="Test Steps lists at least one step",
        message="Test Steps section contains no steps",
        check=_check_steps_present,
    ),
    RuleSpec(
        rule_id="steps-numbering",
        severity=Severity.WARNING,
        summary="steps are numbered 1..n without gaps",
        message="step numbered {found} where {expected} was expected; number steps 1..n",
        check=_check_steps_numbering,
    ),
    RuleSpec(
        rule_id="ui-state-present",
        severity=Severity.WARNING,
        summary="Expected UI State lists at least one element",
        message="Expected UI State lists no elements",
        check=_check_ui_state_present,
    ),
    RuleSpec(
        rule_id="ui-state-marker",
        severity=Severity.ERROR,
        summary="every Expected UI State line starts with ✅ or ❌",
        message="Expected UI State line for '{element}' must start with ✅ (present) or ❌ (absent)",
        check=_check_ui_state_marker,
    ),
    RuleSpec(
        rule_id="expected-result-nonempty",
        severity=Severity.WARNING,
        summary="Expected Result is non-empty and does not just repeat the steps",
        message="Expected Result {reason}",
        check=_check_expected_result,
    ),
    RuleSpec(
        rule_id="starting-url-format",
        severity=Severity.WARNING,
        summary="Starting URL is absolute, a /path, or a {{VAR}} template",
        message="starting URL '{url}' is neither an http(s) URL, a /path nor a {{{{VAR}}}} template",
        check=_check_starting_url,
    ),
    RuleSpec(
        rule_id="screenshot-path-shape",
        severity=Severity.ERROR,
        summary=f"placeholder paths match {SCREENSHOT_SHAPE} for this test id",
        message="screenshot path '{path}' {reason}",
        check=_check_screenshot_shape,
    ),
    RuleSpec(
        rule_id="screenshot-feature-match",
        severity=Severity.ERROR,
        summary="placeholder feature segment equals the document's feature",
        message="screenshot '{path}' belongs to feature '{found}' but the document is in feature '{expected}' ('{found}' ≠ '{expected}')",
        check=_check_screenshot_feature,
    ),
    RuleSpec(
        rule_id="screenshot-step-range",
        severity=Severity.WARNING,
        summary="placeholder step number refers to an existing step",
        message="screenshot '{path}' refers to step {step} but the test has {count} step(s)",
        check=_check_screenshot_step,
    ),
    RuleSpec(
        rule_id="mode-exclusivity",
        severity=Severity.ERROR,
        summary="body carries no explicit marker of the opposite mode",
        message="{mode} document contains an explicit {opposite}-mode marker '{marker}' ({count} line(s))",
        check=_check_mode_exclusivity,
    ),
    RuleSpec(
        rule_id="single-scenario-heuristic",
        severity=Severity.WARNING,
        summary="heuristic: few distinct roles, suggesting a single scenario",
        message="test case mentions {count} distinct roles ({roles}); it may describe more than one scenario",
        check=_check_single_scenario,
    ),
)


def rule_ids(rules: Sequence[RuleSpec] = DEFAULT_RULES) -> tuple[str, ...]:
    return tuple(rule.rule_id for rule in rules)


def configure_rules(
    rules: Sequence[RuleSpec] = DEFAULT_RULES,
    *,
    severity_overrides: Mapping[str, Severity] | None = None,
    disabled: Iterable[str] = (),
) -> tuple[RuleSpec, ...]:
    """Return a new registry with severities overridden and rules removed."""
    known = set(rule_ids(rules))
    overrides = dict(severity_overrides or {})
    disabled_ids = set(disabled)
    unknown = sorted((set(overrides) | disabled_ids) - known)
    if unknown:
        raise ValueError(f"unknown rule id(s): {', '.join(unknown)}")
    return tuple(
        replace(rule, severity=overrides[rule.rule_id]) if rule.rule_id in overrides else rule
        for rule in rules
        if rule.rule_id not in disabled_ids
    )
