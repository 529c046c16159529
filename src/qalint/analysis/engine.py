from __future__ import annotations

import logging
from typing import Sequence

from qalint.analysis.model import Diagnostic, DiagnosticKind, Severity, TestScriptDocument
from qalint.analysis.rules import DEFAULT_RULES, RuleContext, RuleSpec, default_context
from qalint.order_contract import sort_once

logger = logging.getLogger(__name__)

RULE_FAILURE = "rule-failure"


def evaluate_document(
    document: TestScriptDocument,
    rules: Sequence[RuleSpec] = DEFAULT_RULES,
    *,
    context: RuleContext | None = None,
) -> tuple[Diagnostic, ...]:
    """Run every rule against one document and return all violations.

    Rules never short-circuit each other. A rule that raises is reported as a
    `rule-failure` error for that rule and the remaining rules still run.
    The result is ordered by line, then rule id.
    """
    resolved_context = context if context is not None else default_context()
    diagnostics: list[Diagnostic] = []
    for rule in rules:
        try:
            findings = list(rule.check(document, resolved_context))
            messages = [(finding, rule.render(finding)) for finding in findings]
        except Exception as exc:
            logger.exception("rule %s failed on %s", rule.rule_id, document.path)
            diagnostics.append(
                Diagnostic(
                    severity=Severity.ERROR,
                    rule_id=RULE_FAILURE,
                    file=document.path,
                    line=None,
                    message=f"rule '{rule.rule_id}' could not be evaluated: {exc!r}",
                    kind=DiagnosticKind.SCHEMA,
                )
            )
            continue
        diagnostics.extend(
            Diagnostic(
                severity=rule.severity,
                rule_id=rule.rule_id,
                file=document.path,
                line=finding.line,
                message=message,
                kind=DiagnosticKind.SCHEMA,
            )
            for finding, message in messages
        )
    return tuple(
        sort_once(
            diagnostics,
            source="engine.evaluate_document.diagnostics",
            key=lambda item: (item.line or 0, item.rule_id, item.message),
        )
    )
