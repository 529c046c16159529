"""Parsing, rule evaluation and reporting for QA test-script documents.

Only the leaf modules are re-exported here; import the engine, consistency,
report and pipeline modules directly.
"""

from .discovery import discover
from .model import (
    Diagnostic,
    DiagnosticKind,
    Mode,
    ParseOutcome,
    Severity,
    TestCase,
    TestScriptDocument,
)
from .parser import parse_document

__all__ = [
    "Diagnostic",
    "DiagnosticKind",
    "Mode",
    "ParseOutcome",
    "Severity",
    "TestCase",
    "TestScriptDocument",
    "discover",
    "parse_document",
]
