from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable

from qalint.invariants import never


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def at_least(self, threshold: "Severity") -> bool:
        return self.rank >= threshold.rank

    @classmethod
    def parse(cls, value: object) -> "Severity":
        text = str(getattr(value, "value", value)).strip().lower()
        for candidate in cls:
            if candidate.value == text:
                return candidate
        raise ValueError(
            f"unknown severity {value!r}; expected one of: "
            + ", ".join(candidate.value for candidate in cls)
        )


_SEVERITY_RANK = {Severity.INFO: 0, Severity.WARNING: 1, Severity.ERROR: 2}


class Mode(str, Enum):
    MOCK = "mock"
    FULL = "full"

    @property
    def opposite(self) -> "Mode":
        return Mode.FULL if self is Mode.MOCK else Mode.MOCK


class UiMarker(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"


PRESENT_GLYPH = "✅"
ABSENT_GLYPH = "❌"
MARKER_GLYPHS: dict[str, UiMarker] = {
    PRESENT_GLYPH: UiMarker.PRESENT,
    ABSENT_GLYPH: UiMarker.ABSENT,
}


class DiagnosticKind(str, Enum):
    PARSE = "parse"
    SCHEMA = "schema"
    CONSISTENCY = "consistency"
    IO = "io"


@dataclass(frozen=True)
class Diagnostic:
    severity: Severity
    rule_id: str
    file: str
    line: int | None
    message: str
    kind: DiagnosticKind = DiagnosticKind.SCHEMA

    def __post_init__(self) -> None:
        if self.line is not None and self.line < 1:
            never("diagnostic line must be 1-based", line=self.line, rule_id=self.rule_id)

    @property
    def sort_key(self) -> tuple[str, int, str, str]:
        return (self.file, self.line or 0, self.rule_id, self.message)

    def with_severity(self, severity: Severity) -> "Diagnostic":
        return Diagnostic(
            severity=severity,
            rule_id=self.rule_id,
            file=self.file,
            line=self.line,
            message=self.message,
            kind=self.kind,
        )


@dataclass(frozen=True)
class TestStep:
    __test__ = False

    number: int
    text: str
    line: int


@dataclass(frozen=True)
class UiStateEntry:
    marker: UiMarker | None
    element: str
    description: str
    line: int


@dataclass(frozen=True)
class ScreenshotPlaceholder:
    path: str
    description: str
    line: int


@dataclass(frozen=True)
class TestCase:
    __test__ = False

    id: str
    name: str
    line: int
    prerequisites: tuple[str, ...] = ()
    setup_script: str | None = None
    starting_url: str | None = None
    starting_url_line: int | None = None
    steps: tuple[TestStep, ...] = ()
    steps_line: int | None = None
    expected_ui_state: tuple[UiStateEntry, ...] = ()
    expected_ui_state_line: int | None = None
    expected_result: str = ""
    expected_result_line: int | None = None
    screenshots: tuple[ScreenshotPlaceholder, ...] = ()

    @property
    def step_texts(self) -> tuple[str, ...]:
        return tuple(step.text for step in self.steps)


@dataclass(frozen=True)
class TestScriptDocument:
    """One parsed test-script file: exactly one mode, exactly one test case."""

    __test__ = False

    path: str
    feature: str
    mode: Mode
    test_cases: tuple[TestCase, ...]
    lines: tuple[str, ...] = ()
    mode_directory: Mode | None = None

    def __post_init__(self) -> None:
        if len(self.test_cases) != 1:
            never(
                "a test-script document holds exactly one test case",
                path=self.path,
                count=len(self.test_cases),
            )

    @property
    def test_case(self) -> TestCase:
        return self.test_cases[0]

    def numbered_lines(self) -> Iterable[tuple[int, str]]:
        return enumerate(self.lines, start=1)


@dataclass(frozen=True)
class ParseOutcome:
    document: TestScriptDocument | None = None
    errors: tuple[Diagnostic, ...] = ()

    def __post_init__(self) -> None:
        if self.document is None and not self.errors:
            never("parse outcome carries neither a document nor errors")
        if self.document is not None and self.errors:
            never("parse outcome carries both a document and errors")

    @property
    def ok(self) -> bool:
        return self.document is not None


@dataclass(frozen=True)
class DocumentDescriptor:
    path: Path
    display_path: str
    feature: str
    base_dir: Path
    mode_directory: Mode | None = None


@dataclass(frozen=True)
class FeatureInventory:
    feature: str
    base_dir: Path
    screenshots: tuple[str, ...] = ()
    complete: bool = True
    readable: bool = True


@dataclass(frozen=True)
class DiscoveryResult:
    documents: tuple[DocumentDescriptor, ...] = ()
    features: tuple[FeatureInventory, ...] = ()
    errors: tuple[Diagnostic, ...] = ()
