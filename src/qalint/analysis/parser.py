"""Tolerant structural parser for test-script documents.

The parser turns Markdown text into a `TestScriptDocument`. It only checks
structure (headings, their order, placeholder syntax). Schema checks on the
parsed values belong to the rule engine, so a UI state line without a marker
glyph still parses; it is recorded with `marker=None`.

Any structural problem makes the outcome carry `ParseError` diagnostics and no
document. Scanning continues after each problem so one run reports all of
them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import PurePath

from qalint.analysis.discovery import feature_from_path, mode_from_filename
from qalint.analysis.model import (
    MARKER_GLYPHS,
    Diagnostic,
    DiagnosticKind,
    Mode,
    ParseOutcome,
    ScreenshotPlaceholder,
    Severity,
    TestCase,
    TestScriptDocument,
    TestStep,
    UiStateEntry,
)
from qalint.invariants import require_not_none
from qalint.order_contract import sort_once

TEST_CASE = "Test Case"
PREREQUISITES = "Prerequisites"
SETUP_SCRIPTS = "Setup Scripts"
STARTING_URL = "Starting URL"
TEST_STEPS = "Test Steps"
EXPECTED_UI_STATE = "Expected UI State"
EXPECTED_RESULT = "Expected Result"
SCREENSHOTS = "Screenshots"

CANONICAL_ORDER: tuple[str, ...] = (
    TEST_CASE,
    PREREQUISITES,
    SETUP_SCRIPTS,
    STARTING_URL,
    TEST_STEPS,
    EXPECTED_UI_STATE,
    EXPECTED_RESULT,
    SCREENSHOTS,
)
REQUIRED_SECTIONS: frozenset[str] = frozenset(
    {PREREQUISITES, TEST_STEPS, EXPECTED_UI_STATE, EXPECTED_RESULT, SCREENSHOTS}
)
_ORDER_INDEX = {name: index for index, name in enumerate(CANONICAL_ORDER)}

PARSE_MODE_SUFFIX = "parse-mode-suffix"
PARSE_MISSING_TEST_CASE = "parse-missing-test-case"
PARSE_SECTION_ORDER = "parse-section-order"
PARSE_DUPLICATE_SECTION = "parse-duplicate-section"
PARSE_MISSING_SECTION = "parse-missing-section"
PARSE_MULTIPLE_TEST_CASES = "parse-multiple-test-cases"
PARSE_SCREENSHOT_PLACEHOLDER = "parse-screenshot-placeholder"
PARSE_ENCODING = "parse-encoding"

PLACEHOLDER_OPEN = "<screenshot:"
PLACEHOLDER_CLOSE = ">"
PLACEHOLDER_SEPARATOR = "|"

_ATX_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s+(?P<label>.*?)\s*#*\s*$")
_BOLD_HEADING_RE = re.compile(r"^\s{0,3}(?:\*\*|__)(?P<label>[^*_].*?)(?:\*\*|__)\s*:?\s*$")
_TEST_CASE_RE = re.compile(
    r"^Test Case\b\s*:?\s*(?P<id>[^\s:|]+)?\s*(?:[-:|\u2013\u2014]\s*)?(?P<name>.*)$"
)
_FENCE_RE = re.compile(r"^\s{0,3}(```|~~~)")
_NUMBERED_ITEM_RE = re.compile(r"^\s*(?P<number>\d+)[.)]\s+(?P<text>.*)$")
_BULLET_ITEM_RE = re.compile(r"^(?P<indent>\s*)[-*+]\s+(?P<text>.*)$")
_LIST_PREFIX_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+")
_BOLD_ELEMENT_RE = re.compile(r"^\*\*(?P<element>.+?)\*\*\s*:?\s*(?P<description>.*)$")
_MARKDOWN_LINK_RE = re.compile(r"^\[[^\]]*\]\((?P<url>[^)\s]+)\)$")
_VARIATION_SELECTOR = "\ufe0f"


@dataclass
class _Section:
    name: str
    heading_line: int
    lines: list[tuple[int, str]] = field(default_factory=list)

    def last_line(self) -> int:
        for number, text in reversed(self.lines):
            if text.strip():
                return number
        return self.heading_line

    def content(self) -> list[tuple[int, str]]:
        return [(number, text) for number, text in self.lines if text.strip()]


@dataclass(frozen=True)
class _Heading:
    id: str
    name: str
    line: int


def heading_label(line: str) -> str | None:
    """Label of a Markdown heading line, or None for ordinary content."""
    match = _ATX_HEADING_RE.match(line) or _BOLD_HEADING_RE.match(line)
    if match is None:
        return None
    label = match.group("label").strip().rstrip(":").strip()
    for wrapper in ("**", "__"):
        if label.startswith(wrapper) and label.endswith(wrapper) and len(label) > 4:
            label = label[2:-2].strip()
    return label.rstrip(":").strip() or None


def parse_document(
    text: str,
    path: str | PurePath,
    *,
    feature: str | None = None,
    mode_directory: Mode | None = None,
) -> ParseOutcome:
    display_path = PurePath(path).as_posix()
    return _DocumentParser(
        display_path=display_path,
        feature=feature if feature is not None else feature_from_path(display_path),
        mode_directory=mode_directory,
    ).parse(text)


def encoding_error(path: str | PurePath, exc: UnicodeDecodeError) -> Diagnostic:
    """Parse diagnostic for a document whose bytes are not valid UTF-8."""
    raw = exc.object if isinstance(exc.object, (bytes, bytearray)) else b""
    line = raw[: exc.start].count(b"\n") + 1
    return Diagnostic(
        severity=Severity.ERROR,
        rule_id=PARSE_ENCODING,
        file=PurePath(path).as_posix(),
        line=line,
        message=f"document is not valid UTF-8: undecodable byte at offset {exc.start}",
        kind=DiagnosticKind.PARSE,
    )


class _DocumentParser:
    def __init__(self, *, display_path: str, feature: str, mode_directory: Mode | None):
        self.path = display_path
        self.feature = feature
        self.mode_directory = mode_directory
        self.errors: list[Diagnostic] = []
        self.sections: dict[str, _Section] = {}
        self.seen: set[str] = set()
        self.current: _Section | None = None
        self.max_index = -1
        self.heading: _Heading | None = None
        self.skipping = False
        self.placeholders: list[ScreenshotPlaceholder] = []

    def parse(self, text: str) -> ParseOutcome:
        lines = tuple(line.rstrip("\r") for line in text.lstrip("\ufeff").split("\n"))
        mode = mode_from_filename(PurePath(self.path).name)
        if mode is None:
            self._error(
                PARSE_MODE_SUFFIX,
                None,
                "file name must end in .mock.md or .full.md to declare its mode",
            )
        in_fence = False
        for number, raw in enumerate(lines, start=1):
            if _FENCE_RE.match(raw):
                in_fence = not in_fence
            elif not in_fence and self._handle_heading(raw, number):
                continue
            if self.skipping:
                continue
            if not in_fence:
                self._scan_placeholders(raw, number)
            if self.current is not None:
                self.current.lines.append((number, raw))
        self._check_required()
        if self.errors:
            return ParseOutcome(
                errors=tuple(
                    sort_once(
                        self.errors,
                        source="parser.parse.errors",
                        key=lambda item: item.sort_key,
                    )
                )
            )
        heading = require_not_none(self.heading, reason="document parsed without a heading")
        return ParseOutcome(
            document=TestScriptDocument(
                path=self.path,
                feature=self.feature,
                mode=require_not_none(mode, reason="document parsed without a mode"),
                test_cases=(self._build_test_case(heading),),
                lines=lines,
                mode_directory=self.mode_directory,
            )
        )

    def _handle_heading(self, raw: str, number: int) -> bool:
        label = heading_label(raw)
        if label is None:
            return False
        test_case = _TEST_CASE_RE.match(label)
        if test_case is not None:
            self._open_test_case(test_case, number)
            return True
        if label not in _ORDER_INDEX:
            return False
        if not self.skipping:
            self._open_section(label, number)
        return True

    def _open_test_case(self, match: re.Match[str], number: int) -> None:
        if self.heading is not None:
            self._error(
                PARSE_MULTIPLE_TEST_CASES,
                number,
                "multiple test cases per file: found another 'Test Case' heading "
                f"(first at line {self.heading.line}); split it into its own document",
            )
            self.skipping = True
            return
        self.heading = _Heading(
            id=(match.group("id") or "").strip(),
            name=match.group("name").strip(),
            line=number,
        )
        self.seen.add(TEST_CASE)
        if self.max_index > _ORDER_INDEX[TEST_CASE]:
            self._error(PARSE_SECTION_ORDER, number, f"section '{TEST_CASE}' out of order")
            return
        section = _Section(TEST_CASE, number)
        self.sections[TEST_CASE] = section
        self.current = section
        self.max_index = _ORDER_INDEX[TEST_CASE]

    def _open_section(self, name: str, number: int) -> None:
        index = _ORDER_INDEX[name]
        if name in self.seen:
            first = self.sections.get(name)
            where = f" (first at line {first.heading_line})" if first is not None else ""
            self._error(
                PARSE_DUPLICATE_SECTION,
                number,
                f"section '{name}' appears more than once{where}",
            )
            return
        self.seen.add(name)
        if index < self.max_index:
            self._error(PARSE_SECTION_ORDER, number, f"section '{name}' out of order")
            return
        section = _Section(name, number)
        self.sections[name] = section
        self.current = section
        self.max_index = index

    def _scan_placeholders(self, raw: str, number: int) -> None:
        position = 0
        while True:
            start = raw.find(PLACEHOLDER_OPEN, position)
            if start < 0:
                return
            body_start = start + len(PLACEHOLDER_OPEN)
            close = raw.find(PLACEHOLDER_CLOSE, body_start)
            reopen = raw.find(PLACEHOLDER_OPEN, body_start)
            if close < 0 or 0 <= reopen < close:
                self._error(
                    PARSE_SCREENSHOT_PLACEHOLDER,
                    number,
                    "unbalanced screenshot placeholder: "
                    f"'{PLACEHOLDER_OPEN}' has no closing '{PLACEHOLDER_CLOSE}'",
                )
                if reopen < 0:
                    return
                position = reopen
                continue
            inner = raw[body_start:close]
            position = close + 1
            if PLACEHOLDER_SEPARATOR not in inner:
                self._error(
                    PARSE_SCREENSHOT_PLACEHOLDER,
                    number,
                    f"screenshot placeholder '{raw[start:close + 1]}' is missing the "
                    f"'{PLACEHOLDER_SEPARATOR}' between path and description",
                )
                continue
            path, description = inner.split(PLACEHOLDER_SEPARATOR, 1)
            if not path.strip():
                self._error(
                    PARSE_SCREENSHOT_PLACEHOLDER,
                    number,
                    "screenshot placeholder has an empty path",
                )
                continue
            self.placeholders.append(
                ScreenshotPlaceholder(
                    path=path.strip(),
                    description=description.strip(),
                    line=number,
                )
            )

    def _check_required(self) -> None:
        if self.heading is None:
            self._error(
                PARSE_MISSING_TEST_CASE,
                1,
                "document has no 'Test Case: <ID> - <Name>' heading",
            )
        for name in CANONICAL_ORDER:
            if name not in REQUIRED_SECTIONS or name in self.seen:
                continue
            preceding = self._preceding_section(name)
            if preceding is None:
                self._error(
                    PARSE_MISSING_SECTION,
                    None,
                    f"missing required section '{name}'",
                )
                continue
            last_line = preceding.last_line()
            self._error(
                PARSE_MISSING_SECTION,
                last_line,
                f"missing required section '{name}'; expected after section "
                f"'{preceding.name}' ending at line {last_line}",
            )

    def _preceding_section(self, name: str) -> _Section | None:
        for candidate in reversed(CANONICAL_ORDER[: _ORDER_INDEX[name]]):
            section = self.sections.get(candidate)
            if section is not None:
                return section
        return None

    def _build_test_case(self, heading: _Heading) -> TestCase:
        starting_url, starting_url_line = _starting_url(self.sections.get(STARTING_URL))
        steps_section = self.sections.get(TEST_STEPS)
        ui_section = self.sections.get(EXPECTED_UI_STATE)
        result_section = self.sections.get(EXPECTED_RESULT)
        return TestCase(
            id=heading.id,
            name=heading.name,
            line=heading.line,
            prerequisites=_list_items(self.sections.get(PREREQUISITES)),
            setup_script=_raw_block(self.sections.get(SETUP_SCRIPTS)),
            starting_url=starting_url,
            starting_url_line=starting_url_line,
            steps=_steps(steps_section),
            steps_line=steps_section.heading_line if steps_section else None,
            expected_ui_state=_ui_state(ui_section),
            expected_ui_state_line=ui_section.heading_line if ui_section else None,
            expected_result=_free_text(result_section),
            expected_result_line=result_section.heading_line if result_section else None,
            screenshots=tuple(self.placeholders),
        )

    def _error(self, rule_id: str, line: int | None, message: str) -> None:
        self.errors.append(
            Diagnostic(
                severity=Severity.ERROR,
                rule_id=rule_id,
                file=self.path,
                line=line,
                message=message,
                kind=DiagnosticKind.PARSE,
            )
        )


def _list_items(section: _Section | None) -> tuple[str, ...]:
    if section is None:
        return ()
    return tuple(
        _LIST_PREFIX_RE.sub("", text).strip() for _, text in section.content()
    )


def _raw_block(section: _Section | None) -> str | None:
    if section is None:
        return None
    block = "\n".join(text for _, text in section.lines).strip("\n")
    return block if block.strip() else None


def _starting_url(section: _Section | None) -> tuple[str | None, int | None]:
    if section is None:
        return None, None
    for number, text in section.content():
        value = _LIST_PREFIX_RE.sub("", text).strip().strip("`").strip()
        if value.startswith("<") and value.endswith(">"):
            value = value[1:-1].strip()
        link = _MARKDOWN_LINK_RE.match(value)
        if link is not None:
            value = link.group("url")
        return value, number
    return None, None


def _steps(section: _Section | None) -> tuple[TestStep, ...]:
    if section is None:
        return ()
    steps: list[TestStep] = []
    for number, raw in section.content():
        numbered = _NUMBERED_ITEM_RE.match(raw)
        bullet = _BULLET_ITEM_RE.match(raw)
        if numbered is not None and not raw[:1].isspace():
            steps.append(
                TestStep(
                    number=int(numbered.group("number")),
                    text=numbered.group("text").strip(),
                    line=number,
                )
            )
        elif bullet is not None and not bullet.group("indent"):
            steps.append(
                TestStep(number=len(steps) + 1, text=bullet.group("text").strip(), line=number)
            )
        elif steps:
            previous = steps[-1]
            steps[-1] = TestStep(
                number=previous.number,
                text=f"{previous.text} {_LIST_PREFIX_RE.sub('', raw).strip()}".strip(),
                line=previous.line,
            )
    return tuple(steps)


def _ui_state(section: _Section | None) -> tuple[UiStateEntry, ...]:
    if section is None:
        return ()
    entries: list[UiStateEntry] = []
    for number, raw in section.content():
        text = _LIST_PREFIX_RE.sub("", raw).strip()
        if not _strip_placeholders(text).strip():
            continue
        marker = None
        for glyph, candidate in MARKER_GLYPHS.items():
            if text.startswith(glyph):
                marker = candidate
                text = text[len(glyph) :].lstrip(_VARIATION_SELECTOR).strip()
                break
        element, description = _element_and_description(text)
        entries.append(
            UiStateEntry(marker=marker, element=element, description=description, line=number)
        )
    return tuple(entries)


def _element_and_description(text: str) -> tuple[str, str]:
    bold = _BOLD_ELEMENT_RE.match(text)
    if bold is not None:
        return bold.group("element").strip(), bold.group("description").strip()
    if ":" in text:
        element, description = text.split(":", 1)
        return element.strip(), description.strip()
    return text, ""


def _free_text(section: _Section | None) -> str:
    if section is None:
        return ""
    return "\n".join(text.strip() for _, text in section.content())


def _strip_placeholders(text: str) -> str:
    while True:
        start = text.find(PLACEHOLDER_OPEN)
        if start < 0:
            return text
        close = text.find(PLACEHOLDER_CLOSE, start)
        if close < 0:
            return text[:start]
        text = text[:start] + text[close + 1 :]
