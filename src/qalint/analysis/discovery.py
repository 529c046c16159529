"""Filesystem discovery of test-script documents and screenshot inventories.

`discover` only reads the tree. It never opens document bodies, so it can be
embedded (editor integrations, other tools) without side effects; reading
and parsing happen later in the pipeline.
"""

from __future__ import annotations

import fnmatch
import logging
import os
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Sequence

from qalint.analysis.model import (
    Diagnostic,
    DiagnosticKind,
    DiscoveryResult,
    DocumentDescriptor,
    FeatureInventory,
    Mode,
    Severity,
)
from qalint.order_contract import sort_once

logger = logging.getLogger(__name__)

QA_DIR_NAME = "qa"
SCREENSHOT_DIR_NAME = "screenshots"
DOCUMENT_SUFFIX = ".md"
SCREENSHOT_SUFFIX = ".png"
DEFAULT_EXCLUDE: tuple[str, ...] = ("README.md",)
IO_ERROR_RULE = "io-error"

_MODE_SUFFIXES: dict[str, Mode] = {
    f".{mode.value}{DOCUMENT_SUFFIX}": mode for mode in Mode
}


@dataclass(frozen=True)
class _Layout:
    base_dir: Path
    feature: str
    mode_directory: Mode | None
    relative: str


def mode_from_filename(name: str) -> Mode | None:
    lowered = name.lower()
    for suffix, mode in _MODE_SUFFIXES.items():
        if lowered.endswith(suffix) and len(lowered) > len(suffix):
            return mode
    return None


def mode_from_directory(name: str) -> Mode | None:
    for mode in Mode:
        if name == mode.value:
            return mode
    return None


def feature_from_path(path: str | PurePath) -> str:
    """Feature name owning a document path.

    The directory after the last `qa` segment when the path follows the
    `qa/<feature>/...` layout, otherwise the parent directory (skipping a
    `mock`/`full` mode directory).
    """
    parts = PurePath(path).parts
    layout = _qa_layout_parts(parts)
    if layout is not None:
        return layout[1]
    parents = list(parts[:-1])
    if parents and mode_from_directory(parents[-1]) is not None:
        parents.pop()
    return parents[-1] if parents else ""


def io_error(file: str, message: str) -> Diagnostic:
    return Diagnostic(
        severity=Severity.ERROR,
        rule_id=IO_ERROR_RULE,
        file=file,
        line=None,
        message=message,
        kind=DiagnosticKind.IO,
    )


def discover(root: Path, *, exclude: Sequence[str] = DEFAULT_EXCLUDE) -> DiscoveryResult:
    root_display = root.as_posix()
    if not root.exists():
        return DiscoveryResult(errors=(io_error(root_display, "path does not exist"),))
    root_abs = root.absolute()
    errors: list[Diagnostic] = []
    unreadable: list[Path] = []
    if root.is_file():
        candidates = [root]
    else:
        candidates = _walk_files(
            root,
            errors,
            unreadable,
            root_abs=root_abs,
            root_display=root_display,
        )

    documents: list[DocumentDescriptor] = []
    feature_keys: set[tuple[Path, str]] = set()
    for path in candidates:
        if _is_excluded(path.name, exclude):
            logger.debug("excluded %s", path)
            continue
        layout = _layout_for(path)
        suffix = path.suffix.lower()
        if suffix == SCREENSHOT_SUFFIX:
            if layout is not None and _is_screenshot_layout(layout):
                feature_keys.add((layout.base_dir, layout.feature))
            continue
        if suffix != DOCUMENT_SUFFIX:
            continue
        if layout is None:
            if path is root:
                documents.append(
                    DocumentDescriptor(
                        path=path,
                        display_path=root_display,
                        feature=feature_from_path(root_abs),
                        base_dir=root_abs.parent,
                        mode_directory=None,
                    )
                )
            else:
                logger.debug("skipping %s: not under qa/<feature>/", path)
            continue
        if _is_screenshot_layout(layout):
            continue
        documents.append(
            DocumentDescriptor(
                path=path,
                display_path=layout.relative,
                feature=layout.feature,
                base_dir=layout.base_dir,
                mode_directory=layout.mode_directory,
            )
        )
        feature_keys.add((layout.base_dir, layout.feature))

    features = [
        _inventory(
            base_dir,
            feature,
            errors,
            root_abs=root_abs,
            root_display=root_display,
            unreadable=unreadable,
        )
        for base_dir, feature in sort_once(
            feature_keys,
            source="discovery.discover.feature_keys",
            key=lambda item: (item[0].as_posix(), item[1]),
        )
    ]
    logger.info(
        "discovered %d document(s) in %d feature(s) under %s",
        len(documents),
        len(features),
        root_display,
    )
    return DiscoveryResult(
        documents=tuple(
            sort_once(
                documents,
                source="discovery.discover.documents",
                key=lambda item: item.display_path,
            )
        ),
        features=tuple(features),
        errors=tuple(
            sort_once(
                errors,
                source="discovery.discover.errors",
                key=lambda item: item.sort_key,
            )
        ),
    )


def merge_inventories(inventories: Sequence[FeatureInventory]) -> tuple[FeatureInventory, ...]:
    merged: dict[tuple[str, str], FeatureInventory] = {}
    for inventory in inventories:
        key = (inventory.base_dir.as_posix(), inventory.feature)
        existing = merged.get(key)
        if existing is None:
            merged[key] = inventory
            continue
        merged[key] = FeatureInventory(
            feature=inventory.feature,
            base_dir=inventory.base_dir,
            screenshots=tuple(
                sort_once(
                    set(existing.screenshots) | set(inventory.screenshots),
                    source="discovery.merge_inventories.screenshots",
                )
            ),
            complete=existing.complete or inventory.complete,
            readable=existing.readable or inventory.readable,
        )
    return tuple(
        merged[key]
        for key in sort_once(merged, source="discovery.merge_inventories.keys")
    )


def _walk_files(
    root: Path,
    errors: list[Diagnostic],
    unreadable: list[Path],
    *,
    root_abs: Path,
    root_display: str,
) -> list[Path]:
    def _on_error(exc: OSError) -> None:
        target = Path(exc.filename) if exc.filename else root
        unreadable.append(target.absolute())
        errors.append(
            io_error(
                _display_for(target, root_abs=root_abs, root_display=root_display),
                f"cannot read directory: {exc.strerror or exc}",
            )
        )

    files: list[Path] = []
    for directory, dirnames, filenames in os.walk(root, onerror=_on_error):
        dirnames[:] = sort_once(dirnames, source="discovery._walk_files.dirnames")
        files.extend(Path(directory) / filename for filename in filenames)
    return sort_once(
        files,
        source="discovery._walk_files.files",
        key=lambda path: path.as_posix(),
    )


def _inventory(
    base_dir: Path,
    feature: str,
    errors: list[Diagnostic],
    *,
    root_abs: Path,
    root_display: str,
    unreadable: Sequence[Path] = (),
) -> FeatureInventory:
    feature_dir = base_dir / QA_DIR_NAME / feature
    screenshot_dir = feature_dir / SCREENSHOT_DIR_NAME
    complete = feature_dir == root_abs or root_abs in feature_dir.parents
    if any(path == feature_dir or feature_dir in path.parents for path in unreadable):
        complete = False
    readable = screenshot_dir not in unreadable
    screenshots: list[str] = []
    if readable and screenshot_dir.is_dir():
        try:
            screenshots = [
                path.relative_to(base_dir).as_posix()
                for path in screenshot_dir.iterdir()
                if path.is_file() and path.suffix.lower() == SCREENSHOT_SUFFIX
            ]
        except OSError as exc:
            logger.debug("cannot list %s: %s", screenshot_dir, exc)
            complete = False
            readable = False
            screenshots = []
            errors.append(
                io_error(
                    _display_for(screenshot_dir, root_abs=root_abs, root_display=root_display),
                    f"cannot read directory: {exc.strerror or exc}",
                )
            )
    return FeatureInventory(
        feature=feature,
        base_dir=base_dir,
        screenshots=tuple(
            sort_once(screenshots, source="discovery._inventory.screenshots")
        ),
        complete=complete,
        readable=readable,
    )


def _display_for(path: Path, *, root_abs: Path, root_display: str) -> str:
    parts = path.absolute().parts
    for index in range(len(parts) - 1, -1, -1):
        if parts[index] == QA_DIR_NAME:
            return PurePath(*parts[index:]).as_posix()
    try:
        relative = path.absolute().relative_to(root_abs)
    except ValueError:
        return path.as_posix()
    return (PurePath(root_display) / relative).as_posix()


def _layout_for(path: Path) -> _Layout | None:
    parts = path.absolute().parts
    located = _qa_layout_parts(parts)
    if located is None:
        return None
    qa_index, feature, mode_directory = located
    base_dir = Path(*parts[:qa_index])
    return _Layout(
        base_dir=base_dir,
        feature=feature,
        mode_directory=mode_directory,
        relative=PurePath(*parts[qa_index:]).as_posix(),
    )


def _qa_layout_parts(parts: Sequence[str]) -> tuple[int, str, Mode | None] | None:
    for index in range(len(parts) - 1, -1, -1):
        if parts[index] != QA_DIR_NAME:
            continue
        rest = parts[index + 1 :]
        if len(rest) == 2:
            return index, rest[0], None
        if len(rest) == 3:
            mode_directory = mode_from_directory(rest[1])
            if mode_directory is not None or rest[1] == SCREENSHOT_DIR_NAME:
                return index, rest[0], mode_directory
    return None


def _is_screenshot_layout(layout: _Layout) -> bool:
    segments = PurePath(layout.relative).parts
    return len(segments) == 4 and segments[2] == SCREENSHOT_DIR_NAME


def _is_excluded(name: str, patterns: Sequence[str]) -> bool:
    return any(fnmatch.fnmatch(name, pattern) for pattern in patterns)
