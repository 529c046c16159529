from __future__ import annotations

import os
from pathlib import Path

from qalint.analysis.discovery import (
    IO_ERROR_RULE,
    discover,
    feature_from_path,
    merge_inventories,
    mode_from_filename,
)
from qalint.analysis.model import DiagnosticKind, FeatureInventory, Mode


def test_mode_from_filename() -> None:
    assert mode_from_filename("login.mock.md") is Mode.MOCK
    assert mode_from_filename("login.FULL.md") is Mode.FULL
    assert mode_from_filename("login.md") is None
    assert mode_from_filename(".mock.md") is None


def test_feature_from_path() -> None:
    assert feature_from_path("qa/acl/admin-access.mock.md") == "acl"
    assert feature_from_path("qa/acl/full/admin-access.full.md") == "acl"
    assert feature_from_path("docs/auth/login.mock.md") == "auth"
    assert feature_from_path("docs/auth/mock/login.mock.md") == "auth"


def test_discover_finds_documents_and_screenshots(qa_tree) -> None:
    qa_tree.document("qa/acl/admin-access.mock.md")
    qa_tree.document("qa/acl/full/admin-access.full.md")
    qa_tree.document("qa/acl/README.md", "# notes\n")
    qa_tree.document("docs/unrelated.mock.md", "# not part of the layout\n")
    qa_tree.screenshot("qa/acl/screenshots/ACL-001_03-member-list.png")

    result = discover(qa_tree.root)

    assert result.errors == ()
    assert [item.display_path for item in result.documents] == [
        "qa/acl/admin-access.mock.md",
        "qa/acl/full/admin-access.full.md",
    ]
    assert [item.mode_directory for item in result.documents] == [None, Mode.FULL]
    assert {item.feature for item in result.documents} == {"acl"}
    (inventory,) = result.features
    assert inventory.feature == "acl"
    assert inventory.screenshots == ("qa/acl/screenshots/ACL-001_03-member-list.png",)
    assert inventory.complete is True


def test_discover_below_feature_marks_inventory_incomplete(qa_tree) -> None:
    qa_tree.document("qa/acl/full/admin-access.full.md")
    result = discover(qa_tree.root / "qa" / "acl" / "full")
    (inventory,) = result.features
    assert inventory.complete is False
    assert result.documents[0].display_path == "qa/acl/full/admin-access.full.md"


def test_discover_single_file_outside_layout(tmp_path: Path) -> None:
    path = tmp_path / "login.mock.md"
    path.write_text("# Test Case: X-001 - y\n", encoding="utf-8")
    result = discover(path)
    (descriptor,) = result.documents
    assert descriptor.path == path
    assert descriptor.feature == tmp_path.name
    assert result.features == ()


def test_discover_missing_root_is_an_io_error(tmp_path: Path) -> None:
    result = discover(tmp_path / "missing")
    (error,) = result.errors
    assert error.rule_id == IO_ERROR_RULE
    assert error.kind is DiagnosticKind.IO
    assert result.documents == ()


def test_discover_honours_exclude_patterns(qa_tree) -> None:
    qa_tree.document("qa/acl/admin-access.mock.md")
    qa_tree.document("qa/acl/draft-login.mock.md")
    result = discover(qa_tree.root, exclude=("draft-*",))
    assert [item.display_path for item in result.documents] == ["qa/acl/admin-access.mock.md"]


def test_merge_inventories_unions_screenshots(tmp_path: Path) -> None:
    merged = merge_inventories(
        [
            FeatureInventory("acl", tmp_path, ("qa/acl/screenshots/a.png",), complete=False),
            FeatureInventory("acl", tmp_path, ("qa/acl/screenshots/b.png",), complete=True),
        ]
    )
    (inventory,) = merged
    assert inventory.screenshots == ("qa/acl/screenshots/a.png", "qa/acl/screenshots/b.png")
    assert inventory.complete is True


def _deny(name: str, real):
    def _listing(path, *args, **kwargs):
        if Path(path).name == name:
            raise PermissionError(13, "Permission denied", str(path))
        return real(path, *args, **kwargs)

    return _listing


def test_unreadable_screenshot_directory_is_an_io_error(qa_tree, monkeypatch) -> None:
    qa_tree.document("qa/acl/admin-access.mock.md")
    qa_tree.screenshot("qa/acl/screenshots/ACL-001_03-member-list.png")
    qa_tree.document("qa/auth/login.mock.md", feature="auth", test_id="AUTH-001")
    monkeypatch.setattr(Path, "iterdir", _deny("screenshots", Path.iterdir))

    result = discover(qa_tree.root)

    assert [(item.file, item.rule_id, item.kind) for item in result.errors] == [
        ("qa/acl/screenshots", IO_ERROR_RULE, DiagnosticKind.IO),
    ]
    assert [item.display_path for item in result.documents] == [
        "qa/acl/admin-access.mock.md",
        "qa/auth/login.mock.md",
    ]
    acl = next(item for item in result.features if item.feature == "acl")
    assert acl.screenshots == ()
    assert acl.complete is False
    assert acl.readable is False


def test_unreadable_subdirectory_is_reported_and_walk_continues(qa_tree, monkeypatch) -> None:
    qa_tree.document("qa/acl/admin-access.mock.md")
    qa_tree.document("qa/acl/full/admin-access.full.md")
    qa_tree.screenshot("qa/acl/screenshots/ACL-001_03-member-list.png")
    monkeypatch.setattr(os, "scandir", _deny("full", os.scandir))

    result = discover(qa_tree.root)

    (error,) = result.errors
    assert error.file == "qa/acl/full"
    assert error.rule_id == IO_ERROR_RULE
    assert "cannot read directory" in error.message
    assert [item.display_path for item in result.documents] == ["qa/acl/admin-access.mock.md"]
    (inventory,) = result.features
    assert inventory.complete is False
    assert inventory.readable is True
    assert inventory.screenshots == ("qa/acl/screenshots/ACL-001_03-member-list.png",)
