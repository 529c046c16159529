from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
for entry in (ROOT, ROOT / "src"):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))


import pytest

from tests.document_helpers import document_text, write_document, write_screenshot
from tests.env_helpers import restore_env as _restore_env
from tests.env_helpers import set_env as _set_env
from tests.env_helpers import without_qalint_env


@pytest.fixture(autouse=True)
def _isolated_qalint_env():
    with without_qalint_env():
        yield


@pytest.fixture
def env_scope():
    return _set_env


@pytest.fixture
def restore_env():
    return _restore_env


@pytest.fixture
def qa_tree(tmp_path: Path):
    """Write documents and screenshots below a throwaway repository root."""

    class _Tree:
        root = tmp_path

        def document(self, relative: str, text: str | None = None, **fields) -> Path:
            return write_document(tmp_path, relative, text if text is not None else document_text(**fields))

        def screenshot(self, relative: str) -> Path:
            return write_screenshot(tmp_path, relative)

    return _Tree()
