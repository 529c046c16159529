from __future__ import annotations

import json
from typing import Mapping

from qalint.order_contract import sort_once


def canonicalize_json(value: object) -> object:
    if isinstance(value, Mapping):
        ordered_items = sort_once(
            [(str(key), canonicalize_json(item)) for key, item in value.items()],
            source="json_io.canonicalize_json.mapping_items",
            key=lambda item: item[0],
        )
        return {key: item for key, item in ordered_items}
    if isinstance(value, (list, tuple)):
        return [canonicalize_json(item) for item in value]
    return value


def dump_json_pretty(payload: object, *, canonical: bool = False) -> str:
    """Render JSON with a trailing newline.

    Record key order is preserved unless `canonical` is set; list order is
    always the caller's.
    """
    value = canonicalize_json(payload) if canonical else payload
    return json.dumps(value, indent=2, sort_keys=False, ensure_ascii=False) + "\n"
