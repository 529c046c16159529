"""Deterministic ordering helpers.

Every ordering carries a `source` label so an invariant failure names the
call site that produced it.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, TypeVar

from qalint.invariants import never


T = TypeVar("T")


def sort_once(
    values: Iterable[T],
    *,
    source: str,
    key: Callable[[T], Any] | None = None,
    reverse: bool = False,
) -> list[T]:
    items = list(values)
    try:
        return sorted(items, key=key, reverse=reverse)
    except TypeError as exc:
        never("incomparable sort keys", source=source, error=str(exc))


def enforce_ordered(
    values: Iterable[T],
    *,
    source: str,
    key: Callable[[T], Any] | None = None,
    reverse: bool = False,
) -> list[T]:
    """Return `values` unchanged, failing via `never()` if they are not ordered."""
    items = list(values)
    violation = _first_order_violation(items, key=key, reverse=reverse)
    if violation is None:
        return items
    previous_index, current_index, previous_key, current_key, kind = violation
    never(
        "caller-ordered invariant violated",
        source=source,
        previous_index=previous_index,
        current_index=current_index,
        previous_key=repr(previous_key),
        current_key=repr(current_key),
        violation_kind=kind,
    )


def _first_order_violation(
    values: list[T],
    *,
    key: Callable[[T], Any] | None = None,
    reverse: bool = False,
) -> tuple[int, int, Any, Any, str] | None:
    previous_marker: Any | None = None
    for index, value in enumerate(values):
        marker = key(value) if key is not None else value
        if index > 0:
            try:
                out_of_order = (
                    bool(previous_marker < marker)
                    if reverse
                    else bool(previous_marker > marker)
                )
            except TypeError:
                return (index - 1, index, previous_marker, marker, "incomparable")
            if out_of_order:
                return (index - 1, index, previous_marker, marker, "out_of_order")
        previous_marker = marker
    return None
