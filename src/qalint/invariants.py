"""Invariant markers for qalint internals."""

from __future__ import annotations

from typing import NoReturn, TypeVar

from qalint.exceptions import NeverThrown

T = TypeVar("T")


def never(reason: str = "", **env: object) -> NoReturn:
    """Mark a code path as unreachable.

    Reaching it is a programming error in qalint itself, never a problem with
    the documents under validation. The env payload is attached to the
    exception for debugging only.
    """
    raise NeverThrown(reason or "never() marker reached", env=env)


def require_not_none(value: T | None, *, reason: str = "", **env: object) -> T:
    if value is None:
        never(reason or "required value is None", **env)
    return value
