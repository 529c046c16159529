from __future__ import annotations

import os

_TRUTHY_VALUES = {"1", "true", "yes", "on"}
_FALSEY_VALUES = {"0", "false", "no", "off"}

WORKERS_ENV = "QALINT_WORKERS"
STRICT_ENV = "QALINT_STRICT"


def env_text(name: str, *, default: str = "") -> str:
    return os.getenv(name, default).strip()


def env_flag(name: str) -> bool | None:
    value = env_text(name).lower()
    if value in _TRUTHY_VALUES:
        return True
    if value in _FALSEY_VALUES:
        return False
    return None


def env_positive_int(name: str) -> int | None:
    raw = env_text(name)
    if not raw:
        return None
    try:
        parsed = int(raw)
    except ValueError:
        return None
    return parsed if parsed > 0 else None
