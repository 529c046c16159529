"""Exception types raised by qalint itself.

Problems found in the validated documents are never raised: they become
diagnostics. These exceptions cover invocation problems and internal bugs.
"""

from __future__ import annotations


class QalintError(RuntimeError):
    """Base class for qalint failures that are not document diagnostics."""


class InvocationError(QalintError):
    """Bad arguments or unusable configuration; the CLI exits with code 2."""


class RulePolicyError(ValueError):
    """The YAML rule policy is malformed."""


class NeverRaise(QalintError):
    """Sentinel exception for code paths that must be unreachable."""

    def __init__(self, message: str, *, env: dict[str, object] | None = None):
        super().__init__(message)
        self.env = dict(env or {})

    @property
    def env_payload(self) -> dict[str, str]:
        return {str(key): repr(value) for key, value in sorted(self.env.items())}


class NeverThrown(NeverRaise):
    """Raised by the explicit never() marker."""
