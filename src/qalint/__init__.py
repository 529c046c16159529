"""qalint package root."""

from qalint.exceptions import NeverRaise, NeverThrown
from qalint.invariants import never

__all__ = ["__version__", "NeverRaise", "NeverThrown", "never"]

__version__ = "0.1.0"
