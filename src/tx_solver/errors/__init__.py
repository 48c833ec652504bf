"""Error hierarchy for the transaction solving engine."""

from tx_solver.errors.tx_errors import (
    AlignmentError,
    InsufficientSignaturesError,
    SerializationError,
    TemplateMismatchError,
    TxSolverError,
    UnsupportedScriptError,
)

__all__ = [
    "AlignmentError",
    "InsufficientSignaturesError",
    "SerializationError",
    "TemplateMismatchError",
    "TxSolverError",
    "UnsupportedScriptError",
]
