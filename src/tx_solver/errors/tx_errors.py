"""TxSolverError — base exception class and the error kinds raised by the engine."""

from __future__ import annotations


class TxSolverError(Exception):
    """Base error for all script solving and transaction building operations.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code string.
        input_index: Index of the input being processed, when known.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "tx-solver-error",
        input_index: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.input_index = input_index

    def __str__(self) -> str:
        if self.input_index is None:
            return self.message
        return f"input {self.input_index}: {self.message}"


class AlignmentError(TxSolverError):
    """Inputs, previous outputs and solvers do not line up."""

    def __init__(self, message: str, *, input_index: int | None = None) -> None:
        super().__init__(message, code="alignment-error", input_index=input_index)


class TemplateMismatchError(TxSolverError):
    """A solver was asked to satisfy a script it does not match."""

    def __init__(self, message: str, *, input_index: int | None = None) -> None:
        super().__init__(message, code="template-mismatch", input_index=input_index)


class InsufficientSignaturesError(TxSolverError):
    """A multisig solver holds the wrong number of keys for its script."""

    def __init__(self, message: str, *, input_index: int | None = None) -> None:
        super().__init__(message, code="insufficient-signatures", input_index=input_index)


class UnsupportedScriptError(TxSolverError):
    """A non-standard or unrecognised script cannot be satisfied."""

    def __init__(self, message: str, *, input_index: int | None = None) -> None:
        super().__init__(message, code="unsupported-script", input_index=input_index)


class SerializationError(TxSolverError, ValueError):
    """Malformed bytes on decode (truncation, bad length prefix, bad marker)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="serialization-error")
