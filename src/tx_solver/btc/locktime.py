"""Sequence and locktime value types (BIP65 / BIP68 / BIP112 encodings)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Self

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SEQUENCE_FINAL = 0xFFFFFFFF

# BIP68: bit 31 disables relative locktime, bit 22 selects time units
SEQUENCE_DISABLE_FLAG = 1 << 31
SEQUENCE_TYPE_FLAG = 1 << 22
SEQUENCE_MASK = 0x0000FFFF
SEQUENCE_GRANULARITY = 9  # relative time is counted in 512-second units

# Locktimes below this are block heights, at or above are UNIX timestamps
LOCKTIME_THRESHOLD = 500_000_000

_UINT32_MAX = 0xFFFFFFFF


# ---------------------------------------------------------------------------
# Sequence
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Sequence:
    """An input's nSequence field.

    Attributes:
        n: Raw 32-bit sequence value.
    """

    n: int = SEQUENCE_FINAL

    def __post_init__(self) -> None:
        if not 0 <= self.n <= _UINT32_MAX:
            msg = f"sequence must fit in 32 bits, got {self.n}"
            raise ValueError(msg)

    @classmethod
    def max(cls) -> Self:
        """The final sequence, which disables locktime and RBF for the input."""
        return cls(SEQUENCE_FINAL)

    @classmethod
    def blocks(cls, count: int) -> Self:
        """A relative lock of *count* blocks."""
        if not 0 <= count <= SEQUENCE_MASK:
            msg = f"relative block count out of range: {count}"
            raise ValueError(msg)
        return cls(count)

    @classmethod
    def seconds(cls, seconds: int) -> Self:
        """A relative lock of at least *seconds*, rounded down to 512-second units."""
        units = seconds >> SEQUENCE_GRANULARITY
        if not 0 <= units <= SEQUENCE_MASK:
            msg = f"relative time out of range: {seconds}s"
            raise ValueError(msg)
        return cls(SEQUENCE_TYPE_FLAG | units)

    @property
    def is_relative_timelock(self) -> bool:
        """True when BIP68 relative-lock semantics apply to this value."""
        return not self.n & SEQUENCE_DISABLE_FLAG

    @property
    def is_time_based(self) -> bool:
        return bool(self.n & SEQUENCE_TYPE_FLAG)

    @property
    def value(self) -> int:
        """The masked lock amount (blocks, or 512-second units)."""
        return self.n & SEQUENCE_MASK

    @property
    def signals_rbf(self) -> bool:
        """BIP125 opt-in replace-by-fee signalling."""
        return self.n < SEQUENCE_FINAL - 1

    def satisfies(self, required: Sequence) -> bool:
        """Whether this input sequence passes ``<required> OP_CHECKSEQUENCEVERIFY``."""
        if not required.is_relative_timelock:
            return True
        if not self.is_relative_timelock:
            return False
        if self.is_time_based != required.is_time_based:
            return False
        return self.value >= required.value


# ---------------------------------------------------------------------------
# Locktime
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Locktime:
    """A transaction's nLockTime field.

    Attributes:
        n: Raw 32-bit locktime (block height or UNIX timestamp).
    """

    n: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.n <= _UINT32_MAX:
            msg = f"locktime must fit in 32 bits, got {self.n}"
            raise ValueError(msg)

    @property
    def is_time_based(self) -> bool:
        return self.n >= LOCKTIME_THRESHOLD

    @property
    def is_disabled(self) -> bool:
        return self.n == 0

    def satisfies(self, required: Locktime) -> bool:
        """Whether this locktime passes ``<required> OP_CHECKLOCKTIMEVERIFY``."""
        if self.is_time_based != required.is_time_based:
            return False
        return self.n >= required.n
