"""Signature hashing — sighash flags and the legacy / BIP143 digest algorithms.

``legacy_digest`` is used for scripts executed outside a witness program,
``witness_v0_digest`` for everything reached through a version 0 witness
program. Both accept a :class:`MutableTransaction` skeleton or a finalized
:class:`Transaction`; unlocking data already present on the inputs is
ignored.
"""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, replace
from typing import Protocol, Self

from tx_solver.btc.locktime import Locktime, Sequence
from tx_solver.btc.script import Script
from tx_solver.btc.transaction import TxInput, TxOutput, encode_varint, serialize_transaction
from tx_solver.utils.crypto import sha256d

SIGHASH_ANYONECANPAY = 0x80

# Returned by the legacy algorithm for SIGHASH_SINGLE without a matching output
SIGHASH_SINGLE_BUG_DIGEST = (1).to_bytes(32, "little")

_EMPTY_HASH = b"\x00" * 32


class SighashType(enum.IntEnum):
    """Base signature hash modes."""

    ALL = 0x01
    NONE = 0x02
    SINGLE = 0x03


@dataclass(frozen=True)
class Sighash:
    """A signature hash mode: base type plus the anyone-can-pay modifier.

    Attributes:
        sighash_type: Which outputs are committed.
        anyone_can_pay: If True only the signed input is committed.
    """

    sighash_type: SighashType = SighashType.ALL
    anyone_can_pay: bool = False

    @property
    def value(self) -> int:
        """The one-byte flag appended to signatures."""
        return self.sighash_type | (SIGHASH_ANYONECANPAY if self.anyone_can_pay else 0)

    @classmethod
    def from_int(cls, value: int) -> Self:
        try:
            sighash_type = SighashType(value & 0x1F)
        except ValueError:
            msg = f"Unknown sighash flag: {value:#x}"
            raise ValueError(msg) from None
        return cls(sighash_type, bool(value & SIGHASH_ANYONECANPAY))

    @classmethod
    def from_name(cls, name: str, *, anyone_can_pay: bool = False) -> Self:
        """Build from ``"ALL"``, ``"NONE"`` or ``"SINGLE"``."""
        try:
            sighash_type = SighashType[name.upper()]
        except KeyError:
            msg = f"Unknown sighash type: {name!r}"
            raise ValueError(msg) from None
        return cls(sighash_type, anyone_can_pay)

    def __str__(self) -> str:
        suffix = "|ANYONECANPAY" if self.anyone_can_pay else ""
        return f"{self.sighash_type.name}{suffix}"


ALL_SIGHASHES: tuple[Sighash, ...] = tuple(
    Sighash(sighash_type, acp) for sighash_type in SighashType for acp in (False, True)
)


class TransactionLike(Protocol):
    version: int
    locktime: Locktime

    @property
    def inputs(self) -> list[TxInput] | tuple[TxInput, ...]: ...

    @property
    def outputs(self) -> list[TxOutput] | tuple[TxOutput, ...]: ...


def _check_index(tx: TransactionLike, input_index: int) -> None:
    if not 0 <= input_index < len(tx.inputs):
        msg = f"input index {input_index} out of range for {len(tx.inputs)} inputs"
        raise IndexError(msg)


def _zero_other_sequences(inputs: list[TxInput], input_index: int) -> list[TxInput]:
    zero = Sequence(0)
    return [
        inp if i == input_index else replace(inp, sequence=zero) for i, inp in enumerate(inputs)
    ]


# ---------------------------------------------------------------------------
# Legacy algorithm
# ---------------------------------------------------------------------------


def legacy_digest(
    tx: TransactionLike,
    input_index: int,
    subscript: Script,
    sighash: Sighash,
) -> bytes:
    """Original (pre-segwit) signature hash.

    Args:
        tx: The transaction being signed.
        input_index: Index of the input the signature is for.
        subscript: The script being executed (scriptPubKey, redeem script
            or the enclosing script of a wrapped template).
        sighash: Signature hash mode.

    Returns:
        The 32-byte digest to sign.
    """
    _check_index(tx, input_index)
    inputs = [
        replace(
            inp,
            script_sig=subscript.raw if i == input_index else b"",
            witness=(),
        )
        for i, inp in enumerate(tx.inputs)
    ]
    outputs = list(tx.outputs)

    if sighash.sighash_type == SighashType.NONE:
        outputs = []
        inputs = _zero_other_sequences(inputs, input_index)
    elif sighash.sighash_type == SighashType.SINGLE:
        if input_index >= len(outputs):
            return SIGHASH_SINGLE_BUG_DIGEST
        blank = TxOutput(value=-1, script_pubkey=Script(b""))
        outputs = [blank] * input_index + [outputs[input_index]]
        inputs = _zero_other_sequences(inputs, input_index)

    if sighash.anyone_can_pay:
        inputs = [inputs[input_index]]

    preimage = serialize_transaction(tx.version, inputs, outputs, tx.locktime, segwit=False)
    preimage += struct.pack("<I", sighash.value)
    return sha256d(preimage)


# ---------------------------------------------------------------------------
# Witness v0 algorithm (BIP143)
# ---------------------------------------------------------------------------


def witness_v0_preimage(
    tx: TransactionLike,
    input_index: int,
    script_code: Script,
    amount: int,
    sighash: Sighash,
) -> bytes:
    """Build the BIP143 preimage for *input_index*."""
    _check_index(tx, input_index)
    base = sighash.sighash_type
    inp = tx.inputs[input_index]

    hash_prevouts = _EMPTY_HASH
    if not sighash.anyone_can_pay:
        hash_prevouts = sha256d(b"".join(i.outpoint() for i in tx.inputs))

    hash_sequence = _EMPTY_HASH
    if not sighash.anyone_can_pay and base == SighashType.ALL:
        hash_sequence = sha256d(b"".join(struct.pack("<I", i.sequence.n) for i in tx.inputs))

    hash_outputs = _EMPTY_HASH
    if base == SighashType.ALL:
        hash_outputs = sha256d(b"".join(out.serialize() for out in tx.outputs))
    elif base == SighashType.SINGLE and input_index < len(tx.outputs):
        hash_outputs = sha256d(tx.outputs[input_index].serialize())

    preimage = struct.pack("<i", tx.version)
    preimage += hash_prevouts
    preimage += hash_sequence
    preimage += inp.outpoint()
    preimage += encode_varint(len(script_code.raw)) + script_code.raw
    preimage += struct.pack("<q", amount)
    preimage += struct.pack("<I", inp.sequence.n)
    preimage += hash_outputs
    preimage += struct.pack("<I", tx.locktime.n)
    preimage += struct.pack("<I", sighash.value)
    return preimage


def witness_v0_digest(
    tx: TransactionLike,
    input_index: int,
    script_code: Script,
    amount: int,
    sighash: Sighash,
) -> bytes:
    """BIP143 signature hash for a version 0 witness program input.

    Args:
        tx: The transaction being signed.
        input_index: Index of the input the signature is for.
        script_code: P2PKH script for P2WPKH, the witness script for P2WSH.
        amount: Value in satoshis of the output being spent.
        sighash: Signature hash mode.
    """
    return sha256d(witness_v0_preimage(tx, input_index, script_code, amount, sighash))
