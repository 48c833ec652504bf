"""Transaction model and wire serialisation — legacy and segwit encodings.

Provides pure-Python Bitcoin transaction serialization and deserialization:
- TxInput / TxOutput value objects
- MutableTransaction, the builder handed to ``spend``
- Transaction, the frozen result with a cached serialization
- VarInt and witness stack encoding/decoding
- Raw hex format support
"""

from __future__ import annotations

import math
import struct
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from functools import cached_property
from io import SEEK_CUR, BytesIO
from typing import TYPE_CHECKING, Self

from tx_solver.btc.locktime import Locktime, Sequence
from tx_solver.btc.script import Script, parse_script
from tx_solver.config.settings import AppConfig
from tx_solver.errors.tx_errors import SerializationError
from tx_solver.utils.crypto import sha256d

if TYPE_CHECKING:
    from tx_solver.btc.solvers import Solver

# ---------------------------------------------------------------------------
# VarInt encoding / decoding
# ---------------------------------------------------------------------------


def encode_varint(n: int) -> bytes:
    """Encode an integer as a Bitcoin-style variable-length integer."""
    if n < 0xFD:
        return struct.pack("<B", n)
    if n <= 0xFFFF:
        return b"\xfd" + struct.pack("<H", n)
    if n <= 0xFFFFFFFF:
        return b"\xfe" + struct.pack("<I", n)
    return b"\xff" + struct.pack("<Q", n)


def _read_exact(stream: BytesIO, size: int, what: str) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        msg = f"Unexpected end of stream reading {what}"
        raise SerializationError(msg)
    return data


def read_varint(stream: BytesIO) -> int:
    """Read a Bitcoin-style variable-length integer from a byte stream."""
    n = _read_exact(stream, 1, "varint")[0]
    if n < 0xFD:
        return n
    if n == 0xFD:
        return struct.unpack("<H", _read_exact(stream, 2, "varint"))[0]
    if n == 0xFE:
        return struct.unpack("<I", _read_exact(stream, 4, "varint"))[0]
    return struct.unpack("<Q", _read_exact(stream, 8, "varint"))[0]


# ---------------------------------------------------------------------------
# Witness stacks
# ---------------------------------------------------------------------------

SEGWIT_MARKER = b"\x00"
SEGWIT_FLAG = b"\x01"


def serialize_witness(items: Iterable[bytes]) -> bytes:
    """Serialize a witness stack: item count, then length-prefixed items."""
    items = tuple(items)
    result = encode_varint(len(items))
    for item in items:
        result += encode_varint(len(item)) + item
    return result


def read_witness(stream: BytesIO) -> tuple[bytes, ...]:
    """Read one input's witness stack."""
    count = read_varint(stream)
    return tuple(_read_exact(stream, read_varint(stream), "witness item") for _ in range(count))


# ---------------------------------------------------------------------------
# TxInput
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TxInput:
    """A transaction input.

    Attributes:
        prev_tx_id: 32-byte hash of the previous transaction (internal byte order).
        prev_tx_out_index: Index of the output in the previous transaction.
        script_sig: Unlocking script (scriptSig).
        sequence: Sequence number (default final, 0xFFFFFFFF).
        witness: Witness stack items (empty for legacy spends).
    """

    prev_tx_id: bytes
    prev_tx_out_index: int
    script_sig: bytes = b""
    sequence: Sequence = field(default_factory=Sequence.max)
    witness: tuple[bytes, ...] = ()

    def __post_init__(self) -> None:
        if len(self.prev_tx_id) != 32:
            msg = f"prev_tx_id must be 32 bytes, got {len(self.prev_tx_id)}"
            raise ValueError(msg)

    @classmethod
    def from_txid(
        cls,
        txid: str,
        prev_tx_out_index: int,
        *,
        sequence: Sequence | None = None,
    ) -> Self:
        """Build an unsigned input from a display-order (reversed) txid."""
        return cls(
            prev_tx_id=bytes.fromhex(txid)[::-1],
            prev_tx_out_index=prev_tx_out_index,
            sequence=sequence if sequence is not None else Sequence.max(),
        )

    @property
    def prev_tx_id_hex(self) -> str:
        """Previous transaction ID in display (reversed) hex."""
        return self.prev_tx_id[::-1].hex()

    def outpoint(self) -> bytes:
        """The serialized (txid, index) reference."""
        return self.prev_tx_id + struct.pack("<I", self.prev_tx_out_index)

    def serialize(self) -> bytes:
        """Serialize the input to bytes (the witness is serialized separately)."""
        result = self.outpoint()
        result += encode_varint(len(self.script_sig))
        result += self.script_sig
        result += struct.pack("<I", self.sequence.n)
        return result

    @classmethod
    def deserialize(cls, stream: BytesIO) -> TxInput:
        """Deserialize a transaction input from a byte stream."""
        prev_tx_id = _read_exact(stream, 32, "prev_tx_id")
        prev_tx_out_index = struct.unpack("<I", _read_exact(stream, 4, "output index"))[0]
        script_sig = _read_exact(stream, read_varint(stream), "script_sig")
        sequence = struct.unpack("<I", _read_exact(stream, 4, "sequence"))[0]
        return cls(
            prev_tx_id=prev_tx_id,
            prev_tx_out_index=prev_tx_out_index,
            script_sig=script_sig,
            sequence=Sequence(sequence),
        )


# ---------------------------------------------------------------------------
# TxOutput
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TxOutput:
    """A transaction output.

    Attributes:
        value: Output value in satoshis.
        script_pubkey: Locking script.
    """

    value: int
    script_pubkey: Script

    def serialize(self) -> bytes:
        """Serialize the output to bytes."""
        result = struct.pack("<q", self.value)
        result += encode_varint(len(self.script_pubkey.raw))
        result += self.script_pubkey.raw
        return result

    @classmethod
    def deserialize(cls, stream: BytesIO) -> TxOutput:
        """Deserialize a transaction output from a byte stream."""
        value = struct.unpack("<q", _read_exact(stream, 8, "output value"))[0]
        script_pubkey = _read_exact(stream, read_varint(stream), "script_pubkey")
        return cls(value=value, script_pubkey=parse_script(script_pubkey))


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def serialize_transaction(
    version: int,
    inputs: Iterable[TxInput],
    outputs: Iterable[TxOutput],
    locktime: Locktime,
    *,
    segwit: bool,
) -> bytes:
    """Serialize transaction fields in the legacy or segwit wire layout.

    With ``segwit=True`` the marker/flag follow the version and one witness
    stack per input (empty ones included) precedes the locktime.
    """
    inputs = tuple(inputs)
    outputs = tuple(outputs)
    result = struct.pack("<i", version)
    if segwit:
        result += SEGWIT_MARKER + SEGWIT_FLAG
    result += encode_varint(len(inputs))
    for inp in inputs:
        result += inp.serialize()
    result += encode_varint(len(outputs))
    for out in outputs:
        result += out.serialize()
    if segwit:
        for inp in inputs:
            result += serialize_witness(inp.witness)
    result += struct.pack("<I", locktime.n)
    return result


# ---------------------------------------------------------------------------
# MutableTransaction
# ---------------------------------------------------------------------------


@dataclass
class MutableTransaction:
    """A transaction under construction.

    Inputs reference previous outputs and carry no unlocking data yet;
    :meth:`spend` produces the signed, frozen :class:`Transaction`.

    Attributes:
        version: Transaction version (default 2, needed for relative timelocks).
        inputs: List of transaction inputs.
        outputs: List of transaction outputs.
        locktime: Transaction locktime.
        segwit: Whether the signed transaction uses the witness serialization.
    """

    version: int = 2
    inputs: list[TxInput] = field(default_factory=list)
    outputs: list[TxOutput] = field(default_factory=list)
    locktime: Locktime = field(default_factory=Locktime)
    segwit: bool = False

    @classmethod
    def create(
        cls,
        inputs: Iterable[TxInput],
        outputs: Iterable[TxOutput],
        *,
        segwit: bool = False,
        config: AppConfig | None = None,
    ) -> Self:
        """Build a transaction using the configured default version and locktime."""
        tx_config = (config or AppConfig()).transaction
        return cls(
            version=tx_config.version,
            inputs=list(inputs),
            outputs=list(outputs),
            locktime=Locktime(tx_config.locktime),
            segwit=segwit,
        )

    def add_input(
        self,
        prev_tx_id: bytes,
        prev_tx_out_index: int,
        sequence: Sequence | None = None,
    ) -> TxInput:
        """Add an unsigned input to the transaction.

        Returns:
            The newly created :class:`TxInput`.
        """
        inp = TxInput(
            prev_tx_id=prev_tx_id,
            prev_tx_out_index=prev_tx_out_index,
            sequence=sequence if sequence is not None else Sequence.max(),
        )
        self.inputs.append(inp)
        return inp

    def add_output(self, value: int, script_pubkey: Script) -> TxOutput:
        """Add an output to the transaction.

        Returns:
            The newly created :class:`TxOutput`.
        """
        out = TxOutput(value=value, script_pubkey=script_pubkey)
        self.outputs.append(out)
        return out

    def serialize(self) -> bytes:
        """Serialize the unsigned skeleton (legacy layout)."""
        return serialize_transaction(
            self.version, self.inputs, self.outputs, self.locktime, segwit=False
        )

    def to_hex(self) -> str:
        return self.serialize().hex()

    def txid(self) -> str:
        """Transaction ID of the unsigned skeleton (display byte order)."""
        return sha256d(self.serialize())[::-1].hex()

    def spend(
        self,
        previous_outputs: Iterable[TxOutput],
        solvers: Iterable[Solver],
        *,
        config: AppConfig | None = None,
    ) -> Transaction:
        """Sign every input and return the finalized transaction.

        See :func:`tx_solver.btc.spend.spend`.
        """
        from tx_solver.btc.spend import spend

        return spend(self, list(previous_outputs), list(solvers), config=config)


# ---------------------------------------------------------------------------
# Transaction
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Transaction:
    """A finalized Bitcoin transaction.

    The serialization is computed on first use and cached; building a
    different transaction goes through :meth:`to_mutable`.

    Attributes:
        version: Transaction version.
        inputs: Inputs with their unlocking data.
        outputs: Transaction outputs.
        locktime: Transaction locktime.
        segwit: Whether the witness serialization is used.
    """

    version: int
    inputs: tuple[TxInput, ...]
    outputs: tuple[TxOutput, ...]
    locktime: Locktime = field(default_factory=Locktime)
    segwit: bool = False

    def __post_init__(self) -> None:
        if not self.segwit and any(inp.witness for inp in self.inputs):
            msg = "witness data on a transaction not flagged as segwit"
            raise ValueError(msg)

    @cached_property
    def raw(self) -> bytes:
        return serialize_transaction(
            self.version, self.inputs, self.outputs, self.locktime, segwit=self.segwit
        )

    @cached_property
    def _stripped(self) -> bytes:
        if not self.segwit:
            return self.raw
        return serialize_transaction(
            self.version, self.inputs, self.outputs, self.locktime, segwit=False
        )

    def serialize(self) -> bytes:
        """Serialize the transaction to raw bytes."""
        return self.raw

    def to_hex(self) -> str:
        """Serialize to hex string."""
        return self.raw.hex()

    def txid(self) -> str:
        """Compute the transaction ID (double-SHA256 of the non-witness form).

        Returns:
            The 64-character hex txid string (display byte order).
        """
        return self.txid_bytes()[::-1].hex()

    def txid_bytes(self) -> bytes:
        """Compute the transaction ID as 32 bytes (internal byte order)."""
        return sha256d(self._stripped)

    def wtxid(self) -> str:
        """Witness transaction ID (equal to the txid for legacy transactions)."""
        return sha256d(self.raw)[::-1].hex()

    @property
    def size(self) -> int:
        """Transaction size in bytes."""
        return len(self.raw)

    @property
    def weight(self) -> int:
        """BIP141 weight: stripped size * 3 + total size."""
        return len(self._stripped) * 3 + len(self.raw)

    @property
    def vsize(self) -> int:
        return math.ceil(self.weight / 4)

    def to_mutable(self) -> MutableTransaction:
        """Copy into a builder, dropping all unlocking data."""
        return MutableTransaction(
            version=self.version,
            inputs=[replace(inp, script_sig=b"", witness=()) for inp in self.inputs],
            outputs=list(self.outputs),
            locktime=self.locktime,
            segwit=self.segwit,
        )

    @classmethod
    def deserialize(cls, stream: BytesIO) -> Transaction:
        """Deserialize a transaction (legacy or segwit) from a byte stream."""
        version = struct.unpack("<i", _read_exact(stream, 4, "version"))[0]
        segwit = False
        if _read_exact(stream, 1, "input count") == SEGWIT_MARKER:
            flag = _read_exact(stream, 1, "segwit flag")
            if flag != SEGWIT_FLAG:
                msg = f"Unsupported segwit flag: {flag.hex()}"
                raise SerializationError(msg)
            segwit = True
        else:
            stream.seek(-1, SEEK_CUR)
        n_inputs = read_varint(stream)
        inputs = [TxInput.deserialize(stream) for _ in range(n_inputs)]
        n_outputs = read_varint(stream)
        outputs = [TxOutput.deserialize(stream) for _ in range(n_outputs)]
        if segwit:
            inputs = [replace(inp, witness=read_witness(stream)) for inp in inputs]
        locktime = struct.unpack("<I", _read_exact(stream, 4, "locktime"))[0]
        return cls(
            version=version,
            inputs=tuple(inputs),
            outputs=tuple(outputs),
            locktime=Locktime(locktime),
            segwit=segwit,
        )

    @classmethod
    def from_hex(cls, hex_str: str) -> Transaction:
        """Deserialize a transaction from a hex string."""
        try:
            raw = bytes.fromhex(hex_str)
        except ValueError as exc:
            msg = "Transaction hex is not valid hexadecimal"
            raise SerializationError(msg) from exc
        return cls.from_bytes(raw)

    @classmethod
    def from_bytes(cls, data: bytes) -> Transaction:
        """Deserialize a transaction from raw bytes.

        Raises:
            SerializationError: On truncated input or trailing bytes.
        """
        stream = BytesIO(data)
        tx = cls.deserialize(stream)
        if stream.read(1):
            msg = "Trailing bytes after transaction"
            raise SerializationError(msg)
        return tx
