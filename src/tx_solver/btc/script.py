"""Script model — opcode parsing, pushes and the recognised locking templates.

Provides construction and classification of locking scripts:
- Minimal data / number pushes and opcode tokenisation
- Template classes (P2PK, P2PKH, multisig, P2SH, P2WPKH v0, P2WSH v0,
  if/else, relative and absolute timelocks, nulldata)
- ``parse_script`` classification with an exact byte round-trip
"""

from __future__ import annotations

import enum
import struct
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import ClassVar, Self

from tx_solver.btc.locktime import Locktime, Sequence
from tx_solver.errors.tx_errors import SerializationError
from tx_solver.utils.crypto import hash160, sha256

# ---------------------------------------------------------------------------
# Opcodes
# ---------------------------------------------------------------------------


class OpCode(int, enum.Enum):
    """Opcodes used by the recognised templates."""

    OP_0 = 0x00
    OP_FALSE = 0x00
    OP_PUSHDATA1 = 0x4C
    OP_PUSHDATA2 = 0x4D
    OP_PUSHDATA4 = 0x4E
    OP_1NEGATE = 0x4F
    OP_1 = 0x51
    OP_TRUE = 0x51
    OP_16 = 0x60
    OP_IF = 0x63
    OP_NOTIF = 0x64
    OP_ELSE = 0x67
    OP_ENDIF = 0x68
    OP_RETURN = 0x6A
    OP_DROP = 0x75
    OP_DUP = 0x76
    OP_EQUAL = 0x87
    OP_EQUALVERIFY = 0x88
    OP_HASH160 = 0xA9
    OP_CODESEPARATOR = 0xAB
    OP_CHECKSIG = 0xAC
    OP_CHECKMULTISIG = 0xAE
    OP_CHECKLOCKTIMEVERIFY = 0xB1
    OP_CHECKSEQUENCEVERIFY = 0xB2


# Consensus limit on a single pushed element (applies to P2SH redeem scripts)
MAX_SCRIPT_ELEMENT_SIZE = 520
MAX_MULTISIG_KEYS = 20


# ---------------------------------------------------------------------------
# Script Type
# ---------------------------------------------------------------------------


class ScriptType(enum.StrEnum):
    """Known script templates."""

    P2PK = "p2pk"
    P2PKH = "p2pkh"
    MULTISIG = "multisig"
    P2SH = "p2sh"
    P2WPKH_V0 = "p2wpkhv0"
    P2WSH_V0 = "p2wshv0"
    IF_ELSE = "ifelse"
    RELATIVE_TIMELOCK = "relativetimelock"
    TIMELOCK = "timelock"
    NULL_DATA = "nulldata"
    UNKNOWN = "nonstandard"


# ---------------------------------------------------------------------------
# Data push helpers
# ---------------------------------------------------------------------------


def push_data(data: bytes) -> bytes:
    """Encode a data push operation using minimal encoding rules.

    Args:
        data: Arbitrary data bytes.

    Returns:
        The opcode(s) + data for a minimal push of *data*.
    """
    length = len(data)
    if length == 0:
        return bytes([OpCode.OP_0])
    if length == 1 and 1 <= data[0] <= 16:
        return bytes([OpCode.OP_1 + data[0] - 1])
    if length == 1 and data[0] == 0x81:
        return bytes([OpCode.OP_1NEGATE])
    if length <= 0x4B:
        return bytes([length]) + data
    if length <= 0xFF:
        return bytes([OpCode.OP_PUSHDATA1, length]) + data
    if length <= 0xFFFF:
        return bytes([OpCode.OP_PUSHDATA2]) + struct.pack("<H", length) + data
    return bytes([OpCode.OP_PUSHDATA4]) + struct.pack("<I", length) + data


def encode_pushes(items: Iterable[bytes]) -> bytes:
    """Serialize a stack as a push-only script (a scriptSig)."""
    return b"".join(push_data(item) for item in items)


def encode_script_num(n: int) -> bytes:
    """Minimal little-endian sign-magnitude encoding of a script number."""
    if n == 0:
        return b""
    negative = n < 0
    magnitude = abs(n)
    result = bytearray()
    while magnitude:
        result.append(magnitude & 0xFF)
        magnitude >>= 8
    if result[-1] & 0x80:
        result.append(0x80 if negative else 0x00)
    elif negative:
        result[-1] |= 0x80
    return bytes(result)


def decode_script_num(data: bytes) -> int:
    """Inverse of :func:`encode_script_num`."""
    if not data:
        return 0
    value = int.from_bytes(data, "little")
    if data[-1] & 0x80:
        return -(value & ~(0x80 << (8 * (len(data) - 1))))
    return value


def push_int(n: int) -> bytes:
    """Push a number, using ``OP_0``/``OP_1NEGATE``/``OP_1..OP_16`` where possible."""
    return push_data(encode_script_num(n))


# ---------------------------------------------------------------------------
# Opcode tokenisation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScriptOp:
    """A single decoded operation.

    Attributes:
        opcode: The opcode byte.
        data: Bytes pushed on the stack (``None`` for non-push opcodes).
        start: Offset of the opcode in the raw script.
        end: Offset just past the operation.
    """

    opcode: int
    data: bytes | None
    start: int
    end: int

    def as_int(self) -> int | None:
        """The number this operation pushes, or ``None``."""
        if self.data is None or len(self.data) > 5:
            return None
        return decode_script_num(self.data)


def decode_ops(raw: bytes) -> list[ScriptOp]:
    """Split a raw script into operations.

    Raises:
        SerializationError: If a push runs past the end of the script.
    """
    ops: list[ScriptOp] = []
    i = 0
    end = len(raw)
    while i < end:
        start = i
        opcode = raw[i]
        i += 1
        size: int | None = None
        if 0 < opcode < OpCode.OP_PUSHDATA1:
            size = opcode
        elif opcode in (OpCode.OP_PUSHDATA1, OpCode.OP_PUSHDATA2, OpCode.OP_PUSHDATA4):
            width = {OpCode.OP_PUSHDATA1: 1, OpCode.OP_PUSHDATA2: 2, OpCode.OP_PUSHDATA4: 4}[
                OpCode(opcode)
            ]
            if i + width > end:
                msg = f"Truncated push length at offset {start}"
                raise SerializationError(msg)
            size = int.from_bytes(raw[i : i + width], "little")
            i += width

        if size is not None:
            if i + size > end:
                msg = f"Push of {size} bytes at offset {start} runs past end of script"
                raise SerializationError(msg)
            data: bytes | None = raw[i : i + size]
            i += size
        elif opcode == OpCode.OP_0:
            data = b""
        elif opcode == OpCode.OP_1NEGATE:
            data = b"\x81"
        elif OpCode.OP_1 <= opcode <= OpCode.OP_16:
            data = bytes([opcode - OpCode.OP_1 + 1])
        else:
            data = None
        ops.append(ScriptOp(opcode=opcode, data=data, start=start, end=i))
    return ops


# ---------------------------------------------------------------------------
# Script base class
# ---------------------------------------------------------------------------


class Script:
    """A locking script. Identity is its raw byte encoding.

    Plain ``Script`` instances are unrecognised (non-standard) scripts; the
    subclasses below are the recognised templates.
    """

    script_type: ClassVar[ScriptType] = ScriptType.UNKNOWN

    def __init__(self, raw: bytes = b"") -> None:
        self._raw = bytes(raw)

    @property
    def raw(self) -> bytes:
        return self._raw

    def __bytes__(self) -> bytes:
        return self._raw

    def __len__(self) -> int:
        return len(self._raw)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Script):
            return NotImplemented
        return self._raw == other._raw

    def __hash__(self) -> int:
        return hash(self._raw)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._raw.hex()!r})"

    def to_hex(self) -> str:
        return self._raw.hex()

    def is_witness_program(self) -> bool:
        """True for templates whose spending data lives in the witness."""
        return False

    def ops(self) -> list[ScriptOp]:
        return decode_ops(self._raw)

    @classmethod
    def from_bytes(cls, raw: bytes) -> Self:
        """Parse *raw* and check it classifies as this template.

        Raises:
            ValueError: If called on a template subclass and *raw* is a
                different template.
        """
        script = parse_script(raw)
        if not isinstance(script, cls):
            msg = f"script is {script.script_type}, not {cls.script_type}"
            raise ValueError(msg)
        return script

    @classmethod
    def from_hex(cls, hex_str: str) -> Self:
        return cls.from_bytes(bytes.fromhex(hex_str))


def _check_pubkey(pubkey: bytes) -> bytes:
    if len(pubkey) == 33 and pubkey[0] in (0x02, 0x03):
        return bytes(pubkey)
    if len(pubkey) == 65 and pubkey[0] == 0x04:
        return bytes(pubkey)
    msg = f"Invalid public key encoding ({len(pubkey)} bytes)"
    raise ValueError(msg)


def _check_hash(value: bytes, size: int, name: str) -> bytes:
    if len(value) != size:
        msg = f"{name} must be {size} bytes, got {len(value)}"
        raise ValueError(msg)
    return bytes(value)


# ---------------------------------------------------------------------------
# Key templates
# ---------------------------------------------------------------------------


class P2pkScript(Script):
    """``<pubkey> OP_CHECKSIG``"""

    script_type = ScriptType.P2PK

    def __init__(self, pubkey: bytes) -> None:
        self.pubkey = _check_pubkey(pubkey)
        super().__init__(push_data(self.pubkey) + bytes([OpCode.OP_CHECKSIG]))


class P2pkhScript(Script):
    """``OP_DUP OP_HASH160 <20 bytes> OP_EQUALVERIFY OP_CHECKSIG``"""

    script_type = ScriptType.P2PKH

    def __init__(self, pubkey_hash: bytes) -> None:
        self.pubkey_hash = _check_hash(pubkey_hash, 20, "pubkey_hash")
        super().__init__(
            bytes([OpCode.OP_DUP, OpCode.OP_HASH160])
            + push_data(self.pubkey_hash)
            + bytes([OpCode.OP_EQUALVERIFY, OpCode.OP_CHECKSIG])
        )

    @classmethod
    def from_pubkey(cls, pubkey: bytes) -> P2pkhScript:
        return cls(hash160(_check_pubkey(pubkey)))


class MultisigScript(Script):
    """``OP_m <pubkey_1> ... <pubkey_n> OP_n OP_CHECKMULTISIG``

    Attributes:
        m: Number of signatures required.
        pubkeys: The n public keys, in script order.
    """

    script_type = ScriptType.MULTISIG

    def __init__(self, m: int, pubkeys: Iterable[bytes]) -> None:
        keys = tuple(_check_pubkey(pk) for pk in pubkeys)
        n = len(keys)
        if not 1 <= m <= n <= MAX_MULTISIG_KEYS:
            msg = f"multisig requires 1 <= m <= n <= {MAX_MULTISIG_KEYS}, got m={m} n={n}"
            raise ValueError(msg)
        self.m = m
        self.pubkeys = keys
        super().__init__(
            push_int(m)
            + b"".join(push_data(pk) for pk in keys)
            + push_int(n)
            + bytes([OpCode.OP_CHECKMULTISIG])
        )

    @property
    def n(self) -> int:
        return len(self.pubkeys)


# ---------------------------------------------------------------------------
# Hash-committing templates
# ---------------------------------------------------------------------------


class P2shScript(Script):
    """``OP_HASH160 <20 bytes> OP_EQUAL``"""

    script_type = ScriptType.P2SH

    def __init__(self, script_hash: bytes) -> None:
        self.script_hash = _check_hash(script_hash, 20, "script_hash")
        super().__init__(
            bytes([OpCode.OP_HASH160]) + push_data(self.script_hash) + bytes([OpCode.OP_EQUAL])
        )

    @classmethod
    def from_script(cls, redeem_script: Script) -> P2shScript:
        """Commit to *redeem_script* by its Hash160."""
        return cls(hash160(redeem_script.raw))


class P2wpkhV0Script(Script):
    """``OP_0 <20 bytes>`` — version 0 witness key hash."""

    script_type = ScriptType.P2WPKH_V0

    def __init__(self, pubkey_hash: bytes) -> None:
        self.pubkey_hash = _check_hash(pubkey_hash, 20, "pubkey_hash")
        super().__init__(bytes([OpCode.OP_0]) + push_data(self.pubkey_hash))

    @classmethod
    def from_pubkey(cls, pubkey: bytes) -> P2wpkhV0Script:
        return cls(hash160(_check_pubkey(pubkey)))

    def is_witness_program(self) -> bool:
        return True

    def script_code(self) -> P2pkhScript:
        """The P2PKH script that BIP143 signs over for this program."""
        return P2pkhScript(self.pubkey_hash)


class P2wshV0Script(Script):
    """``OP_0 <32 bytes>`` — version 0 witness script hash."""

    script_type = ScriptType.P2WSH_V0

    def __init__(self, script_hash: bytes) -> None:
        self.script_hash = _check_hash(script_hash, 32, "script_hash")
        super().__init__(bytes([OpCode.OP_0]) + push_data(self.script_hash))

    @classmethod
    def from_script(cls, witness_script: Script) -> P2wshV0Script:
        """Commit to *witness_script* by its SHA-256."""
        return cls(sha256(witness_script.raw))

    def is_witness_program(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Wrapping templates
# ---------------------------------------------------------------------------


class IfElseScript(Script):
    """``OP_IF <if_script> OP_ELSE <else_script> OP_ENDIF``"""

    script_type = ScriptType.IF_ELSE

    def __init__(self, if_script: Script, else_script: Script) -> None:
        self.if_script = if_script
        self.else_script = else_script
        super().__init__(
            bytes([OpCode.OP_IF])
            + if_script.raw
            + bytes([OpCode.OP_ELSE])
            + else_script.raw
            + bytes([OpCode.OP_ENDIF])
        )

    @property
    def branches(self) -> tuple[Script, Script]:
        """``(if_script, else_script)``, indexed by branch number."""
        return (self.if_script, self.else_script)


class RelativeTimelockScript(Script):
    """``<sequence> OP_CHECKSEQUENCEVERIFY OP_DROP <locked_script>``"""

    script_type = ScriptType.RELATIVE_TIMELOCK

    def __init__(self, locked_script: Script, sequence: Sequence) -> None:
        self.locked_script = locked_script
        self.sequence = sequence
        super().__init__(
            push_int(sequence.n)
            + bytes([OpCode.OP_CHECKSEQUENCEVERIFY, OpCode.OP_DROP])
            + locked_script.raw
        )


class TimelockScript(Script):
    """``<locktime> OP_CHECKLOCKTIMEVERIFY OP_DROP <locked_script>``"""

    script_type = ScriptType.TIMELOCK

    def __init__(self, locked_script: Script, locktime: Locktime) -> None:
        self.locked_script = locked_script
        self.locktime = locktime
        super().__init__(
            push_int(locktime.n)
            + bytes([OpCode.OP_CHECKLOCKTIMEVERIFY, OpCode.OP_DROP])
            + locked_script.raw
        )


class NulldataScript(Script):
    """``OP_RETURN [<data>]`` — provably unspendable data carrier."""

    script_type = ScriptType.NULL_DATA

    def __init__(self, data: bytes = b"") -> None:
        self.data = bytes(data)
        raw = bytes([OpCode.OP_RETURN])
        if self.data:
            raw += push_data(self.data)
        super().__init__(raw)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def _match_p2pk(raw: bytes, ops: list[ScriptOp]) -> Script | None:
    if len(ops) == 2 and ops[1].opcode == OpCode.OP_CHECKSIG and ops[0].data:
        return P2pkScript(ops[0].data)
    return None


def _match_p2pkh(raw: bytes, ops: list[ScriptOp]) -> Script | None:
    if (
        len(ops) == 5
        and ops[0].opcode == OpCode.OP_DUP
        and ops[1].opcode == OpCode.OP_HASH160
        and ops[2].data is not None
        and ops[3].opcode == OpCode.OP_EQUALVERIFY
        and ops[4].opcode == OpCode.OP_CHECKSIG
    ):
        return P2pkhScript(ops[2].data)
    return None


def _match_multisig(raw: bytes, ops: list[ScriptOp]) -> Script | None:
    if len(ops) < 4 or ops[-1].opcode != OpCode.OP_CHECKMULTISIG:
        return None
    m = ops[0].as_int()
    n = ops[-2].as_int()
    pubkeys = [op.data for op in ops[1:-2]]
    if m is None or n is None or n != len(pubkeys) or any(pk is None for pk in pubkeys):
        return None
    return MultisigScript(m, pubkeys)  # type: ignore[arg-type]


def _match_p2sh(raw: bytes, ops: list[ScriptOp]) -> Script | None:
    if (
        len(ops) == 3
        and ops[0].opcode == OpCode.OP_HASH160
        and ops[1].data is not None
        and ops[2].opcode == OpCode.OP_EQUAL
    ):
        return P2shScript(ops[1].data)
    return None


def _match_witness_v0(raw: bytes, ops: list[ScriptOp]) -> Script | None:
    if len(ops) != 2 or ops[0].opcode != OpCode.OP_0 or ops[1].data is None:
        return None
    if len(ops[1].data) == 20:
        return P2wpkhV0Script(ops[1].data)
    if len(ops[1].data) == 32:
        return P2wshV0Script(ops[1].data)
    return None


def _match_timelock(raw: bytes, ops: list[ScriptOp]) -> Script | None:
    if len(ops) < 4 or ops[2].opcode != OpCode.OP_DROP:
        return None
    value = ops[0].as_int()
    if value is None or value < 0:
        return None
    locked = parse_script(raw[ops[2].end :])
    if ops[1].opcode == OpCode.OP_CHECKSEQUENCEVERIFY:
        return RelativeTimelockScript(locked, Sequence(value))
    if ops[1].opcode == OpCode.OP_CHECKLOCKTIMEVERIFY:
        return TimelockScript(locked, Locktime(value))
    return None


def _match_if_else(raw: bytes, ops: list[ScriptOp]) -> Script | None:
    if len(ops) < 3 or ops[0].opcode != OpCode.OP_IF or ops[-1].opcode != OpCode.OP_ENDIF:
        return None
    depth = 0
    for op in ops[1:-1]:
        if op.opcode in (OpCode.OP_IF, OpCode.OP_NOTIF):
            depth += 1
        elif op.opcode == OpCode.OP_ENDIF:
            depth -= 1
            if depth < 0:
                return None
        elif op.opcode == OpCode.OP_ELSE and depth == 0:
            if_script = parse_script(raw[ops[0].end : op.start])
            else_script = parse_script(raw[op.end : ops[-1].start])
            return IfElseScript(if_script, else_script)
    return None


def _match_nulldata(raw: bytes, ops: list[ScriptOp]) -> Script | None:
    if not ops or ops[0].opcode != OpCode.OP_RETURN:
        return None
    if len(ops) == 1:
        return NulldataScript()
    if len(ops) == 2 and ops[1].data:
        return NulldataScript(ops[1].data)
    return None


_MATCHERS: tuple[Callable[[bytes, list[ScriptOp]], Script | None], ...] = (
    _match_p2pkh,
    _match_p2sh,
    _match_witness_v0,
    _match_p2pk,
    _match_multisig,
    _match_nulldata,
    _match_timelock,
    _match_if_else,
)


def parse_script(raw: bytes) -> Script:
    """Classify *raw* into the most specific recognised template.

    A template is returned only when rebuilding it from its parameters gives
    back exactly *raw*; anything else (including scripts with non-minimal
    pushes or truncated data) is returned as a plain unknown :class:`Script`.
    """
    raw = bytes(raw)
    try:
        ops = decode_ops(raw)
    except SerializationError:
        return Script(raw)
    for matcher in _MATCHERS:
        try:
            script = matcher(raw, ops)
        except ValueError:
            # Right shape, invalid parameters (bad key, m > n, ...)
            continue
        if script is not None and script.raw == raw:
            return script
    return Script(raw)


def detect_script_type(script: bytes) -> ScriptType:
    """Detect the template of a raw locking script."""
    return parse_script(script).script_type
