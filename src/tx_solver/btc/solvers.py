"""Solvers — the unlocking side of each recognised script template.

A solver knows how to produce the unlocking data for one template. Leaf
solvers hold the keys (``P2pkSolver``, ``P2pkhSolver``, ``MultisigSolver``,
``P2wpkhV0Solver``); composite solvers wrap an inner solver and describe how
its output is embedded (``P2shSolver``, ``P2wshV0Solver``, ``IfElseSolver``
and the two timelock solvers).

Every solver offers:
- ``matches(script)``: whether it can satisfy *script*
- ``check(script)``: the same test, raising the precise error kind
- ``satisfy(script, context)``: the :class:`Solution` for one input
- ``solves_segwit()``: whether the solution needs the witness serialization

Typical usage::

    solver = P2shSolver(redeem_script, MultisigSolver([key_a, key_b]))
    signed = builder.spend([prev_out], [solver])
"""

from __future__ import annotations

import abc
import enum
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import ClassVar

from tx_solver.btc.keys import Signer
from tx_solver.btc.locktime import SEQUENCE_FINAL
from tx_solver.btc.script import (
    MAX_SCRIPT_ELEMENT_SIZE,
    IfElseScript,
    MultisigScript,
    P2pkhScript,
    P2pkScript,
    P2shScript,
    P2wpkhV0Script,
    P2wshV0Script,
    RelativeTimelockScript,
    Script,
    ScriptType,
    TimelockScript,
    parse_script,
)
from tx_solver.btc.sighash import Sighash, TransactionLike, legacy_digest, witness_v0_digest
from tx_solver.errors.tx_errors import (
    InsufficientSignaturesError,
    TemplateMismatchError,
    TxSolverError,
    UnsupportedScriptError,
)
from tx_solver.utils.crypto import hash160, sha256

logger = logging.getLogger(__name__)

# Selector pushed for each branch of an if/else script
_IF_SELECTOR = b"\x01"
_ELSE_SELECTOR = b""


# ---------------------------------------------------------------------------
# Solution / signing context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Solution:
    """Unlocking data for one input.

    Attributes:
        script_sig: Stack items for the scriptSig, bottom first. Encoded as
            minimal pushes when the transaction is assembled.
        witness: The witness stack (empty for legacy spends).
    """

    script_sig: tuple[bytes, ...] = ()
    witness: tuple[bytes, ...] = ()


@dataclass(frozen=True)
class SigningContext:
    """Everything a solver needs to sign one input.

    Attributes:
        tx: The unsigned transaction skeleton.
        input_index: Index of the input being solved.
        amount: Value of the output being spent (signed by BIP143 only).
        script_code: Script committed to by the digest.
        witness_v0: Use the BIP143 digest instead of the legacy one.
        default_sighash: Sighash for solvers built without one.
    """

    tx: TransactionLike
    input_index: int
    amount: int
    script_code: Script
    witness_v0: bool = False
    default_sighash: Sighash = field(default_factory=Sighash)

    def descend(self, script_code: Script, *, witness_v0: bool | None = None) -> SigningContext:
        """Context for an inner script, optionally switching the digest algorithm."""
        if witness_v0 is None:
            witness_v0 = self.witness_v0
        return replace(self, script_code=script_code, witness_v0=witness_v0)

    def digest(self, sighash: Sighash) -> bytes:
        if self.witness_v0:
            return witness_v0_digest(
                self.tx, self.input_index, self.script_code, self.amount, sighash
            )
        return legacy_digest(self.tx, self.input_index, self.script_code, sighash)

    def sign(self, key: Signer, sighash: Sighash | None = None) -> bytes:
        """DER signature with the sighash flag byte appended."""
        sighash = sighash or self.default_sighash
        return key.sign(self.digest(sighash)) + bytes([sighash.value])


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------


class Solver(abc.ABC):
    """Base class for all solvers.

    Subclasses set ``script_class`` to the template they solve and
    implement :meth:`_check_template` and :meth:`satisfy`.
    """

    script_class: ClassVar[type[Script]] = Script
    # Solvers for witness programs may only sit at the top level or under P2SH
    witness_program: ClassVar[bool] = False

    def matches(self, script: Script) -> bool:
        try:
            self.check(script)
        except TxSolverError:
            return False
        return True

    def check(self, script: Script) -> None:
        """Verify this solver can satisfy *script*.

        Raises:
            UnsupportedScriptError: *script* is not a solvable template.
            TemplateMismatchError: *script* is a different template, or its
                keys/hashes do not bind to this solver.
            InsufficientSignaturesError: Wrong number of multisig keys.
        """
        if script.script_type in (ScriptType.UNKNOWN, ScriptType.NULL_DATA):
            msg = f"{script.script_type} script cannot be solved"
            raise UnsupportedScriptError(msg)
        if not isinstance(script, self.script_class):
            msg = (
                f"{type(self).__name__} solves {self.script_class.script_type} scripts, "
                f"got {script.script_type}"
            )
            raise TemplateMismatchError(msg)
        self._check_template(script)

    @abc.abstractmethod
    def _check_template(self, script: Script) -> None: ...

    @abc.abstractmethod
    def satisfy(self, script: Script, context: SigningContext) -> Solution:
        """Produce the unlocking data for *script*.

        ``check`` must have passed for *script*.
        """

    def solves_segwit(self) -> bool:
        return False


def _reject_witness_program(inner: Solver, outer: str) -> None:
    if inner.witness_program:
        msg = f"{type(inner).__name__} cannot be nested inside {outer}"
        raise TemplateMismatchError(msg)


# ---------------------------------------------------------------------------
# Key solvers
# ---------------------------------------------------------------------------


class P2pkSolver(Solver):
    """Signs a ``<pubkey> OP_CHECKSIG`` script."""

    script_class = P2pkScript

    def __init__(self, key: Signer, sighash: Sighash | None = None) -> None:
        self.key = key
        self.sighash = sighash

    def _check_template(self, script: Script) -> None:
        assert isinstance(script, P2pkScript)
        if script.pubkey != self.key.public_key():
            msg = "key does not match the P2PK public key"
            raise TemplateMismatchError(msg)

    def satisfy(self, script: Script, context: SigningContext) -> Solution:
        return Solution(script_sig=(context.sign(self.key, self.sighash),))


class P2pkhSolver(Solver):
    """Signs a pay-to-pubkey-hash script: ``<sig> <pubkey>``."""

    script_class = P2pkhScript

    def __init__(self, key: Signer, sighash: Sighash | None = None) -> None:
        self.key = key
        self.sighash = sighash

    def _check_template(self, script: Script) -> None:
        assert isinstance(script, P2pkhScript)
        if script.pubkey_hash != hash160(self.key.public_key()):
            msg = "key does not hash to the P2PKH public key hash"
            raise TemplateMismatchError(msg)

    def satisfy(self, script: Script, context: SigningContext) -> Solution:
        sig = context.sign(self.key, self.sighash)
        return Solution(script_sig=(sig, self.key.public_key()))


class MultisigSolver(Solver):
    """Signs an m-of-n ``OP_CHECKMULTISIG`` script with exactly m keys.

    Keys may be given in any order; signatures are emitted in the order
    their public keys appear in the script, after the leading dummy
    element consumed by ``OP_CHECKMULTISIG``.
    """

    script_class = MultisigScript

    def __init__(self, keys: Iterable[Signer], sighash: Sighash | None = None) -> None:
        self.keys = tuple(keys)
        self.sighash = sighash

    def _check_template(self, script: Script) -> None:
        assert isinstance(script, MultisigScript)
        pubkeys = [key.public_key() for key in self.keys]
        for pubkey in pubkeys:
            if pubkey not in script.pubkeys:
                msg = f"key {pubkey.hex()} is not part of the multisig script"
                raise TemplateMismatchError(msg)
        if len(set(pubkeys)) != len(pubkeys):
            msg = "duplicate keys given to multisig solver"
            raise InsufficientSignaturesError(msg)
        if len(pubkeys) != script.m:
            msg = f"multisig script needs {script.m} signatures, solver holds {len(pubkeys)} keys"
            raise InsufficientSignaturesError(msg)

    def satisfy(self, script: Script, context: SigningContext) -> Solution:
        assert isinstance(script, MultisigScript)
        ordered = sorted(self.keys, key=lambda k: script.pubkeys.index(k.public_key()))
        sigs = tuple(context.sign(key, self.sighash) for key in ordered)
        return Solution(script_sig=(b"", *sigs))


class P2wpkhV0Solver(Solver):
    """Signs a version 0 witness key-hash program.

    The scriptSig stays empty; the witness is ``<sig> <pubkey>`` signed
    with the BIP143 digest over the equivalent P2PKH script.
    """

    script_class = P2wpkhV0Script
    witness_program = True

    def __init__(self, key: Signer, sighash: Sighash | None = None) -> None:
        self.key = key
        self.sighash = sighash

    def _check_template(self, script: Script) -> None:
        assert isinstance(script, P2wpkhV0Script)
        if script.pubkey_hash != hash160(self.key.public_key()):
            msg = "key does not hash to the P2WPKH program"
            raise TemplateMismatchError(msg)

    def satisfy(self, script: Script, context: SigningContext) -> Solution:
        assert isinstance(script, P2wpkhV0Script)
        inner = context.descend(script.script_code(), witness_v0=True)
        sig = inner.sign(self.key, self.sighash)
        return Solution(witness=(sig, self.key.public_key()))

    def solves_segwit(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Script-hash solvers
# ---------------------------------------------------------------------------


class P2shSolver(Solver):
    """Spends a P2SH output through *redeem_script*, solved by *inner*.

    Legacy redeem scripts get the inner items followed by the redeem
    script push. A witness program redeem script (P2SH-P2WPKH,
    P2SH-P2WSH) moves the inner solution to the witness and leaves only
    the redeem push in the scriptSig.
    """

    script_class = P2shScript

    def __init__(self, redeem_script: Script, inner: Solver) -> None:
        self.redeem_script = parse_script(redeem_script.raw)
        self.inner = inner

    def _check_template(self, script: Script) -> None:
        assert isinstance(script, P2shScript)
        if isinstance(self.inner, P2shSolver) or isinstance(self.redeem_script, P2shScript):
            msg = "nested P2SH is not spendable"
            raise UnsupportedScriptError(msg)
        if len(self.redeem_script) > MAX_SCRIPT_ELEMENT_SIZE:
            msg = (
                f"redeem script is {len(self.redeem_script)} bytes, "
                f"limit is {MAX_SCRIPT_ELEMENT_SIZE}"
            )
            raise UnsupportedScriptError(msg)
        if script.script_hash != hash160(self.redeem_script.raw):
            msg = "redeem script does not hash to the P2SH script hash"
            raise TemplateMismatchError(msg)
        self.inner.check(self.redeem_script)

    def satisfy(self, script: Script, context: SigningContext) -> Solution:
        redeem = self.redeem_script
        if redeem.is_witness_program():
            solution = self.inner.satisfy(redeem, context)
            return Solution(script_sig=(redeem.raw,), witness=solution.witness)
        solution = self.inner.satisfy(redeem, context.descend(redeem))
        return Solution(script_sig=(*solution.script_sig, redeem.raw), witness=solution.witness)

    def solves_segwit(self) -> bool:
        return self.inner.solves_segwit()


class P2wshV0Solver(Solver):
    """Spends a version 0 witness script-hash program.

    The inner solution and the witness script go in the witness; the
    digest is BIP143 with the witness script as scriptCode.
    """

    script_class = P2wshV0Script
    witness_program = True

    def __init__(self, witness_script: Script, inner: Solver) -> None:
        self.witness_script = parse_script(witness_script.raw)
        self.inner = inner

    def _check_template(self, script: Script) -> None:
        assert isinstance(script, P2wshV0Script)
        _reject_witness_program(self.inner, "a P2WSH witness script")
        if script.script_hash != sha256(self.witness_script.raw):
            msg = "witness script does not hash to the P2WSH program"
            raise TemplateMismatchError(msg)
        self.inner.check(self.witness_script)

    def satisfy(self, script: Script, context: SigningContext) -> Solution:
        ws = self.witness_script
        solution = self.inner.satisfy(ws, context.descend(ws, witness_v0=True))
        return Solution(witness=(*solution.script_sig, *solution.witness, ws.raw))

    def solves_segwit(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Wrapping solvers
# ---------------------------------------------------------------------------


class Branch(enum.IntEnum):
    """Branch of an if/else script, by position."""

    IF = 0
    ELSE = 1


class IfElseSolver(Solver):
    """Takes one branch of ``OP_IF <a> OP_ELSE <b> OP_ENDIF``.

    The inner items are followed by the branch selector: ``OP_1`` for the
    ``OP_IF`` script, ``OP_0`` for the ``OP_ELSE`` script.
    """

    script_class = IfElseScript

    def __init__(self, branch: Branch | int, inner: Solver) -> None:
        self.branch = Branch(branch)
        self.inner = inner

    def _check_template(self, script: Script) -> None:
        assert isinstance(script, IfElseScript)
        _reject_witness_program(self.inner, "an if/else branch")
        self.inner.check(script.branches[self.branch])

    def satisfy(self, script: Script, context: SigningContext) -> Solution:
        assert isinstance(script, IfElseScript)
        solution = self.inner.satisfy(script.branches[self.branch], context)
        selector = _IF_SELECTOR if self.branch == Branch.IF else _ELSE_SELECTOR
        return Solution(script_sig=(*solution.script_sig, selector), witness=solution.witness)

    def solves_segwit(self) -> bool:
        return self.inner.solves_segwit()


class RelativeTimelockSolver(Solver):
    """Solves the script behind ``<sequence> OP_CHECKSEQUENCEVERIFY OP_DROP``.

    The input sequence and transaction version must already allow the
    spend; a mismatch is logged, not rejected.
    """

    script_class = RelativeTimelockScript

    def __init__(self, inner: Solver) -> None:
        self.inner = inner

    def _check_template(self, script: Script) -> None:
        assert isinstance(script, RelativeTimelockScript)
        _reject_witness_program(self.inner, "a relative timelock")
        self.inner.check(script.locked_script)

    def satisfy(self, script: Script, context: SigningContext) -> Solution:
        assert isinstance(script, RelativeTimelockScript)
        sequence = context.tx.inputs[context.input_index].sequence
        if context.tx.version < 2 or not sequence.satisfies(script.sequence):
            logger.warning(
                "Input %d: sequence %#x (tx version %d) does not satisfy "
                "relative timelock %#x",
                context.input_index,
                sequence.n,
                context.tx.version,
                script.sequence.n,
            )
        return self.inner.satisfy(script.locked_script, context)

    def solves_segwit(self) -> bool:
        return self.inner.solves_segwit()


class TimelockSolver(Solver):
    """Solves the script behind ``<locktime> OP_CHECKLOCKTIMEVERIFY OP_DROP``.

    The transaction locktime and a non-final input sequence must already
    allow the spend; a mismatch is logged, not rejected.
    """

    script_class = TimelockScript

    def __init__(self, inner: Solver) -> None:
        self.inner = inner

    def _check_template(self, script: Script) -> None:
        assert isinstance(script, TimelockScript)
        _reject_witness_program(self.inner, "an absolute timelock")
        self.inner.check(script.locked_script)

    def satisfy(self, script: Script, context: SigningContext) -> Solution:
        assert isinstance(script, TimelockScript)
        locktime = context.tx.locktime
        sequence = context.tx.inputs[context.input_index].sequence
        if sequence.n == SEQUENCE_FINAL or not locktime.satisfies(script.locktime):
            logger.warning(
                "Input %d: locktime %d (sequence %#x) does not satisfy timelock %d",
                context.input_index,
                locktime.n,
                sequence.n,
                script.locktime.n,
            )
        return self.inner.satisfy(script.locked_script, context)

    def solves_segwit(self) -> bool:
        return self.inner.solves_segwit()
