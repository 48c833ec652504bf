"""Tests for signature hashing — btc/sighash.py."""

from __future__ import annotations

from dataclasses import replace

import pytest

from tx_solver.btc.keys import verify_signature
from tx_solver.btc.locktime import Locktime, Sequence
from tx_solver.btc.script import P2pkhScript, P2pkScript, Script
from tx_solver.btc.sighash import (
    ALL_SIGHASHES,
    SIGHASH_SINGLE_BUG_DIGEST,
    Sighash,
    SighashType,
    legacy_digest,
    witness_v0_digest,
    witness_v0_preimage,
)
from tx_solver.btc.transaction import Transaction, TxInput, TxOutput

# ---------------------------------------------------------------------------
# BIP143 vectors
# ---------------------------------------------------------------------------

_NATIVE_P2WPKH_TX = (
    "0100000002fff7f7881a8099afa6940d42d1e7f6362bec38171ea3edf433541db4e4ad969f00000000"
    "00eeffffffef51e1b804cc89d182d279655c3aa89e815b1b309fe287d9b2b55d57b90ec68a01000000"
    "00ffffffff02202cb206000000001976a9148280b37df378db99f66f85c95a783a76ac7a6d5988ac90"
    "93510d000000001976a9143bde42dbee7e4dbe6a21b2d50ce2f0167faa815988ac11000000"
)
_NATIVE_P2WPKH_PREIMAGE = (
    "0100000096b827c8483d4e9b96712b6713a7b68d6e8003a781feba36c31143470b4efd3752b0a642ee"
    "a2fb7ae638c36f6252b6750293dbe574a806984b8e4d8548339a3bef51e1b804cc89d182d279655c3a"
    "a89e815b1b309fe287d9b2b55d57b90ec68a010000001976a9141d0f172a0ecb48aee1be1f2687d296"
    "3ae33f71a188ac0046c32300000000ffffffff863ef3e1a92afbfdb97f31ad0fc7683ee943e9abcf25"
    "01590ff8f6551f47e5e51100000001000000"
)
_NATIVE_P2WPKH_SIGHASH = "c37af31116d1b27caf68aae9e3ac82f1477929014d5b917657d0eb49478cb670"
# Input 0 of the same example is a P2PK spend signed with the legacy digest
_NATIVE_P2PK_PUBKEY = "03c9f4836b9a4f77fc0d81f7bcb01b7f1b35916864b9476c241ce9fc198bd25432"
_NATIVE_P2PK_SIG = (
    "30450221008b9d1dc26ba6a9cb62127b02742fa9d754cd3bebf337f7a55d114c8e5cdd30be"
    "022040529b194ba3f9281a99f2b1c0a19c0489bc22ede944ccf4ecbab4cc618ef3ed"
)

_P2SH_P2WPKH_TX = (
    "0100000001db6b1b20aa0fd7b23880be2ecbd4a98130974cf4748fb66092ac4d3ceb1a547701000000"
    "00feffffff02b8b4eb0b000000001976a914a457b684d7f0d539a46a45bbc043f35b59d0d96388ac00"
    "08af2f000000001976a914fd270b1ee6abcaea97fea7ad0402e8bd8ad6d77c88ac92040000"
)
_P2SH_P2WPKH_SIGHASH = "64f3b0f4dd2bb3aa1ce8566d220cc74dda9df97d8490cc81d89d735c92e59fb6"


def _tx(n_inputs: int = 3, n_outputs: int = 2) -> Transaction:
    return Transaction(
        version=2,
        inputs=tuple(
            TxInput(prev_tx_id=bytes([i + 1]) * 32, prev_tx_out_index=i, sequence=Sequence(i))
            for i in range(n_inputs)
        ),
        outputs=tuple(
            TxOutput(value=1000 * (i + 1), script_pubkey=P2pkhScript(bytes([i]) * 20))
            for i in range(n_outputs)
        ),
        locktime=Locktime(0),
    )


_SUBSCRIPT = P2pkhScript(b"\x42" * 20)


class TestSighashFlags:
    """Sighash flag values and parsing."""

    @pytest.mark.parametrize(
        ("sighash", "value"),
        [
            (Sighash(), 0x01),
            (Sighash(SighashType.NONE), 0x02),
            (Sighash(SighashType.SINGLE), 0x03),
            (Sighash(SighashType.ALL, anyone_can_pay=True), 0x81),
            (Sighash(SighashType.NONE, anyone_can_pay=True), 0x82),
            (Sighash(SighashType.SINGLE, anyone_can_pay=True), 0x83),
        ],
    )
    def test_value(self, sighash: Sighash, value: int) -> None:
        assert sighash.value == value
        assert Sighash.from_int(value) == sighash

    def test_all_combinations(self) -> None:
        assert len(ALL_SIGHASHES) == 6
        assert len({s.value for s in ALL_SIGHASHES}) == 6

    def test_from_int_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unknown sighash flag"):
            Sighash.from_int(0x04)

    def test_from_name(self) -> None:
        assert Sighash.from_name("single", anyone_can_pay=True).value == 0x83
        with pytest.raises(ValueError, match="Unknown sighash type"):
            Sighash.from_name("SOME")

    def test_str(self) -> None:
        assert str(Sighash(SighashType.NONE, anyone_can_pay=True)) == "NONE|ANYONECANPAY"
        assert str(Sighash()) == "ALL"


class TestWitnessV0Digest:
    """BIP143 digests against the published test vectors."""

    def test_native_p2wpkh_preimage(self) -> None:
        tx = Transaction.from_hex(_NATIVE_P2WPKH_TX)
        script_code = P2pkhScript(bytes.fromhex("1d0f172a0ecb48aee1be1f2687d2963ae33f71a1"))
        preimage = witness_v0_preimage(tx, 1, script_code, 600_000_000, Sighash())
        assert preimage.hex() == _NATIVE_P2WPKH_PREIMAGE

    def test_native_p2wpkh_digest(self) -> None:
        tx = Transaction.from_hex(_NATIVE_P2WPKH_TX)
        script_code = P2pkhScript(bytes.fromhex("1d0f172a0ecb48aee1be1f2687d2963ae33f71a1"))
        digest = witness_v0_digest(tx, 1, script_code, 600_000_000, Sighash())
        assert digest.hex() == _NATIVE_P2WPKH_SIGHASH

    def test_p2sh_p2wpkh_digest(self) -> None:
        tx = Transaction.from_hex(_P2SH_P2WPKH_TX)
        script_code = P2pkhScript(bytes.fromhex("79091972186c449eb1ded22b78e40d009bdf0089"))
        digest = witness_v0_digest(tx, 0, script_code, 1_000_000_000, Sighash())
        assert digest.hex() == _P2SH_P2WPKH_SIGHASH

    def test_amount_is_committed(self) -> None:
        tx = _tx()
        a = witness_v0_digest(tx, 0, _SUBSCRIPT, 1000, Sighash())
        b = witness_v0_digest(tx, 0, _SUBSCRIPT, 1001, Sighash())
        assert a != b

    def test_single_without_output_has_no_bug(self) -> None:
        tx = _tx(n_inputs=3, n_outputs=1)
        digest = witness_v0_digest(tx, 2, _SUBSCRIPT, 1000, Sighash(SighashType.SINGLE))
        assert digest != SIGHASH_SINGLE_BUG_DIGEST

    def test_anyone_can_pay_ignores_other_inputs(self) -> None:
        tx = _tx()
        fewer = replace(tx, inputs=tx.inputs[:1])
        sighash = Sighash(SighashType.ALL, anyone_can_pay=True)
        assert witness_v0_digest(tx, 0, _SUBSCRIPT, 5, sighash) == witness_v0_digest(
            fewer, 0, _SUBSCRIPT, 5, sighash
        )

    def test_bad_index(self) -> None:
        with pytest.raises(IndexError):
            witness_v0_digest(_tx(), 3, _SUBSCRIPT, 5, Sighash())


class TestLegacyDigest:
    """Original signature hash algorithm."""

    def test_published_signature_verifies(self) -> None:
        tx = Transaction.from_hex(_NATIVE_P2WPKH_TX)
        pubkey = bytes.fromhex(_NATIVE_P2PK_PUBKEY)
        digest = legacy_digest(tx, 0, P2pkScript(pubkey), Sighash())
        assert verify_signature(pubkey, digest, bytes.fromhex(_NATIVE_P2PK_SIG))
        other = legacy_digest(tx, 1, P2pkScript(pubkey), Sighash())
        assert not verify_signature(pubkey, other, bytes.fromhex(_NATIVE_P2PK_SIG))

    @pytest.mark.parametrize("sighash", ALL_SIGHASHES, ids=str)
    def test_idempotent(self, sighash: Sighash) -> None:
        tx = _tx()
        assert legacy_digest(tx, 1, _SUBSCRIPT, sighash) == legacy_digest(
            tx, 1, _SUBSCRIPT, sighash
        )

    @pytest.mark.parametrize("sighash", ALL_SIGHASHES, ids=str)
    def test_ignores_existing_script_sigs(self, sighash: Sighash) -> None:
        tx = _tx()
        signed = replace(
            tx, inputs=tuple(replace(inp, script_sig=b"\x51\x52") for inp in tx.inputs)
        )
        assert legacy_digest(tx, 0, _SUBSCRIPT, sighash) == legacy_digest(
            signed, 0, _SUBSCRIPT, sighash
        )

    def test_single_bug(self) -> None:
        tx = _tx(n_inputs=3, n_outputs=2)
        digest = legacy_digest(tx, 2, _SUBSCRIPT, Sighash(SighashType.SINGLE))
        assert digest == SIGHASH_SINGLE_BUG_DIGEST
        assert digest == b"\x01" + b"\x00" * 31

    def test_all_commits_to_outputs(self) -> None:
        tx = _tx()
        changed = replace(tx, outputs=tx.outputs[:1])
        assert legacy_digest(tx, 0, _SUBSCRIPT, Sighash()) != legacy_digest(
            changed, 0, _SUBSCRIPT, Sighash()
        )

    def test_none_ignores_outputs_and_other_sequences(self) -> None:
        tx = _tx()
        changed = replace(
            tx,
            outputs=(),
            inputs=(tx.inputs[0], replace(tx.inputs[1], sequence=Sequence(99)), tx.inputs[2]),
        )
        sighash = Sighash(SighashType.NONE)
        assert legacy_digest(tx, 0, _SUBSCRIPT, sighash) == legacy_digest(
            changed, 0, _SUBSCRIPT, sighash
        )

    def test_none_commits_to_own_sequence(self) -> None:
        tx = _tx()
        bumped = replace(tx.inputs[0], sequence=Sequence(99))
        changed = replace(tx, inputs=(bumped, *tx.inputs[1:]))
        sighash = Sighash(SighashType.NONE)
        assert legacy_digest(tx, 0, _SUBSCRIPT, sighash) != legacy_digest(
            changed, 0, _SUBSCRIPT, sighash
        )

    def test_single_commits_to_matching_output_only(self) -> None:
        tx = _tx(n_outputs=3)
        sighash = Sighash(SighashType.SINGLE)
        new_out = TxOutput(value=1, script_pubkey=Script(b"\x51"))
        later = replace(tx, outputs=(*tx.outputs[:2], new_out))
        same = replace(tx, outputs=(new_out, *tx.outputs[1:]))
        base = legacy_digest(tx, 1, _SUBSCRIPT, sighash)
        assert legacy_digest(later, 1, _SUBSCRIPT, sighash) == base
        assert legacy_digest(same, 1, _SUBSCRIPT, sighash) == base
        changed = replace(tx, outputs=(tx.outputs[0], new_out, tx.outputs[2]))
        assert legacy_digest(changed, 1, _SUBSCRIPT, sighash) != base

    def test_anyone_can_pay_ignores_other_inputs(self) -> None:
        tx = _tx()
        fewer = replace(tx, inputs=tx.inputs[:1])
        sighash = Sighash(SighashType.ALL, anyone_can_pay=True)
        assert legacy_digest(tx, 0, _SUBSCRIPT, sighash) == legacy_digest(
            fewer, 0, _SUBSCRIPT, sighash
        )

    def test_subscript_is_committed(self) -> None:
        tx = _tx()
        other = P2pkhScript(b"\x43" * 20)
        assert legacy_digest(tx, 0, _SUBSCRIPT, Sighash()) != legacy_digest(
            tx, 0, other, Sighash()
        )

    def test_flag_is_committed(self) -> None:
        tx = _tx()
        digests = {legacy_digest(tx, 0, _SUBSCRIPT, s) for s in ALL_SIGHASHES}
        assert len(digests) == 6

    def test_differs_from_witness_digest(self) -> None:
        tx = _tx()
        assert legacy_digest(tx, 0, _SUBSCRIPT, Sighash()) != witness_v0_digest(
            tx, 0, _SUBSCRIPT, 1000, Sighash()
        )

    def test_bad_index(self) -> None:
        with pytest.raises(IndexError):
            legacy_digest(_tx(), -1, _SUBSCRIPT, Sighash())
