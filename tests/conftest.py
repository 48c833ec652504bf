"""Shared test fixtures for the tx-solver test suite."""

from __future__ import annotations

import os

import pytest

from tx_solver.btc.keys import PrivateKey
from tx_solver.btc.script import P2pkhScript
from tx_solver.btc.transaction import TxOutput
from tx_solver.config.settings import AppConfig


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer ``TXSOLVER_*`` variables out of the tests."""
    for name in list(os.environ):
        if name.upper().startswith("TXSOLVER_"):
            monkeypatch.delenv(name)


@pytest.fixture
def app_config() -> AppConfig:
    """Provide an AppConfig with the built-in defaults."""
    return AppConfig()


@pytest.fixture
def keys() -> list[PrivateKey]:
    """Twenty deterministic private keys."""
    return [PrivateKey.from_int(0x1000 + i) for i in range(20)]


@pytest.fixture
def key(keys: list[PrivateKey]) -> PrivateKey:
    return keys[0]


@pytest.fixture
def pay_to(keys: list[PrivateKey]) -> list[TxOutput]:
    """Two P2PKH outputs used as the new outputs of test spends."""
    return [
        TxOutput(value=40_000, script_pubkey=P2pkhScript.from_pubkey(keys[18].public_key())),
        TxOutput(value=9_000, script_pubkey=P2pkhScript.from_pubkey(keys[19].public_key())),
    ]
