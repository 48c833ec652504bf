"""Tests for the configuration system."""

from __future__ import annotations

import textwrap
from typing import TYPE_CHECKING

import pytest
from pydantic import ValidationError

from tx_solver.btc.sighash import Sighash, SighashType
from tx_solver.config.settings import (
    AppConfig,
    SighashName,
    SigningConfig,
    TransactionConfig,
    _load_yaml,
)

if TYPE_CHECKING:
    from pathlib import Path

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


class TestDefaults:
    """Verify all default values are correct."""

    def test_signing_defaults(self) -> None:
        cfg = SigningConfig()
        assert cfg.sighash == SighashName.ALL
        assert cfg.anyone_can_pay is False
        assert cfg.default_sighash() == Sighash()

    def test_transaction_defaults(self) -> None:
        cfg = TransactionConfig()
        assert cfg.version == 2
        assert cfg.locktime == 0

    def test_app_defaults(self, app_config: AppConfig) -> None:
        assert app_config.config_path == ""
        assert app_config.signing == SigningConfig()
        assert app_config.transaction == TransactionConfig()


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    """Fields accept only valid values."""

    @pytest.mark.parametrize("name", ["ALL", "NONE", "SINGLE"])
    def test_sighash_names(self, name: str) -> None:
        cfg = SigningConfig(sighash=name)  # type: ignore[arg-type]
        assert cfg.default_sighash().sighash_type == SighashType[name]

    def test_sighash_invalid(self) -> None:
        with pytest.raises(ValidationError):
            SigningConfig(sighash="DEFAULT")  # type: ignore[arg-type]

    def test_anyone_can_pay(self) -> None:
        cfg = SigningConfig(sighash=SighashName.SINGLE, anyone_can_pay=True)
        assert cfg.default_sighash().value == 0x83

    @pytest.mark.parametrize("version", [0, -1, 0x80000000])
    def test_version_out_of_range(self, version: int) -> None:
        with pytest.raises(ValidationError):
            TransactionConfig(version=version)

    @pytest.mark.parametrize("locktime", [-1, 0x100000000])
    def test_locktime_out_of_range(self, locktime: int) -> None:
        with pytest.raises(ValidationError):
            TransactionConfig(locktime=locktime)

    def test_locktime_upper_bound(self) -> None:
        assert TransactionConfig(locktime=0xFFFFFFFF).locktime == 0xFFFFFFFF


# ---------------------------------------------------------------------------
# Environment variable override
# ---------------------------------------------------------------------------


class TestEnvOverride:
    """Verify environment variables override defaults."""

    def test_nested_signing_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TXSOLVER_SIGNING__SIGHASH", "NONE")
        monkeypatch.setenv("TXSOLVER_SIGNING__ANYONE_CAN_PAY", "true")
        cfg = AppConfig()
        assert cfg.signing.sighash == SighashName.NONE
        assert cfg.signing.default_sighash() == Sighash(SighashType.NONE, anyone_can_pay=True)

    def test_nested_transaction_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TXSOLVER_TRANSACTION__VERSION", "1")
        monkeypatch.setenv("TXSOLVER_TRANSACTION__LOCKTIME", "500000")
        cfg = AppConfig()
        assert cfg.transaction.version == 1
        assert cfg.transaction.locktime == 500_000

    def test_sub_config_reads_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TXSOLVER_SIGNING__SIGHASH", "SINGLE")
        assert SigningConfig().sighash == SighashName.SINGLE

    def test_invalid_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TXSOLVER_TRANSACTION__VERSION", "0")
        with pytest.raises(ValidationError):
            AppConfig()


# ---------------------------------------------------------------------------
# YAML loading
# ---------------------------------------------------------------------------


class TestYAML:
    """YAML config file loading."""

    def test_load_yaml_nonexistent(self, tmp_path: Path) -> None:
        assert _load_yaml(tmp_path / "nonexistent.yaml") == {}

    def test_load_yaml_empty_file(self, tmp_path: Path) -> None:
        f = tmp_path / "empty.yaml"
        f.write_text("")
        assert _load_yaml(f) == {}

    def test_load_yaml_non_dict(self, tmp_path: Path) -> None:
        """YAML file containing a list should return empty dict."""
        f = tmp_path / "list.yaml"
        f.write_text("- ALL\n- NONE\n")
        assert _load_yaml(f) == {}

    def test_load_yaml_valid(self, tmp_path: Path) -> None:
        f = tmp_path / "cfg.yaml"
        f.write_text(
            textwrap.dedent("""\
                signing:
                  sighash: SINGLE
                transaction:
                  version: 1
            """)
        )
        result = _load_yaml(f)
        assert result["signing"]["sighash"] == "SINGLE"
        assert result["transaction"]["version"] == 1

    def test_from_yaml(self, tmp_path: Path) -> None:
        f = tmp_path / "app.yaml"
        f.write_text(
            textwrap.dedent("""\
                signing:
                  sighash: NONE
                  anyone_can_pay: true
                transaction:
                  locktime: 840000
            """)
        )
        cfg = AppConfig.from_yaml(f)
        assert cfg.config_path == str(f)
        assert cfg.signing.default_sighash().value == 0x82
        assert cfg.transaction.locktime == 840_000
        assert cfg.transaction.version == 2

    def test_config_path_from_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        f = tmp_path / "app.yaml"
        f.write_text("transaction:\n  version: 1\n")
        monkeypatch.setenv("TXSOLVER_CONFIG_PATH", str(f))
        assert AppConfig().transaction.version == 1

    def test_env_overrides_yaml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Env vars have higher priority than YAML values."""
        f = tmp_path / "app.yaml"
        f.write_text(
            textwrap.dedent("""\
                signing:
                  sighash: SINGLE
                  anyone_can_pay: true
            """)
        )
        monkeypatch.setenv("TXSOLVER_SIGNING__SIGHASH", "NONE")
        cfg = AppConfig.from_yaml(f)
        assert cfg.signing.sighash == SighashName.NONE
        assert cfg.signing.anyone_can_pay is True

    def test_invalid_yaml_value(self, tmp_path: Path) -> None:
        f = tmp_path / "app.yaml"
        f.write_text("signing:\n  sighash: EVERYTHING\n")
        with pytest.raises(ValidationError):
            AppConfig.from_yaml(f)


# ---------------------------------------------------------------------------
# Custom construction
# ---------------------------------------------------------------------------


class TestCustomConstruction:
    """Verify constructing with non-default values."""

    def test_explicit_nested_overrides(self) -> None:
        cfg = AppConfig(
            signing=SigningConfig(sighash=SighashName.NONE),
            transaction=TransactionConfig(version=1, locktime=17),
        )
        assert cfg.signing.default_sighash() == Sighash(SighashType.NONE)
        assert cfg.transaction.version == 1
        assert cfg.transaction.locktime == 17

    def test_nested_dicts(self) -> None:
        cfg = AppConfig(signing={"sighash": "SINGLE"})  # type: ignore[arg-type]
        assert cfg.signing.sighash == SighashName.SINGLE
