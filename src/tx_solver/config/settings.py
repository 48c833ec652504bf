"""Library settings loaded from environment variables and config files.

Configuration is loaded from (highest priority first):
1. Environment variables (prefix: ``TXSOLVER_``, nested via ``__``)
2. YAML config file (``TXSOLVER_CONFIG_PATH`` env var or :meth:`AppConfig.from_yaml`)
3. Defaults defined here
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Self

import yaml
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from tx_solver.btc.sighash import Sighash

# ---------------------------------------------------------------------------
# Enums for validated choices
# ---------------------------------------------------------------------------


class SighashName(enum.StrEnum):
    """Base signature hash modes accepted in configuration."""

    ALL = "ALL"
    NONE = "NONE"
    SINGLE = "SINGLE"


# ---------------------------------------------------------------------------
# Sub-config models
# ---------------------------------------------------------------------------


class SigningConfig(BaseSettings):
    """Signature defaults for solvers built without an explicit sighash."""

    model_config = SettingsConfigDict(
        env_prefix="TXSOLVER_SIGNING__",
        case_sensitive=False,
    )

    sighash: SighashName = Field(
        default=SighashName.ALL,
        description="Default base sighash mode: ALL, NONE or SINGLE",
    )
    anyone_can_pay: bool = False

    def default_sighash(self) -> Sighash:
        """The :class:`Sighash` applied when a solver does not name one."""
        from tx_solver.btc.sighash import Sighash

        return Sighash.from_name(self.sighash, anyone_can_pay=self.anyone_can_pay)


class TransactionConfig(BaseSettings):
    """Defaults used by ``MutableTransaction.create``."""

    model_config = SettingsConfigDict(
        env_prefix="TXSOLVER_TRANSACTION__",
        case_sensitive=False,
    )

    version: int = Field(default=2, ge=1, le=0x7FFFFFFF)
    locktime: int = Field(default=0, ge=0, le=0xFFFFFFFF)


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


def _load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file and return its contents as a dict.

    Returns an empty dict if the file doesn't exist or is empty.
    """
    p = Path(path)
    if not p.exists():
        return {}
    data = yaml.safe_load(p.read_text(encoding="utf-8"))
    return data if isinstance(data, dict) else {}


class AppConfig(BaseSettings):
    """Top-level configuration.

    Loads settings from environment variables (``TXSOLVER_`` prefix),
    an optional YAML file, and built-in defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="TXSOLVER_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    config_path: str = ""

    signing: SigningConfig = Field(default_factory=SigningConfig)
    transaction: TransactionConfig = Field(default_factory=TransactionConfig)

    @model_validator(mode="before")
    @classmethod
    def _merge_yaml(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Merge YAML config file contents under the env var overrides."""
        config_path = values.get("config_path", "")
        if not config_path:
            return values
        # YAML values serve as defaults; env vars (already in *values*) win.
        for key, val in _load_yaml(config_path).items():
            if key not in values or values[key] is None:
                values[key] = val
            elif isinstance(val, dict) and isinstance(values.get(key), dict):
                values[key] = {**val, **values[key]}
        return values

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """Construct ``AppConfig`` loading defaults from a YAML file.

        Environment variables still override YAML values.
        """
        return cls(config_path=str(path))
