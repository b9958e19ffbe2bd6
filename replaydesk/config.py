from __future__ import annotations

import math
import os
from dataclasses import dataclass, fields
from typing import Any, Mapping

from replaydesk.service.http import DEFAULT_BASE_URL
from replaydesk.types import Mode

ENV_PREFIX = "REPLAYDESK_"

DEFAULT_SYMBOLS = ("BTCUSDT", "ETHUSDT", "BNBUSDT", "SOLUSDT")


@dataclass(frozen=True)
class ClientConfig:
    base_url: str = DEFAULT_BASE_URL
    trading_account_id: int = 1
    training_account_id: int = 2
    symbol: str = "BTCUSDT"
    symbols: tuple[str, ...] = DEFAULT_SYMBOLS
    candle_limit: int = 100
    interval: str = "1m"
    trading_period: float = 10.0
    training_period: float = 0.5
    train_limit: int = 200
    train_offset: int = 500
    snapshot_limit: int = 200
    max_markers: int = 30
    request_timeout: float = 10.0
    log_level: str = "INFO"

    def account_for(self, mode: Mode) -> int:
        return self.trading_account_id if mode is Mode.TRADING else self.training_account_id

    def period_for(self, mode: Mode) -> float:
        return self.trading_period if mode is Mode.TRADING else self.training_period

    @classmethod
    def from_raw(cls, **raw: Any) -> ClientConfig:
        """Validate and construct from raw (possibly string) values.

        Raises ``ValueError`` with a clear message on bad values instead of
        letting ``TypeError`` propagate. Unknown keys are rejected.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ValueError(f"unknown config option(s): {', '.join(unknown)}")

        values: dict[str, Any] = {}
        for name in ("trading_account_id", "training_account_id", "candle_limit",
                     "train_limit", "train_offset", "snapshot_limit", "max_markers"):
            if name in raw:
                values[name] = _int(name, raw[name])
        for name in ("trading_period", "training_period", "request_timeout"):
            if name in raw:
                values[name] = _float(name, raw[name])
        for name in ("base_url", "symbol", "interval", "log_level"):
            if name in raw:
                value = str(raw[name]).strip()
                if not value:
                    raise ValueError(f"{name} must not be empty")
                values[name] = value
        if "symbols" in raw:
            values["symbols"] = _symbols(raw["symbols"])

        cfg = cls(**values)
        cfg._validate()
        return cfg

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ClientConfig:
        """Build from ``REPLAYDESK_*`` environment variables (e.g. ``REPLAYDESK_BASE_URL``)."""
        environ = os.environ if environ is None else environ
        raw = {}
        for f in fields(cls):
            key = ENV_PREFIX + f.name.upper()
            if key in environ:
                raw[f.name] = environ[key]
        return cls.from_raw(**raw)

    def _validate(self) -> None:
        if self.trading_account_id == self.training_account_id:
            raise ValueError("trading_account_id and training_account_id must differ")
        for name in ("candle_limit", "train_limit", "snapshot_limit"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1")
        if self.train_offset < 0:
            raise ValueError("train_offset must be >= 0")
        if self.max_markers < 0:
            raise ValueError("max_markers must be >= 0")
        for name in ("trading_period", "training_period", "request_timeout"):
            value = getattr(self, name)
            if not math.isfinite(value) or value <= 0:
                raise ValueError(f"{name} must be > 0")
        if not self.symbols:
            raise ValueError("symbols must name at least one symbol")


def _int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def _float(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be numeric, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be numeric, got {value!r}") from exc


def _symbols(value: Any) -> tuple[str, ...]:
    items = value.split(",") if isinstance(value, str) else list(value)
    symbols = tuple(str(s).strip().upper() for s in items if str(s).strip())
    if not symbols:
        raise ValueError("symbols must name at least one symbol")
    return symbols
