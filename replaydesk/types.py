"""Shared enums for the replay client."""

from enum import Enum


class Mode(str, Enum):
    """Operating mode of the dashboard.

    Each mode is bound to its own account on the service. The value doubles
    as the wire value used by the equity snapshot endpoints.
    """
    TRADING = "TRADING"
    TRAINING = "TRAINING"

    def other(self) -> "Mode":
        """Return the other mode."""
        return Mode.TRAINING if self is Mode.TRADING else Mode.TRADING


class Side(str, Enum):
    """Side of an executed trade."""
    BUY = "BUY"
    SELL = "SELL"

    @classmethod
    def from_raw(cls, side: str) -> "Side":
        """
        Convert a side string in any casing to a Side.
        """
        value = str(side).strip().upper()
        if value == "BUY":
            return Side.BUY
        elif value == "SELL":
            return Side.SELL
        else:
            raise ValueError(f"Invalid trade side {side!r}: must be BUY or SELL")


class Signal(str, Enum):
    """Decision reported by the service for a replay step."""
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"

    @classmethod
    def from_raw(cls, signal: object) -> "Signal":
        if signal is None:
            return Signal.HOLD
        try:
            return Signal(str(signal).strip().upper())
        except ValueError:
            raise ValueError(f"Invalid signal {signal!r}") from None
