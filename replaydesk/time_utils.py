"""Centralised timestamp handling.

All timestamp coercion goes through this module.
Internal representation: integer milliseconds since the Unix epoch (UTC).

The service hands out time values in several shapes: epoch seconds, epoch
milliseconds, ISO 8601 strings and (from Python callers) ``datetime``/``date``
objects. Epoch seconds and epoch milliseconds are both plain numbers on the
wire, so they are told apart by magnitude: a positive number below
:data:`EPOCH_SECONDS_CEILING` is read as seconds, anything else as
milliseconds. ``10**12`` ms is 2001-09-09; ``10**12`` s is far beyond any
date the service produces, so the two ranges do not overlap in practice.
"""

import math
from datetime import date, datetime, timezone


__all__ = [
    "EPOCH_SECONDS_CEILING",
    "InvalidTimestamp",
    "MAX_CANONICAL_MS",
    "MIN_CANONICAL_MS",
    "ms_to_datetime",
    "ms_to_iso",
    "now_ms",
    "to_canonical_ms",
    "try_canonical_ms",
]


EPOCH_SECONDS_CEILING = 10**12

# datetime range, 0001-01-01T00:00:00Z .. 9999-12-31T23:59:59.999Z
MIN_CANONICAL_MS = -62135596800000
MAX_CANONICAL_MS = 253402300799999


class InvalidTimestamp(ValueError):
    """Raised when a time value is missing or cannot be interpreted."""

    def __init__(self, raw: object, reason: str = "unparseable timestamp"):
        self.raw = raw
        super().__init__(f"{reason}: {raw!r}")


# ---------------------------------------------------------------------------
# Core conversions
# ---------------------------------------------------------------------------


def _from_number(n: float, raw: object) -> int:
    if not math.isfinite(n):
        raise InvalidTimestamp(raw, "non-finite timestamp")
    ms = int(round(n * 1000)) if 0 < n < EPOCH_SECONDS_CEILING else int(round(n))
    if not MIN_CANONICAL_MS <= ms <= MAX_CANONICAL_MS:
        raise InvalidTimestamp(raw, "timestamp out of range")
    return ms


def _from_datetime(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(round(dt.timestamp() * 1000))


def _from_string(raw: str) -> int:
    s = raw.strip()
    if not s:
        raise InvalidTimestamp(raw, "empty timestamp")

    # String that looks like a number → numeric rule
    if s.isascii() and s.replace(".", "", 1).lstrip("-").isdigit():
        try:
            n = float(s)
        except ValueError as exc:
            raise InvalidTimestamp(raw) from exc
        return _from_number(n, raw)

    # Normalise YYYY/MM/DD → YYYY-MM-DD
    if len(s) >= 10 and s[4] == "/" and s[7] == "/":
        s = f"{s[:4]}-{s[5:7]}-{s[8:]}"

    s = s.replace("Z", "+00:00")
    s = s.replace(" ", "T", 1)

    try:
        dt = datetime.fromisoformat(s)
    except ValueError as exc:
        raise InvalidTimestamp(raw) from exc
    return _from_datetime(dt)


def to_canonical_ms(raw: object) -> int:
    """Coerce any supported time value to integer epoch milliseconds.

    Accepted inputs:
      * ``datetime`` (naive values are taken as UTC) and ``date`` (UTC midnight)
      * ``int``/``float`` epoch seconds or milliseconds (see module docstring)
      * ISO 8601 string (``T`` or space separator, with or without ``Z``,
        ``YYYY/MM/DD`` prefix tolerated)
      * String containing a numeric value, handled like the number itself

    Raises:
        InvalidTimestamp: for ``None``, booleans, empty strings, non-finite
            numbers and anything unparseable. Missing values never become 0.
    """
    if raw is None:
        raise InvalidTimestamp(raw, "missing timestamp")
    if isinstance(raw, bool):
        raise InvalidTimestamp(raw, "boolean is not a timestamp")
    if isinstance(raw, datetime):
        return _from_datetime(raw)
    if isinstance(raw, date):
        return _from_datetime(datetime(raw.year, raw.month, raw.day))
    if isinstance(raw, (int, float)):
        return _from_number(float(raw), raw)
    if isinstance(raw, str):
        return _from_string(raw)
    raise InvalidTimestamp(raw, f"unsupported timestamp type {type(raw).__name__}")


def try_canonical_ms(raw: object) -> int | None:
    """Like :func:`to_canonical_ms` but returns ``None`` instead of raising."""
    try:
        return to_canonical_ms(raw)
    except InvalidTimestamp:
        return None


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------


def ms_to_datetime(ms: int) -> datetime:
    """Convert epoch milliseconds to a UTC-aware datetime."""
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def ms_to_iso(ms: int) -> str:
    """Convert epoch milliseconds to an ISO 8601 string (UTC)."""
    return ms_to_datetime(ms).isoformat()


def now_ms() -> int:
    """Current UTC time in epoch milliseconds."""
    return int(datetime.now(timezone.utc).timestamp() * 1000)
