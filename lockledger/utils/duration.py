"""Lease duration parsing.

Accepted forms:
- ``timedelta`` (returned as-is)
- int/float seconds, or a bare numeric string (``"1"`` is one second)
- suffixed strings: ``"500ms"``, ``"1s"``, ``"5m"``, ``"1h"``, ``"1d"``
- ISO-8601 durations: ``"PT1S"``, ``"PT1H30M"``, ``"P1DT2H"``
"""

from __future__ import annotations

import re
from datetime import timedelta

from lockledger.errors import InvalidLeaseError

_NUMBER_RE = re.compile(r"^\d+(?:\.\d+)?$")
_SUFFIX_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)\s*$", re.IGNORECASE)
_ISO_RE = re.compile(
    r"^P(?:(?P<days>\d+(?:\.\d+)?)D)?"
    r"(?:T(?=\d)(?:(?P<hours>\d+(?:\.\d+)?)H)?"
    r"(?:(?P<minutes>\d+(?:\.\d+)?)M)?"
    r"(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$",
    re.IGNORECASE,
)

_UNITS = {
    "ms": "milliseconds",
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
}


def _parse_string(text: str) -> timedelta:
    stripped = text.strip()
    if _NUMBER_RE.match(stripped):
        return timedelta(seconds=float(stripped))

    match = _SUFFIX_RE.match(stripped)
    if match:
        amount, unit = match.groups()
        return timedelta(**{_UNITS[unit.lower()]: float(amount)})

    match = _ISO_RE.match(stripped)
    # A bare "P" matches the pattern with every group empty
    if match and any(match.groupdict().values()):
        parts = {k: float(v) for k, v in match.groupdict().items() if v}
        return timedelta(**parts)

    raise InvalidLeaseError(
        f"Unrecognized duration: {text!r}",
        details={"value": text},
    )


def parse_duration(value: timedelta | int | float | str) -> timedelta:
    """Parse a lease duration into a positive ``timedelta``.

    Raises:
        InvalidLeaseError: If the value is unparseable, zero or negative
    """
    if isinstance(value, timedelta):
        duration = value
    elif isinstance(value, bool):
        raise InvalidLeaseError(
            f"Unrecognized duration: {value!r}", details={"value": value}
        )
    elif isinstance(value, (int, float)):
        duration = timedelta(seconds=value)
    elif isinstance(value, str):
        duration = _parse_string(value)
    else:
        raise InvalidLeaseError(
            f"Unrecognized duration type: {type(value).__name__}",
            details={"value": repr(value)},
        )

    if duration <= timedelta(0):
        raise InvalidLeaseError(
            "Lease duration must be positive",
            details={"value": str(value)},
        )
    return duration
