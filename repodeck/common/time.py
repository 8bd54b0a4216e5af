"""Common time utilities."""

from __future__ import annotations

import datetime as dt
import typing as typ


def utcnow() -> dt.datetime:
    """Return an aware UTC timestamp."""
    return dt.datetime.now(dt.UTC)


def parse_timestamp(value: str) -> dt.datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into aware UTC."""
    parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        msg = f"timestamp missing timezone: {value}"
        raise ValueError(msg)
    return parsed.astimezone(dt.UTC)


class Clock(typ.Protocol):
    """Source of the current time, injectable for tests."""

    def now(self) -> dt.datetime:
        """Return the current aware UTC time."""
        ...


class SystemClock:
    """Wall-clock implementation of :class:`Clock`."""

    def now(self) -> dt.datetime:
        """Return :func:`utcnow`."""
        return utcnow()
