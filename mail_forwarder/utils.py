"""Utility helpers shared across modules."""

from __future__ import annotations

import re
from datetime import timedelta

_DURATION_RE = re.compile(r"^\s*(?P<value>\d+(?:\.\d+)?)\s*(?P<unit>[smh]?)\s*$", re.IGNORECASE)
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600}


def parse_duration(value: str) -> timedelta:
    """Parse '90', '30s', '5m' or '1h' into a timedelta."""
    match = _DURATION_RE.match(value)
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    seconds = float(match.group("value")) * _UNIT_SECONDS[match.group("unit").lower()]
    return timedelta(seconds=seconds)


def split_domains(value: str | None) -> list[str]:
    """Turn a comma-separated domain list into trimmed, case-folded entries."""
    if value is None:
        return []
    cleaned: list[str] = []
    for item in value.split(","):
        trimmed = item.strip().casefold()
        if trimmed and trimmed not in cleaned:
            cleaned.append(trimmed)
    return cleaned


def sender_domain(address: str | None) -> str | None:
    """Return the case-folded part after the last '@', or None if there is none."""
    if not address:
        return None
    local, sep, domain = address.strip().rpartition("@")
    domain = domain.strip().casefold()
    if not sep or not domain:
        return None
    return domain
