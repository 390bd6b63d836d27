"""Data-sharing definitions: expanding-ring settings, catalogs and durations."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Dict, Set, Union

# Separation between chunk hashes in a metafile.
METAFILE_SEP = "\n"

# Maps a data key to the set of peer addresses that can provide it.
Catalog = Dict[str, Set[str]]

_NANOSECONDS_PER_SECOND = 1_000_000_000
_UNITS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": _NANOSECONDS_PER_SECOND,
    "m": 60 * _NANOSECONDS_PER_SECOND,
    "h": 3600 * _NANOSECONDS_PER_SECOND,
}
_MAX_NS = 2**63 - 1
_COMPONENT = re.compile(r"(\d*)(?:\.(\d*))?([^\d.]*)")


@dataclass(frozen=True)
class ExpandingRing:
    """Expanding-ring search settings.

    The budget starts at ``initial`` and is multiplied by ``factor`` after each
    of at most ``retry`` attempts; ``timeout`` (seconds) is waited per attempt.
    """

    initial: int
    factor: int
    retry: int
    timeout: float

    def __post_init__(self) -> None:
        for name in ("initial", "factor", "retry"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"{name} must be a non-negative integer, got {value!r}")
        if self.timeout < 0:
            raise ValueError(f"timeout must not be negative, got {self.timeout!r}")


def _parse_ns(text: str) -> int:
    body = text
    negative = False
    if body and body[0] in "+-":
        negative = body[0] == "-"
        body = body[1:]
    if body == "0":
        return 0
    if not body:
        raise ValueError(f"invalid duration {text!r}")

    total = 0
    limit = _MAX_NS + 1 if negative else _MAX_NS
    pos = 0
    while pos < len(body):
        match = _COMPONENT.match(body, pos)
        whole, frac, unit = match.groups()
        if not whole and not frac:
            raise ValueError(f"invalid duration {text!r}")
        if not unit:
            raise ValueError(f"missing unit in duration {text!r}")
        if unit not in _UNITS:
            raise ValueError(f"unknown unit {unit!r} in duration {text!r}")
        scale = _UNITS[unit]
        value = int(whole or "0") * scale
        if frac:
            value += int(frac) * scale // 10 ** len(frac)
        total += value
        if total > limit:
            raise ValueError(f"invalid duration {text!r}")
        pos = match.end()
    return -total if negative else total


def parse_duration(text: str) -> float:
    """Parse a duration such as ``"300ms"`` or ``"1h2m3.5s"`` into seconds."""
    return _parse_ns(text) / _NANOSECONDS_PER_SECOND


def _split_fraction(value: int, precision: int) -> tuple[int, str]:
    whole, digits = divmod(value, 10**precision)
    fraction = f"{digits:0{precision}d}".rstrip("0")
    return whole, f".{fraction}" if fraction else ""


def _format_ns(ns: int) -> str:
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    ns = abs(ns)
    if ns < 1_000:
        return f"{sign}{ns}ns"
    if ns < 1_000_000:
        whole, fraction = _split_fraction(ns, 3)
        return f"{sign}{whole}{fraction}\u00b5s"
    if ns < _NANOSECONDS_PER_SECOND:
        whole, fraction = _split_fraction(ns, 6)
        return f"{sign}{whole}{fraction}ms"
    total_seconds, fraction = _split_fraction(ns, 9)
    hours, rest = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds}{fraction}s"
    if minutes:
        return f"{sign}{minutes}m{seconds}{fraction}s"
    return f"{sign}{seconds}{fraction}s"


def format_duration(seconds: Union[int, float]) -> str:
    """Format a number of seconds the way :func:`parse_duration` reads it."""
    if isinstance(seconds, int):
        ns = seconds * _NANOSECONDS_PER_SECOND
    else:
        ns = round(seconds * _NANOSECONDS_PER_SECOND)
    return _format_ns(ns)


def catalog_to_json(catalog: Catalog) -> str:
    """Encode a catalog as an indented JSON object of ``{key: {peer: {}}}``."""
    document = {key: {peer: {} for peer in sorted(peers)} for key, peers in catalog.items()}
    return json.dumps(document, indent="\t", sort_keys=True)


def catalog_from_json(data: Union[str, bytes]) -> Catalog:
    """Decode a catalog produced by :func:`catalog_to_json`."""
    document = json.loads(data)
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ValueError("catalog must be a JSON object")
    catalog: Catalog = {}
    for key, peers in document.items():
        if peers is None:
            catalog[key] = set()
        elif isinstance(peers, dict):
            catalog[key] = set(peers)
        else:
            raise ValueError(f"catalog entry {key!r} must be a JSON object")
    return catalog