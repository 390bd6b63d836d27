"""JSON argument types accepted by the HTTP node endpoints."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Union


def _lookup(data: Mapping, key: str) -> Any:
    """Find a field exactly, then case-insensitively; ``None`` when absent."""
    if key in data:
        return data[key]
    folded = key.casefold()
    for name, value in data.items():
        if isinstance(name, str) and name.casefold() == folded:
            return value
    return None


def _require_mapping(data: Any) -> Mapping:
    if not isinstance(data, Mapping):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data


def _string(data: Mapping, key: str) -> str:
    value = _lookup(data, key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


def _uint(data: Mapping, key: str) -> int:
    value = _lookup(data, key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"field {key!r} must be a non-negative integer")
    return value


def parse_add_peer_argument(data: Union[str, bytes]) -> list[str]:
    """Decode a JSON list of peer addresses."""
    document = json.loads(data)
    if document is None:
        return []
    if not isinstance(document, list) or not all(isinstance(a, str) for a in document):
        raise ValueError("peer list must be a JSON array of strings")
    return document


@dataclass
class UnicastArgument:
    """Arguments of a unicast: destination and transport message object."""

    dest: str = ""
    msg: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"Dest": self.dest, "Msg": dict(self.msg)}

    @classmethod
    def from_dict(cls, data: Mapping) -> "UnicastArgument":
        data = _require_mapping(data)
        msg = _lookup(data, "Msg")
        if msg is None:
            msg = {}
        elif not isinstance(msg, Mapping):
            raise ValueError("field 'Msg' must be a JSON object")
        return cls(dest=_string(data, "Dest"), msg=dict(msg))


@dataclass
class SetRoutingEntryArgument:
    """Arguments to set a routing entry."""

    origin: str = ""
    relay_addr: str = ""

    def to_dict(self) -> dict:
        return {"Origin": self.origin, "RelayAddr": self.relay_addr}

    @classmethod
    def from_dict(cls, data: Mapping) -> "SetRoutingEntryArgument":
        data = _require_mapping(data)
        return cls(origin=_string(data, "Origin"), relay_addr=_string(data, "RelayAddr"))


@dataclass
class IndexArgument:
    """Arguments of a search-all request; ``timeout`` is a duration string."""

    pattern: str = ""
    budget: int = 0
    timeout: str = ""

    def to_dict(self) -> dict:
        return {"Pattern": self.pattern, "Budget": self.budget, "Timeout": self.timeout}

    @classmethod
    def from_dict(cls, data: Mapping) -> "IndexArgument":
        data = _require_mapping(data)
        return cls(
            pattern=_string(data, "Pattern"),
            budget=_uint(data, "Budget"),
            timeout=_string(data, "Timeout"),
        )


@dataclass
class SearchArgument:
    """Arguments of a search-first request; ``timeout`` is a duration string."""

    pattern: str = ""
    initial: int = 0
    factor: int = 0
    retry: int = 0
    timeout: str = ""

    def to_dict(self) -> dict:
        return {
            "Pattern": self.pattern,
            "Initial": self.initial,
            "Factor": self.factor,
            "Retry": self.retry,
            "Timeout": self.timeout,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "SearchArgument":
        data = _require_mapping(data)
        return cls(
            pattern=_string(data, "Pattern"),
            initial=_uint(data, "Initial"),
            factor=_uint(data, "Factor"),
            retry=_uint(data, "Retry"),
            timeout=_string(data, "Timeout"),
        )