"""Record serialization.

Records convert to plain dicts of ``str | int | bool | None`` and back, one
record kind per ``kind`` name. Round-trip property (tested):
``record_from_dict(kind, record_to_dict(r)) == r``.
"""

from __future__ import annotations

from dataclasses import fields
from typing import Any, Mapping

from .types import Config, InsuranceFund, Market, OraclePrice, StopLossOrder, UserPosition

RECORD_TYPES: dict[str, type] = {
    "config": Config,
    "market": Market,
    "position": UserPosition,
    "stop_loss": StopLossOrder,
    "insurance_fund": InsuranceFund,
    "oracle": OraclePrice,
}

_KIND_BY_TYPE: dict[type, str] = {cls: kind for kind, cls in RECORD_TYPES.items()}


def record_kind(record: Any) -> str:
    try:
        return _KIND_BY_TYPE[type(record)]
    except KeyError:
        raise TypeError(f"not a ledger record: {type(record).__name__}") from None


def field_names(kind: str) -> tuple[str, ...]:
    return tuple(f.name for f in fields(RECORD_TYPES[kind]))


def record_to_dict(record: Any) -> dict[str, Any]:
    """Serialize a record to a plain dict (field name -> value)."""
    kind = record_kind(record)
    return {name: getattr(record, name) for name in field_names(kind)}


def record_from_dict(kind: str, d: Mapping[str, Any]) -> Any:
    """Deserialize a dict into a record of *kind*. Raises KeyError on missing fields."""
    cls = RECORD_TYPES[kind]
    kwargs: dict[str, Any] = {}
    for name in field_names(kind):
        val = d[name]
        if val is None or isinstance(val, (bool, str)):
            kwargs[name] = val
        elif isinstance(val, int):
            kwargs[name] = int(val)  # normalize int subclasses
        else:
            raise TypeError(f"{kind}.{name} must be str|int|bool|None, got {type(val).__name__}")
    return cls(**kwargs)
