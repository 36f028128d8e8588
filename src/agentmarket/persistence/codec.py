"""Table names, system accounts, and entity <-> record conversion.

Ledger values are plain JSON-compatible dicts. Entities are dataclasses
whose enum fields are stored by value and restored from type hints.
"""

from __future__ import annotations

import enum
import typing
from dataclasses import asdict, fields
from typing import Any, TypeVar

# Tables
JOBS = "jobs"
BIDS = "bids"
DISPUTES = "disputes"
ARBITRATORS = "arbitrators"
ARBITRATOR_UNSTAKES = "arbitrator_unstakes"
VALIDATORS = "validators"
VALIDATIONS = "validations"
CHALLENGES = "challenges"
VALIDATOR_UNSTAKES = "validator_unstakes"
AGENTS = "agents"
FEEDBACK = "feedback"
FEEDBACK_DISPUTES = "feedback_disputes"

# System accounts
ESCROW_JOBS = "escrow.jobs"
ESCROW_ARBITRATORS = "escrow.arbitrators"
ESCROW_VALIDATORS = "escrow.validators"

SYSTEM_ACCOUNTS = frozenset({ESCROW_JOBS, ESCROW_ARBITRATORS, ESCROW_VALIDATORS})

E = TypeVar("E")


def to_record(entity: Any) -> dict[str, Any]:
    """Convert a dataclass entity into a JSON-compatible dict."""
    data = asdict(entity)
    return {
        key: (value.value if isinstance(value, enum.Enum) else value)
        for key, value in data.items()
    }


def from_record(cls: type[E], data: dict[str, Any]) -> E:
    """Rebuild a dataclass entity from a record produced by to_record()."""
    hints = typing.get_type_hints(cls)
    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        if f.name not in data:
            continue
        value = data[f.name]
        enum_cls = _enum_type(hints.get(f.name))
        if enum_cls is not None and value is not None:
            value = enum_cls(value)
        kwargs[f.name] = value
    return cls(**kwargs)


def _enum_type(hint: Any) -> Any:
    if isinstance(hint, type) and issubclass(hint, enum.Enum):
        return hint
    for arg in typing.get_args(hint):
        if isinstance(arg, type) and issubclass(arg, enum.Enum):
            return arg
    return None
