"""Input checks shared by the engines. All raise InvalidArgument."""

from __future__ import annotations

import time
from typing import Optional

from agentmarket.errors import InvalidArgument


def current_time(now: Optional[int] = None) -> int:
    """Unix seconds; ``now`` wins when given."""
    return int(time.time()) if now is None else now


def require_account(value: Optional[str], field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgument(f"{field} must be a non-empty account name")
    return value.strip()


def require_text(value: Optional[str], field: str, max_length: int) -> str:
    """Non-empty text of at most ``max_length`` characters."""
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgument(f"{field} is required")
    if len(value) > max_length:
        raise InvalidArgument(
            f"{field} exceeds {max_length} characters (got {len(value)})"
        )
    return value


def optional_text(value: Optional[str], field: str, max_length: int) -> Optional[str]:
    """Like require_text, but None and empty strings mean "not given"."""
    if value is None or value == "":
        return None
    return require_text(value, field, max_length)


def require_int(value: int, field: str, minimum: int = 0, maximum: Optional[int] = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgument(f"{field} must be an integer, got {value!r}")
    if value < minimum:
        raise InvalidArgument(f"{field} must be >= {minimum}, got {value}")
    if maximum is not None and value > maximum:
        raise InvalidArgument(f"{field} must be <= {maximum}, got {value}")
    return value


def require_positive(value: int, field: str) -> int:
    return require_int(value, field, minimum=1)


def require_bool(value: bool, field: str) -> bool:
    if not isinstance(value, bool):
        raise InvalidArgument(f"{field} must be true or false, got {value!r}")
    return value
